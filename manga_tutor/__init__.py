"""manga_tutor: educational manga generation over a remote workflow service.

Package layout:
    - `api`: HTTP (FastAPI) and terminal adapters.
    - `core`: generation orchestration (initiate, resolve, stream, poll).
    - `workflow`: remote workflow-service configuration and transport.
    - `storage`: object-store image caching and the image proxy.
    - `library`: relational persistence of finished generations.
    - `session`: versioned client session snapshots.
"""

__version__ = "0.3.0"
