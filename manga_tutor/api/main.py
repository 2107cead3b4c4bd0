"""
Server entrypoint for the manga_tutor HTTP API.

Architectural role:
- Configures logging and runs `manga_tutor.api.http_api:app` under uvicorn.

Environment:
- `HOST` (default `127.0.0.1`), `PORT` (default `8000`), `LOG_LEVEL`,
  `LOG_FORMAT`.
"""

import os

import uvicorn

from manga_tutor.logging_config import configure_logging


def main():
    configure_logging()
    uvicorn.run(
        "manga_tutor.api.http_api:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
