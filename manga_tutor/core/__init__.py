"""Generation orchestration package.

Architectural role:
    Sits between the API/CLI adapters and the lower-level adapters
    (`workflow`, `storage`, `library`).

Composition:
    - `types`: data contracts shared across layers.
    - `errors`: exception taxonomy.
    - `initiator`: run submission with degraded fallback.
    - `status_resolver`: one-shot status resolution (polling variant).
    - `streaming`: progress-event relay (streaming variant).
    - `strategy`: selection between the two variants.
    - `polling`: caller-side poll loop.
    - `placeholders`: fixed degraded-mode content.

Determinism and side effects:
    Package import is side-effect free apart from configuration loading in
    `manga_tutor.workflow.provider_config`.
"""
