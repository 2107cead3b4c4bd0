"""Remote workflow-service adapter package.

Scope:
    Configuration (`provider_config`) and HTTP transport (`client`) for the
    third-party generation workflow API. Orchestration decisions such as the
    degraded fallback live in `manga_tutor.core`, not here.
"""
