"""Interface adapters: FastAPI app (`http_api`), terminal client (`cli`) and shared wiring (`services`)."""
