"""ASGI entrypoint: ``uvicorn fiscalia.api.app:app`` (role from APP_ROLE)."""

from fiscalia.api.factory import create_app

app = create_app()
