"""ASGI entry point: `uvicorn fretebot.api.app:app`."""

from .factory import create_app

app = create_app()
