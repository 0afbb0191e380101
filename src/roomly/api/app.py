"""ASGI entry point: uvicorn roomly.api.app:app"""

from .factory import create_app

app = create_app()
