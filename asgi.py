"""
asgi.py -- ASGI entry point for EventDesk.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000   (production)

The application object and its lifespan live in api/main.py; this module only
re-exports it so process managers have a stable import path.
"""

from api.main import app

__all__ = ["app"]
