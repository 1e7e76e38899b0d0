"""
asgi.py -- ASGI entry point for the backoffice API.

The app object is assembled in api/main.py; this module only gives servers a
stable import path.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
