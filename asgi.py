"""
asgi.py -- ASGI entry point for AccessDesk.

The application is assembled in api/main.py; this module only exposes it
under the name servers expect.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
