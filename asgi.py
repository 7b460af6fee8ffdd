"""
asgi.py -- ASGI entry point for Canvas Auth.

Run with:  uvicorn asgi:app --reload

Downstream services (text/image/voice/video generation, background removal)
mount their routers here and protect them with
Depends(auth.dependencies.get_current_identity); they receive only the
Identity, never the token.
"""

from api.main import app

__all__ = ["app"]
