"""
asgi.py -- Application assembly for ResourceHub auth.

Run with:  uvicorn asgi:app --reload

Other ResourceHub services (resources, forum, search) mount their routers on
this app here and protect them with auth.dependencies.require_roles().
"""

from api.main import app

__all__ = ["app"]
