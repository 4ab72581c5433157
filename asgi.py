"""
asgi.py -- Application assembly for ProjectGate.

This is the ONLY module that turns the environment into a Settings object for
the server. A production environment without SESSION_SECRET fails here, at
import time, before uvicorn binds a port.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
