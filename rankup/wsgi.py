"""WSGI entrypoint: ``gunicorn rankup.wsgi:app`` or ``flask --app rankup.wsgi run``."""
from __future__ import annotations

from .app_factory import create_app

app = create_app()
