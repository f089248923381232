"""
wsgi.py — WSGI entry point.

    flask --app fairshare.wsgi run
    gunicorn fairshare.wsgi:app

FLASK_ENV selects the configuration (development, testing, production).
"""

import os

from fairshare.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
