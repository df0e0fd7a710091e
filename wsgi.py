"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-sequences
    gunicorn wsgi:app
"""

from permit_tracker import create_app

app = create_app()
