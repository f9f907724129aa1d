"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app --worker-class gthread --threads 8   # SSE needs threads
    flask --app wsgi db upgrade
    flask --app wsgi create-user --name "Ana" --login ana --role manager
"""

from ompro import create_app

app = create_app()
