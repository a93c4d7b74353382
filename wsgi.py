"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db init          # once, creates migrations/
    flask --app wsgi db migrate && flask --app wsgi db upgrade
    flask --app wsgi create-admin --name "Ops" --email ops@example.com
"""

from portal import create_app

app = create_app()
