"""
WSGI entry point for gunicorn and the Flask-Migrate CLI.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi recompute-testing-aggregates
"""

from pattern_testing import create_app

app = create_app()
