# Overview: WSGI/CLI entry point (FLASK_APP=wsgi.py).

from backoffice import create_app

app = create_app()
