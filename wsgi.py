"""WSGI entry point for Gunicorn (sales ledger API)."""
import sys
import os

# Ensure config.py at the project root is importable
sys.path.insert(0, os.path.dirname(__file__))

from app import create_app

app = create_app(os.getenv('APP_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run()
