"""
Flask-Migrate / Alembic entry point.

Usage:
    export FLASK_APP=wsgi.py
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
"""

from ipo_workflow import create_app

app = create_app()
