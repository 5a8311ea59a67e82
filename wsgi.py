"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade                    # apply migrations/versions/*
    flask db migrate -m "description"
    flask sweep-periods                 # deactivate expired periods
    flask repair-references             # drop dangling catalog references
"""

from maintenance_app import create_app

app = create_app()
