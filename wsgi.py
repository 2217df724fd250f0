"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    flask import-report reporte.xlsx --role admin --name "Ana Pérez"
"""

from kpi_tracker import create_app

app = create_app()
