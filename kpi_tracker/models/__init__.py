"""
KPI Tracker
Shared SQLAlchemy instance.

Every model module imports ``db`` from here; ``create_app`` binds it once.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
