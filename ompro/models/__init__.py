"""
OmPro — Maintenance Task Tracking
Database models package.

The shared ``db`` handle lives here so model modules, services and the app
factory import it from one place.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
