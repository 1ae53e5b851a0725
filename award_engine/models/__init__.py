"""
Award Engine: SQLAlchemy models.

Every model module imports the shared ``db`` handle from here; the
application factory binds it to the Flask app.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
