"""
Flask CLI entry point.

Usage:
    flask --app wsgi db migrate     # Flask-Migrate
    flask --app wsgi seed-approval-matrix
    flask --app wsgi expire-award-deadlines   # run from cron
"""

from award_engine import create_app

app = create_app()
