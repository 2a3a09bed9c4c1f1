"""
Flask extensions shared by the points ledger.

The ledger models bind to ``db``; ``migrate`` drives the Alembic
revisions under ``migrations/``.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

migrate = Migrate()
