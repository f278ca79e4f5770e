"""MeepleVault: shared Flask extension instances.
==================================================
This module centralizes third-party Flask extensions so they can be imported
without causing circular dependencies. Import **only** from here in app code:
    from extensions import db, migrate

Why this exists
---------------
- Keeps a single SQLAlchemy() instance across the app, the stats handlers and
  the RQ worker.
- Applies a stable naming convention so Alembic migrations produce deterministic
  constraint/index names.

Do **not** import the application here. Extensions are initialized by `create_app`.
"""
from __future__ import annotations

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import MetaData

# Stable names for constraints/indexes so Alembic migrations are predictable
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Attach the naming convention to SQLAlchemy's MetaData
metadata = MetaData(naming_convention=NAMING_CONVENTION)

# Core extensions (initialized in app factory)
db: SQLAlchemy = SQLAlchemy(metadata=metadata)
migrate: Migrate = Migrate()

__all__ = ["db", "migrate", "NAMING_CONVENTION", "metadata"]
