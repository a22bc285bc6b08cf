from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    # Columns store naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)
