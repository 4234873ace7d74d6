"""
Database engine initialisation and the grant exchange schema.
"""

import logging
import sys

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    text,
)

from medshare.config import TOKEN_LENGTH, get_env

logger = logging.getLogger(__name__)

metadata = MetaData()

profiles = Table(
    "profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("subject_id", String(128), nullable=False, unique=True),
    Column("role", String(20), nullable=False),
    Column("full_name", String(255), nullable=False, default=""),
    Column("specialization", String(255), nullable=True),
    Column("created_at", DateTime, nullable=False),
)

access_grants = Table(
    "access_grants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(TOKEN_LENGTH), nullable=False, unique=True),
    Column("issuer_id", String(128), nullable=False, index=True),
    Column("claimant_id", String(128), nullable=True, index=True),
    Column("permissions", JSON, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
    Column("access_count", Integer, nullable=False, default=0),
    Column("last_accessed_at", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)


def make_engine(db_uri: str):
    """Create an engine; SQLite connections are shared across request threads."""
    kwargs = {"echo": False, "future": True}
    if db_uri.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return create_engine(db_uri, **kwargs)


def init_engine():
    """Create a SQLAlchemy engine from DB_URI and verify the connection."""
    db_uri = get_env("DB_URI")
    engine = make_engine(db_uri)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    logger.info("[init] Connected to DB.")
    return engine


def create_schema(engine) -> None:
    """Create the profiles and access_grants tables if they are missing."""
    metadata.create_all(engine)
    logger.info("[init] Schema ready (%s)", ", ".join(sorted(metadata.tables)))
