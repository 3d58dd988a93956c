"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for users, credits, payments and posts
"""
from typing import Optional, Generator
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Text, Index,
    UniqueConstraint, CheckConstraint, text,
)
from sqlalchemy.orm import sessionmaker, Session

from voicepost.core.config import settings

logger = logging.getLogger("voicepost.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# SQLite waits this long for a competing writer before raising "database is locked"
SQLITE_BUSY_TIMEOUT = 30

_engine = None
_SessionLocal = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI DB dependency that yields a Session and closes it.

    Services commit or roll back their own units of work; anything left
    open when the request ends is rolled back on close.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables():
    """Create all tables defined in metadata (idempotent)."""
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """Return True when a trivial query succeeds against the configured database."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utcnow, nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Administrative capability (unlimited credits)
user_roles = Table(
    'user_roles',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('role', String(50), nullable=False),
    Column('created_at', DateTime(timezone=True), default=utcnow, nullable=False),
    UniqueConstraint('user_id', 'role', name='uq_user_roles_user_role'),
)

# Credit grants: one row per grant, used_credits is the only mutable counter
credit_grants = Table(
    'credit_grants',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('total_credits', Integer, nullable=False),
    Column('used_credits', Integer, nullable=False, default=0),
    Column('source', String(20), nullable=False),  # free, purchase, adjustment
    # Settled payment that produced this grant; unique so a payment credits once
    Column('payment_id', String(36), nullable=True, unique=True),
    Column('created_at', DateTime(timezone=True), default=utcnow, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False),
    CheckConstraint('total_credits >= 0', name='ck_credit_grants_total_nonneg'),
    CheckConstraint('used_credits >= 0', name='ck_credit_grants_used_nonneg'),
    CheckConstraint('used_credits <= total_credits', name='ck_credit_grants_used_le_total'),
    CheckConstraint("source IN ('free', 'purchase', 'adjustment')", name='ck_credit_grants_source'),
    # Composite index for the deduction scan: oldest grant with spare capacity first
    Index('idx_credit_grants_user_created', 'user_id', 'created_at'),
)

# Payment records (gateway orders)
payment_history = Table(
    'payment_history',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('amount', Integer, nullable=False),  # minor currency units
    Column('currency', String(3), nullable=False),
    Column('credits_purchased', Integer, nullable=False),
    Column('plan_id', String(50), nullable=False),
    Column('transaction_id', String(100), nullable=False, unique=True),  # local receipt
    Column('gateway_order_id', String(100), nullable=False, unique=True),
    Column('gateway_payment_id', String(100), nullable=True),
    Column('status', String(20), nullable=False, default='pending'),  # pending, success, failed
    Column('failure_reason', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utcnow, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False),
    CheckConstraint("status IN ('pending', 'success', 'failed')", name='ck_payment_history_status'),
    Index('idx_payment_history_user_created', 'user_id', 'created_at'),
    Index('idx_payment_history_order_user', 'gateway_order_id', 'user_id'),
)

posts = Table(
    'posts',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('content', Text, nullable=True),
    Column('status', String(20), nullable=False),
    Column('audio_file_name', String(255), nullable=True),
    Column('language', String(20), nullable=True),
    Column('scheduled_at', DateTime(timezone=True), nullable=True),
    Column('linkedin_post_id', Text, nullable=True),
    Column('image_url', Text, nullable=True),
    Column('image_source_type', String(20), nullable=True),  # ai_generated, manual
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utcnow, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False),
    # Scheduled sweep: (status, scheduled_at)
    Index('idx_posts_status_scheduled', 'status', 'scheduled_at'),
    # Watchdog: (status, updated_at)
    Index('idx_posts_status_updated', 'status', 'updated_at'),
    Index('idx_posts_user_created', 'user_id', 'created_at'),
)
