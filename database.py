"""
Relational store setup: engine, session factory and the startup migration.

The URL comes from DATABASE_URL. SQLite is the default for local runs; any
SQLAlchemy URL works. Tables are created by init_db(), which the app calls
once at startup.
"""
import logging
import os

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shop.db")

_NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for ORM models."""

    metadata = MetaData(naming_convention=_NAMING_CONVENTION)


def _make_engine(url):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live on a single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, **kwargs)

        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return eng
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create missing tables and seed the admin account. Safe to run repeatedly."""
    import models  # noqa: F401  registers the tables on Base.metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")
    _seed_admin()


def drop_db():
    Base.metadata.drop_all(bind=engine)


def _seed_admin():
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return

    from auth import get_password_hash
    from repositories import AccountRepository
    from schemas import Role

    with SessionLocal() as db:
        accounts = AccountRepository(db)
        if accounts.find_by_email(email) is not None:
            logger.info("Admin account already exists, skipping seed")
            return
        accounts.create(
            os.getenv("ADMIN_NAME", "Admin User"), email, get_password_hash(password), role=Role.admin.value
        )
        db.commit()
        logger.info(f"Seeded admin account {email}")


def list_tables():
    """Return the table names visible through the current engine."""
    from sqlalchemy import inspect

    return inspect(engine).get_table_names()
