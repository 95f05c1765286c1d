"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from hptourism.config import get_settings

settings = get_settings()

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False  # Required for SQLite
    if settings.DATABASE_URL.startswith("sqlite:///"):
        db_dir = os.path.dirname(settings.DATABASE_URL[len("sqlite:///"):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Called once at application startup."""
    from hptourism.models import application as _application_model     # noqa: F401
    from hptourism.models import ddo_code as _ddo_code_model           # noqa: F401
    from hptourism.models import system_setting as _setting_model      # noqa: F401
    from hptourism.models import transaction as _transaction_model     # noqa: F401

    Base.metadata.create_all(bind=engine)
