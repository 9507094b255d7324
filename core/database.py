"""
Database connection and setup.
PostgreSQL in production (DATABASE_URL), SQLite for local development.
"""
from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker

from core.config import DATABASE_URL, logger

_engine_kwargs = {"pool_pre_ping": True, "echo": False}
if DATABASE_URL.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs.update(pool_size=10, max_overflow=20)

# Create SQLAlchemy engine
engine = create_engine(DATABASE_URL, **_engine_kwargs)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """
    Dependency for FastAPI routes to get database session
    Usage:
        @router.post("/webhooks/payments")
        async def payments_webhook(request: Request, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """
    Initialize database tables
    Call this on application startup
    """
    # Register every model on Base.metadata before create_all
    import models.user  # noqa: F401
    import models.sales  # noqa: F401
    import models.purchases  # noqa: F401
    import models.entitlements  # noqa: F401
    import models.webhook_events  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("[db] tables ensured")
