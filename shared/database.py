# ============================================================================
# shared/database.py - Engine, session factory and declarative base
# ============================================================================

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.pool import StaticPool
import logging

from config import DATABASE_URL, DATABASE_ECHO

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False):
    """Create engine based on database type"""
    if url.startswith("sqlite"):
        # SQLite configuration
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    if url.startswith("mysql"):
        # MySQL configuration with sync driver
        return create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_recycle=300,
            pool_size=5,
            max_overflow=0
        )
    return create_engine(url, echo=echo)


engine = build_engine(DATABASE_URL, DATABASE_ECHO)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class
Base = declarative_base()


# Dependency to get database session
def get_db() -> Session:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models():
    """Import all models to ensure they are included in Base.metadata"""
    from apps.extensions.models import Extension  # noqa: F401
    from apps.trunks.models import Trunk  # noqa: F401
    from apps.dialplan.models import DialplanRule  # noqa: F401


def init_database(bind=None) -> bool:
    """Initialize the database and create tables"""
    bind = bind or engine
    try:
        import_models()

        # Test connection first
        with bind.connect():
            logger.info("✅ Database connection successful")

        Base.metadata.create_all(bind=bind)
        logger.info("✅ Database tables created/verified")
        return True

    except Exception as e:
        logger.error(f"❌ Database initialization error: {str(e)}")
        return False
