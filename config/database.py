import logging
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, declarative_base

from config.settings import DATABASE_URL

# Configure logging
logger = logging.getLogger(__name__)


def build_engine(database_url: str = DATABASE_URL):
    """
    Create an engine for the given URL.

    SQLite gets check_same_thread=False (the scheduler thread and the handler
    worker thread share the connection pool) and foreign keys switched on so
    task_attempts rows cascade with their task.
    """
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        new_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
            future=True,
        )

        @event.listens_for(new_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return new_engine

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=False,
        pool_reset_on_return="rollback",
        isolation_level="READ_COMMITTED",
        future=True,
    )


engine = build_engine()
logger.info(f"Database engine created (dialect: {engine.dialect.name})")

# Create a session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Define a base class for the models
Base = declarative_base()


def get_db():
    """
    Database dependency with rollback on error and guaranteed close
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        # Rollback any pending transaction
        try:
            db.rollback()
        except Exception as rollback_error:
            logger.error(f"Error during rollback: {rollback_error}")
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    """Test database connection - used by the health endpoint"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False
