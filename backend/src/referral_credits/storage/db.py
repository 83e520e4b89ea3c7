"""Database connection and session management."""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from referral_credits.errors import StoreUnavailable
from referral_credits.logging_config import get_logger
from referral_credits.settings import settings
from referral_credits.storage.models import Base

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.engine = None
        self.configure(database_url or settings.database_url)

    def configure(self, database_url: str, **engine_kwargs: Any) -> None:
        """(Re)bind the manager to a database URL.

        Existing importers of the global ``db`` keep working because the
        instance itself is reused.

        Args:
            database_url: SQLAlchemy database URL
            **engine_kwargs: Extra keyword arguments for create_engine
        """
        if self.engine is not None:
            self.engine.dispose()

        timeout = settings.store_timeout_seconds
        options: dict[str, Any] = {
            "echo": settings.env == "development" and settings.log_level.upper() == "DEBUG",
            "pool_pre_ping": True,
        }
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            # Busy timeout bounds how long a writer waits for the database lock
            options["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        else:
            options["pool_timeout"] = timeout
        options.update(engine_kwargs)

        self.database_url = database_url
        self.engine = create_engine(database_url, **options)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create all tables in the database."""
        # Model modules register themselves on Base.metadata when imported
        import referral_credits.accounts.models  # noqa: F401
        import referral_credits.purchases.models  # noqa: F401
        import referral_credits.referral.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    def ping(self) -> bool:
        """Check that the store answers a trivial query."""
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except StoreUnavailable:
            return False

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Lock waits, pool checkout timeouts and lost connections surface as
        StoreUnavailable so callers can retry them.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except (OperationalError, PoolTimeoutError) as e:
            session.rollback()
            logger.warning("store_unavailable", error=str(e.orig) if hasattr(e, "orig") else str(e))
            raise StoreUnavailable(f"Ledger store unavailable: {e.__class__.__name__}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
