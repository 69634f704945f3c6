import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from chatstore.consistency import ConsistencyLevel
from chatstore.errors import NotInitialized, StorageUnavailable

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


class Database:
    """
    Storage connection handle.

    Constructed once at startup, connected explicitly, and passed to every
    store operation. Until `connect()` succeeds every session request raises
    NotInitialized.

    The replication factor describes the deployment the store talks to; it
    decides how many replica acknowledgements each consistency level needs.
    """

    def __init__(self, url: str, replication_factor: int = 1):
        self.url = url
        self.replication_factor = replication_factor
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def connect(self) -> None:
        """Create the engine and the tables. Called during application startup."""
        if self.is_connected:
            return

        logger.info(f"Connecting to database: {self.url}")
        kwargs = {"echo": False}
        if self.url.startswith("sqlite"):
            # SQLite connections are shared with FastAPI's threadpool
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        engine = create_engine(self.url, **kwargs)
        try:
            # Import models to register them with Base.metadata
            from chatstore import models  # noqa: F401

            Base.metadata.create_all(bind=engine)
        except DBAPIError as e:
            engine.dispose()
            logger.error(f"Failed to initialize database: {e}")
            raise StorageUnavailable("Failed to connect to database") from e

        self._engine = engine
        self._sessionmaker = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        logger.info("Database initialized successfully")

    def close(self) -> None:
        """Dispose of the engine. Safe to call when not connected."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database connection closed")
        self._engine = None
        self._sessionmaker = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise NotInitialized()
        return self._engine

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise NotInitialized()
        return self._sessionmaker()

    def require(self, level: ConsistencyLevel) -> None:
        """
        Fail fast when the level needs more replicas than the deployment has.

        Raises:
            StorageUnavailable: if the replica requirement cannot be met
        """
        required = level.required_replicas(self.replication_factor)
        if required > self.replication_factor:
            raise StorageUnavailable(
                f"Cannot achieve consistency level {level.value}",
                details={
                    "consistency": level.value,
                    "required_replicas": required,
                    "alive_replicas": self.replication_factor,
                },
            )

    def check_health(self) -> bool:
        """
        Check if the database is reachable and the schema is applied.

        Returns:
            True if DB is healthy and both tables exist, False otherwise.
        """
        if not self.is_connected:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                tables = set(inspect(conn).get_table_names())
            missing = {"messages", "message_dedupe"} - tables
            if missing:
                logger.error(f"Database schema not applied: missing tables {sorted(missing)}")
                return False
            return True
        except DBAPIError as e:
            logger.error(f"Database health check failed: {e}")
            return False


@contextmanager
def storage_errors(action: str) -> Generator[None, None, None]:
    """
    Translate driver failures into StorageUnavailable.

    IntegrityError passes through untouched; callers that rely on unique
    constraints handle it themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as e:
        logger.error(f"Storage failure during {action}: {e}")
        raise StorageUnavailable(f"Storage unavailable during {action}") from e

