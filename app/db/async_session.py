from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from typing import AsyncGenerator, Optional
import logging
import asyncio

from app.core.config import settings

logger = logging.getLogger(__name__)


class AsyncDatabaseManager:
    """
    Manages async database connections and sessions.

    This class provides centralized management of the async engine and the
    session factory. Request handlers get sessions through ``get_async_db``;
    background plan-generation workers open their own sessions from
    ``session_factory`` because they outlive the request that started them.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.async_database_url
        self.async_engine = None
        self.async_session_factory = None
        self._is_initialized = False
        self._initialize_engine()

    def _initialize_engine(self):
        """Initialize the async database engine."""
        try:
            if not self.database_url:
                raise ValueError("Async database URL is not configured")

            logger.info(f"Initializing async database engine with URL: {self.database_url[:50]}...")
            logger.info(f"Environment: {settings.ENVIRONMENT}")

            engine_kwargs = {"echo": settings.ASYNC_DB_ECHO}

            if self.database_url.startswith("postgresql+asyncpg"):
                pool_size = settings.ASYNC_DB_POOL_SIZE
                max_overflow = settings.ASYNC_DB_MAX_OVERFLOW

                if settings.ENVIRONMENT == "development":
                    pool_size = min(pool_size, 5)
                    max_overflow = min(max_overflow, 5)

                logger.info(f"Pool configuration - Size: {pool_size}, Max Overflow: {max_overflow}, "
                            f"Timeout: {settings.ASYNC_DB_POOL_TIMEOUT}s, Recycle: {settings.ASYNC_DB_POOL_RECYCLE}s")

                engine_kwargs.update(
                    pool_pre_ping=settings.ASYNC_DB_POOL_PRE_PING,
                    pool_size=pool_size,
                    max_overflow=max_overflow,
                    pool_recycle=settings.ASYNC_DB_POOL_RECYCLE,
                    pool_timeout=settings.ASYNC_DB_POOL_TIMEOUT,
                    connect_args={
                        "server_settings": {
                            "application_name": "fitcoach_backend_async",
                        },
                        "command_timeout": settings.ASYNC_DB_COMMAND_TIMEOUT,
                    },
                )

            self.async_engine = create_async_engine(self.database_url, **engine_kwargs)

            self.async_session_factory = async_sessionmaker(
                bind=self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Keep objects accessible after commit
                autoflush=False,
            )

            self._is_initialized = True
            logger.info("Async database engine initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize async database engine: {e}")
            raise

    @property
    def session_factory(self) -> async_sessionmaker:
        if not self._is_initialized:
            raise RuntimeError("AsyncDatabaseManager is not initialized")
        return self.async_session_factory

    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with proper lifecycle management.

        Yields:
            AsyncSession: Database session for async operations

        Raises:
            RuntimeError: If the database manager is not initialized
            SQLAlchemyError: For database-related errors
        """
        if not self._is_initialized:
            raise RuntimeError("AsyncDatabaseManager is not initialized")

        async with self.async_session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error in session: {e}")
                raise
            except Exception:
                await session.rollback()
                raise

    async def test_connection(self) -> bool:
        """
        Test the database connection.

        Returns:
            bool: True if connection is successful, False otherwise
        """
        try:
            async with self.async_session_factory() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    async def close(self):
        """Dispose of the engine and all pooled connections."""
        if self.async_engine:
            try:
                await self.async_engine.dispose()
                logger.info("Async database engine disposed successfully")
            except Exception as e:
                logger.error(f"Error disposing async database engine: {e}")
            finally:
                self._is_initialized = False
                self.async_engine = None
                self.async_session_factory = None


# Global async database manager instance (singleton pattern)
_async_db_manager: Optional[AsyncDatabaseManager] = None
_manager_lock = asyncio.Lock()


async def get_async_db_manager() -> AsyncDatabaseManager:
    """
    Get or create the global async database manager instance.

    Returns:
        AsyncDatabaseManager: The global database manager instance
    """
    global _async_db_manager

    if _async_db_manager is None:
        async with _manager_lock:
            # Double-check locking pattern
            if _async_db_manager is None:
                _async_db_manager = AsyncDatabaseManager()
                logger.info("Created new AsyncDatabaseManager singleton instance")

    return _async_db_manager


async def close_async_db_manager():
    """Close and forget the global database manager."""
    global _async_db_manager

    if _async_db_manager is not None:
        await _async_db_manager.close()
        _async_db_manager = None


# Async dependency injection function for FastAPI
async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for async database session injection.

    The session is rolled back on any exception and closed after use.

    Example:
        @router.get("/active")
        async def get_active_plan(db: AsyncSession = Depends(get_async_db)):
            ...
    """
    manager = await get_async_db_manager()
    async for session in manager.get_async_session():
        yield session


# Database startup and shutdown handlers
async def startup_async_database():
    """
    Initialize async database connections on application startup.

    Raises:
        RuntimeError: If the database is unreachable
    """
    logger.info("Starting async database initialization...")
    manager = await get_async_db_manager()

    connection_test = await manager.test_connection()
    if not connection_test:
        raise RuntimeError("Failed to establish database connection during startup")

    logger.info("Async database startup completed")


async def shutdown_async_database():
    """Clean up async database connections on application shutdown."""
    try:
        logger.info("Starting async database shutdown...")
        await close_async_db_manager()
        logger.info("Async database shutdown completed successfully")
    except Exception as e:
        logger.error(f"Error during async database shutdown: {e}")
