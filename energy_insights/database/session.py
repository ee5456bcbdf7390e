"""
Database Session Management

Handles connection pooling, session lifecycle, and database initialization.

The `Database` handle is constructed explicitly at process start, passed to
whoever needs it, and closed at shutdown:

    async with Database(url) as db:
        async with db.session() as session:
            ...

Interactive reads run under a short server-side statement timeout; bulk
writes go through `transaction()` with their own, longer budget.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from energy_insights.utils.config import Settings, get_settings
from .models import Base, STATE_GENERATION_VIEW

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"


# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def normalize_database_url(url: str) -> str:
    """
    Normalize a PostgreSQL URL to the asyncpg driver.

    Hosting providers hand out postgres:// or postgresql:// URLs;
    SQLAlchemy's asyncio engine needs postgresql+asyncpg://.
    """
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def mask_url(url: str) -> str:
    """Mask the password in a database URL for logging."""
    if "@" not in url:
        return url
    creds, host = url.rsplit("@", 1)
    if ":" in creds.split("//", 1)[-1]:
        creds = creds.rsplit(":", 1)[0] + ":***"
    return f"{creds}@{host}"


# =============================================================================
# DATABASE HANDLE
# =============================================================================

class Database:
    """
    Owns the async engine and session factory for one process.

    Lifecycle: connect() once at startup, close() once at shutdown.
    Never shared through module globals.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        raw_url = url or self.settings.DATABASE_URL
        if not raw_url:
            raise ValueError("DATABASE_URL is not configured")
        self.url = normalize_database_url(raw_url)
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected; call connect() first")
        return self._engine

    async def connect(self) -> "Database":
        """Create the pooled engine and session factory."""
        if self._engine is not None:
            return self

        read_timeout_ms = self.settings.READ_TIMEOUT_SECONDS * 1000
        self._engine = create_async_engine(
            self.url,
            pool_size=5,                # Base connections
            max_overflow=10,            # Additional connections under load
            pool_timeout=30,            # Wait for connection
            pool_recycle=1800,          # Recycle connections after 30 min
            pool_pre_ping=True,         # Verify connections before use
            connect_args={
                "server_settings": {"statement_timeout": str(read_timeout_ms)},
            },
            echo=self.settings.ENVIRONMENT == "debug",
        )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,  # Don't expire objects after commit
        )
        logger.info(f"Created PostgreSQL engine with connection pooling: {mask_url(self.url)}")
        return self

    async def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")

    async def __aenter__(self) -> "Database":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # SESSION MANAGEMENT
    # =========================================================================

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Read session under the default (short) statement timeout.

        Usage:
            async with db.session() as session:
                await session.execute(...)
        """
        if self._session_factory is None:
            raise RuntimeError("Database is not connected; call connect() first")
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(
        self,
        timeout_seconds: Optional[int] = None,
    ) -> AsyncIterator[AsyncSession]:
        """
        Explicit transaction with its own statement timeout.

        Commits at the end of the block. Any exception, including
        cancellation from an outer timeout, rolls everything back.
        """
        timeout_ms = int((timeout_seconds or self.settings.INGEST_TIMEOUT_SECONDS) * 1000)
        async with self.session() as session:
            try:
                await session.begin()
                await session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    # =========================================================================
    # DATABASE INITIALIZATION
    # =========================================================================

    async def init_db(self, drop_all: bool = False) -> None:
        """
        Initialize database - create all tables, then apply SQL migrations.

        Args:
            drop_all: If True, drop all tables first (USE WITH CAUTION!)
        """
        async with self.engine.begin() as conn:
            if drop_all:
                logger.warning("Dropping all database tables!")
                await conn.execute(text(f"DROP MATERIALIZED VIEW IF EXISTS {STATE_GENERATION_VIEW}"))
                await conn.execute(text("DROP TABLE IF EXISTS schema_migrations"))
                await conn.run_sync(Base.metadata.drop_all)

            logger.info("Creating database tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")

        await self._run_pending_migrations()

    async def _run_pending_migrations(self) -> None:
        """
        Run any pending SQL migrations from the migrations/ directory.

        Migrations are tracked in the schema_migrations table.
        Only migrations that haven't been applied yet are run.
        """
        if not MIGRATIONS_DIR.exists():
            logger.warning(f"Migrations directory not found: {MIGRATIONS_DIR}")
            return

        async with self.engine.begin() as conn:
            await conn.execute(text("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version VARCHAR(50) PRIMARY KEY,
                    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            result = await conn.execute(text("SELECT version FROM schema_migrations"))
            applied = {row[0] for row in result}

        for migration_file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            version = migration_file.stem  # e.g., "001_state_generation_mv"
            if version in applied:
                logger.debug(f"Migration {version} already applied, skipping")
                continue

            logger.info(f"Applying migration: {version}")
            statements = [
                s.strip() for s in migration_file.read_text().split(";") if s.strip()
            ]
            # One transaction per file: a failed migration leaves no trace
            async with self.engine.begin() as conn:
                for statement in statements:
                    await conn.execute(text(statement))
                await conn.execute(
                    text("INSERT INTO schema_migrations (version) VALUES (:version)"),
                    {"version": version},
                )
            logger.info(f"Migration {version} applied successfully")

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    async def check_connection(self) -> bool:
        """
        Check if database connection is working.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False


    async def get_db_info(self) -> Dict[str, Any]:
        """
        Get diagnostic database information.

        Returns connection status, row counts per table, and a small
        sample of the state generation view.
        """
        info: Dict[str, Any] = {
            "connection_url": mask_url(self.url),
            "connected": False,
            "tables": {},
            "view_rows": 0,
            "view_sample": [],
        }

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                info["connected"] = True

                for table in ("states", "plants", "plant_generations"):
                    result = await conn.execute(text(f"SELECT COUNT(*) FROM {table}"))
                    info["tables"][table] = result.scalar_one()

                result = await conn.execute(
                    text(f"SELECT COUNT(*) FROM {STATE_GENERATION_VIEW}")
                )
                info["view_rows"] = result.scalar_one()

                result = await conn.execute(text(f"""
                    SELECT s.code, v.year, v.total_generation
                    FROM {STATE_GENERATION_VIEW} v
                    JOIN states s ON s.id = v.state_id
                    ORDER BY v.total_generation DESC
                    LIMIT 5
                """))
                info["view_sample"] = [
                    {"state": row[0], "year": row[1], "total_generation": float(row[2])}
                    for row in result
                ]
        except Exception as e:
            info["error"] = str(e)
            logger.error(f"Failed to collect database info: {e}")

        pool = self.engine.pool
        info["pool"] = {
            "size": pool.size(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }
        return info
