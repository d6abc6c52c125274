"""
Migration Runner - Runs Alembic migrations at deploy time.

Applies pending migrations only; a database already at head is left alone.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def to_sync_url(database_url: str) -> str:
    """
    Get synchronous database URL for migrations.

    Alembic's command API uses synchronous connections, so async driver
    names are swapped for their sync counterparts.
    """
    return database_url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def _get_current_revision(engine: Engine) -> str | None:
    """Get the current database revision."""
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _alembic_config(sync_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI_PATH.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    return alembic_cfg


def check_migrations_status(database_url: str) -> MigrationStatus:
    """Check migration status without applying anything."""
    sync_url = to_sync_url(database_url)
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=ScriptDirectory.from_config(alembic_cfg).get_current_head(),
        )
    finally:
        engine.dispose()


def run_migrations(database_url: str) -> MigrationStatus:
    """
    Run pending Alembic migrations.

    Raises:
        RuntimeError: Migration failed
    """
    if not ALEMBIC_INI_PATH.exists():
        raise RuntimeError(f"Alembic config not found at {ALEMBIC_INI_PATH}")

    status = check_migrations_status(database_url)
    if not status.pending:
        logger.info("database_schema_up_to_date", revision=status.current_revision)
        return status

    logger.info(
        "running_migrations", current=status.current_revision, head=status.head_revision
    )
    try:
        command.upgrade(_alembic_config(to_sync_url(database_url)), "head")
    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e

    status = check_migrations_status(database_url)
    logger.info("migrations_complete", revision=status.current_revision)
    return status
