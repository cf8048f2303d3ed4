"""
Database management utilities for migrations and health checks.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text

from favorqueue.core.config import get_settings
from favorqueue.db.session import engine

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

EXPECTED_TABLES = ["ticket", "ticket_counter"]


class DatabaseManager:
    """
    Database management utility for migrations and operations.
    Handles schema versioning, migration execution, and database health checks.
    """

    def __init__(self):
        self.settings = get_settings()
        self.alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
        self.alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
        self.alembic_cfg.set_main_option("sqlalchemy.url", str(self.settings.DB_URL))

    async def get_current_revision(self) -> Optional[str]:
        """Get the current database revision."""
        async with engine.connect() as connection:
            tables = await connection.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
            if "alembic_version" not in tables:
                return None
            result = await connection.execute(text("SELECT version_num FROM alembic_version"))
            row = result.fetchone()
            return row[0] if row else None

    def get_available_revisions(self) -> List[str]:
        """Get list of available migration revisions, oldest first."""
        script_dir = ScriptDirectory.from_config(self.alembic_cfg)
        return list(reversed([rev.revision for rev in script_dir.walk_revisions()]))

    async def run_migrations_async(self, target_revision: Optional[str] = None) -> None:
        """Run Alembic migrations from an async context without event-loop conflicts."""
        rev = target_revision or "head"
        await asyncio.to_thread(command.upgrade, self.alembic_cfg, rev)
        logger.info(f"Successfully ran migrations to {rev}")

    async def check_database_health(self) -> Dict[str, Any]:
        """Connectivity, migration and schema checks."""
        health_status: Dict[str, Any] = {
            "status": "healthy",
            "checks": {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with engine.connect() as connection:
                start_time = datetime.now(timezone.utc)
                await connection.execute(text("SELECT 1"))
                elapsed = datetime.now(timezone.utc) - start_time
                health_status["checks"]["connectivity"] = {
                    "status": "pass",
                    "response_time_ms": int(elapsed.total_seconds() * 1000),
                }

                tables = await connection.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
                missing_tables = [table for table in EXPECTED_TABLES if table not in tables]
                health_status["checks"]["schema"] = {
                    "status": "pass" if not missing_tables else "fail",
                    "missing_tables": missing_tables,
                }

            current = await self.get_current_revision()
            available = self.get_available_revisions()
            health_status["checks"]["migrations"] = {
                "status": "pass" if available and current == available[-1] else "warn",
                "current_revision": current,
                "latest_revision": available[-1] if available else None,
            }

            statuses = [check["status"] for check in health_status["checks"].values()]
            if "fail" in statuses:
                health_status["status"] = "unhealthy"
            elif "warn" in statuses:
                health_status["status"] = "degraded"

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["error"] = str(e)

        return health_status


# Global database manager instance
db_manager = DatabaseManager()


async def initialize_database() -> None:
    """Bring the schema to the latest revision."""
    logger.info("Running database migrations...")
    try:
        await db_manager.run_migrations_async()
    except Exception as e:
        logger.error(f"Database migrations failed: {e}")
        raise RuntimeError("Failed to run database migrations") from e

