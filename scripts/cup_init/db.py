"""Database helpers: connection pool, credential profiles, run tracking."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from scripts.cup_init.config import DatabaseConfig, IdentityConfig
from scripts.cup_init.errors import MalformedRecordError
from scripts.cup_init.models import AdministratorProfile, DeployerProfile

logger = logging.getLogger("cup_init.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cup_profiles (
    id                 UUID PRIMARY KEY,
    username           TEXT,
    platform           TEXT,
    role               TEXT NOT NULL,
    access_key_id      TEXT,
    secret_access_key  TEXT,
    preferred_region   TEXT,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS cup_profiles_role_username_idx
    ON cup_profiles (role, username);

CREATE TABLE IF NOT EXISTS cup_reconciliation_runs (
    id             UUID PRIMARY KEY,
    mode           TEXT NOT NULL,
    status         TEXT NOT NULL,
    reason         TEXT,
    access_key_id  TEXT,
    started_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    finished_at    TIMESTAMPTZ,
    error_message  TEXT,
    error_detail   JSONB
);
"""

_PROFILE_COLUMNS = (
    "username", "platform", "role", "access_key_id",
    "secret_access_key", "preferred_region",
)


def _require(row: dict[str, Any], keys: tuple[str, ...], what: str) -> None:
    missing = [k for k in keys if not row.get(k)]
    if missing:
        raise MalformedRecordError(f"{what} record is missing {', '.join(missing)}")


def row_to_administrator(row: dict[str, Any]) -> AdministratorProfile:
    _require(row, ("access_key_id", "secret_access_key", "preferred_region"), "administrator")
    return AdministratorProfile(
        access_key_id=row["access_key_id"],
        secret_access_key=row["secret_access_key"],
        preferred_region=row["preferred_region"],
    )


def row_to_deployer(row: dict[str, Any]) -> DeployerProfile:
    # The secret may legitimately be absent on a hand-edited row; the key id may not
    _require(row, ("username", "role", "access_key_id"), "deployer")
    return DeployerProfile(
        username=row["username"],
        platform=row.get("platform") or "",
        role=row["role"],
        access_key_id=row["access_key_id"],
        secret_access_key=row.get("secret_access_key") or "",
        preferred_region=row.get("preferred_region") or "",
    )


class Database:
    """Thin wrapper around a ThreadedConnectionPool with profile helpers.

    Also serves as the credential store consumed by the reconciliation
    engine: administrator lookup plus count/find/delete/insert of the
    deployer profile.
    """

    def __init__(self, config: DatabaseConfig, identity: Optional[IdentityConfig] = None) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )
        self._identity = identity or IdentityConfig()

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a dict cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def ensure_schema(self) -> None:
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("Schema ensured")

    # ------------------------------------------------------------------
    # Credential profiles
    # ------------------------------------------------------------------

    def find_administrator(self) -> Optional[AdministratorProfile]:
        with self.transaction() as cur:
            cur.execute(
                """SELECT access_key_id, secret_access_key, preferred_region
                   FROM cup_profiles
                   WHERE role = %s
                   ORDER BY created_at""",
                (self._identity.admin_role,),
            )
            rows = cur.fetchall()
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning("Found %d administrator profiles, using the oldest", len(rows))
        return row_to_administrator(rows[0])

    def count_deployer_profiles(self) -> int:
        with self.transaction() as cur:
            cur.execute(
                """SELECT COUNT(*) AS n FROM cup_profiles
                   WHERE username = %s AND role = %s""",
                (self._identity.deployer_username, self._identity.deployer_role),
            )
            return int(cur.fetchone()["n"])

    def find_deployer_profile(self) -> Optional[DeployerProfile]:
        with self.transaction() as cur:
            cur.execute(
                f"""SELECT {", ".join(_PROFILE_COLUMNS)}
                    FROM cup_profiles
                    WHERE username = %s AND role = %s
                    ORDER BY created_at LIMIT 1""",
                (self._identity.deployer_username, self._identity.deployer_role),
            )
            row = cur.fetchone()
        return row_to_deployer(row) if row else None

    def delete_all_deployer_profiles(self) -> int:
        with self.transaction() as cur:
            cur.execute(
                """DELETE FROM cup_profiles
                   WHERE username = %s AND role = %s""",
                (self._identity.deployer_username, self._identity.deployer_role),
            )
            deleted = cur.rowcount
        logger.info("Deleted %d deployer profiles", deleted)
        return deleted

    def insert_deployer_profile(self, profile: DeployerProfile) -> None:
        record = profile.as_record()
        with self.transaction() as cur:
            cur.execute(
                f"""INSERT INTO cup_profiles (id, {", ".join(_PROFILE_COLUMNS)})
                    VALUES (%s, {", ".join(["%s"] * len(_PROFILE_COLUMNS))})""",
                (str(uuid.uuid4()), *(record[c] for c in _PROFILE_COLUMNS)),
            )
        logger.info("Inserted deployer profile", extra={"key_id": profile.access_key_id})

    # ------------------------------------------------------------------
    # Reconciliation run tracking
    # ------------------------------------------------------------------

    def record_run(
        self,
        run_id: str,
        mode: str,
        status: str,
        started_at: datetime,
        reason: Optional[str] = None,
        access_key_id: Optional[str] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[dict] = None,
    ) -> None:
        """Insert a finished cup_reconciliation_runs row."""
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO cup_reconciliation_runs
                   (id, mode, status, reason, access_key_id, started_at,
                    finished_at, error_message, error_detail)
                   VALUES (%s, %s, %s, %s, %s, %s, NOW(), %s, %s)""",
                (
                    run_id,
                    mode,
                    status,
                    reason,
                    access_key_id,
                    started_at,
                    error_message,
                    psycopg2.extras.Json(error_detail) if error_detail else None,
                ),
            )

    def get_recent_runs(self, mode: Optional[str] = None, limit: int = 10) -> list[dict[str, Any]]:
        """Fetch recent reconciliation runs for status display."""
        with self.transaction() as cur:
            if mode:
                cur.execute(
                    """SELECT id, mode, status, reason, access_key_id,
                              started_at, finished_at, error_message
                       FROM cup_reconciliation_runs
                       WHERE mode = %s
                       ORDER BY started_at DESC LIMIT %s""",
                    (mode, limit),
                )
            else:
                cur.execute(
                    """SELECT id, mode, status, reason, access_key_id,
                              started_at, finished_at, error_message
                       FROM cup_reconciliation_runs
                       ORDER BY started_at DESC LIMIT %s""",
                    (limit,),
                )
            return [dict(row) for row in cur.fetchall()]
