"""Database repository for teams and users."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Tuple

from psycopg import OperationalError
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.errors import ProvisioningConflict, StoreUnavailable
from .domain.tenant import Role, Team, User

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS teams (
    team_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    plan TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL,
    email TEXT NOT NULL,
    name TEXT,
    team_id TEXT NOT NULL REFERENCES teams (team_id),
    role TEXT NOT NULL CHECK (role IN ('admin', 'member')),
    created_at TIMESTAMPTZ NOT NULL,
    CONSTRAINT users_external_id_key UNIQUE (external_id)
);

CREATE INDEX IF NOT EXISTS users_team_id_idx ON users (team_id);
"""

_USER_COLUMNS = "user_id, external_id, email, team_id, role, created_at, name"
_TEAM_COLUMNS = "team_id, name, plan, created_at"


class TenantRepository:
    """Postgres-backed team and user persistence.

    The unique constraint on ``users.external_id`` decides provisioning races;
    a violation surfaces as :class:`ProvisioningConflict`. Connection and pool
    failures surface as :class:`StoreUnavailable`.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _store_errors(self) -> Iterator[None]:
        try:
            yield
        except (OperationalError, PoolTimeout) as exc:
            raise StoreUnavailable("tenant store unreachable") from exc

    def apply_schema(self) -> None:
        """Create the tables when they do not exist yet."""
        with self._store_errors(), self._pool.connection() as conn:
            conn.execute(SCHEMA_SQL)

    def find_user_by_external_id(self, external_id: str) -> User | None:
        """Return the user bound to ``external_id`` or ``None``."""
        with self._store_errors(), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE external_id = %s",
                    (external_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_user(row)

    def create_team_with_admin(
        self,
        *,
        external_id: str,
        email: str,
        display_name: str | None,
        team_name: str,
        plan: str,
    ) -> Tuple[Team, User]:
        """Insert a team and its admin user in a single transaction."""
        team_id = str(uuid.uuid4())
        user_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._store_errors(), self._pool.connection() as conn:
            try:
                with conn.transaction(), conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO teams (team_id, name, plan, created_at)
                        VALUES (%s, %s, %s, %s)
                        RETURNING {_TEAM_COLUMNS}
                        """,
                        (team_id, team_name, plan, now),
                    )
                    team_row = cur.fetchone()
                    cur.execute(
                        f"""
                        INSERT INTO users (user_id, external_id, email, name, team_id, role, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_USER_COLUMNS}
                        """,
                        (user_id, external_id, email, display_name, team_id, Role.admin.value, now),
                    )
                    user_row = cur.fetchone()
            except UniqueViolation as exc:
                raise ProvisioningConflict(external_id) from exc
        return self._map_team(team_row), self._map_user(user_row)

    def get_team(self, team_id: str) -> Team | None:
        with self._store_errors(), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_TEAM_COLUMNS} FROM teams WHERE team_id = %s", (team_id,))
                row = cur.fetchone()
        if not row:
            return None
        return self._map_team(row)

    def rename_team(self, team_id: str, name: str) -> Team | None:
        return self._update_team(team_id, "name", name)

    def update_plan(self, team_id: str, plan: str) -> Team | None:
        return self._update_team(team_id, "plan", plan)

    def _update_team(self, team_id: str, column: str, value: str) -> Team | None:
        # column is one of the fixed names passed by rename_team/update_plan
        with self._store_errors(), self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"UPDATE teams SET {column} = %s WHERE team_id = %s RETURNING {_TEAM_COLUMNS}",
                    (value, team_id),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_team(row)

    def _map_team(self, row: tuple) -> Team:
        return Team(team_id=row[0], name=row[1], plan=row[2], created_at=row[3])

    def _map_user(self, row: tuple) -> User:
        """Convert a raw database tuple into the domain ``User`` dataclass."""
        return User(
            user_id=row[0],
            external_id=row[1],
            email=row[2],
            team_id=row[3],
            role=Role(row[4]),
            created_at=row[5],
            name=row[6],
        )
