"""
PostgreSQL persistence layer for the Directory service.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

import asyncpg

from shared.errors import NotFoundError, RepositoryError
from shared.logging import get_logger

from ..domain.models import (
    CreateGroupParams, CreateUserParams, Group, GroupCore, GroupId,
    UpdateGroupParams, UpdateUserParams, User, UserId, new_id
)

GROUP_WITH_MEMBERS_SQL = """
    SELECT g.id, g.name, g.created_at, g.updated_at,
           COALESCE(
               array_agg(m.user_id ORDER BY m.user_id) FILTER (WHERE m.user_id IS NOT NULL),
               '{}'
           ) AS members
    FROM groups g
    LEFT JOIN group_members m ON m.group_id = g.id
    WHERE g.id = $1
    GROUP BY g.id
"""


class PostgreSQLRepository:
    """PostgreSQL storage for users, groups and group membership."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("directory.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            await self._create_tables()
            self.logger.info("PostgreSQL persistence started")
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise RepositoryError("Failed to start PostgreSQL persistence", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id UUID PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    id UUID PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS group_members (
                    group_id UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    PRIMARY KEY (group_id, user_id)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members(user_id);
            """)

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, mapping driver errors to RepositoryError."""
        if self.pool is None:
            raise RepositoryError("Repository is not started", {"operation": operation})
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Postgres error", operation=operation, error=str(e))
            raise RepositoryError(f"Failed to {operation}", {"error": str(e)}) from e

    # Users

    async def get_user(self, user_id: UserId) -> User:
        async with self._connection("fetch user") as conn:
            row = await conn.fetchrow("""
                SELECT id, name, created_at, updated_at FROM users WHERE id = $1
            """, user_id)
        if row is None:
            raise NotFoundError("User not found", {"user_id": str(user_id)})
        return self._row_to_user(row)

    async def list_users(self) -> List[User]:
        async with self._connection("list users") as conn:
            rows = await conn.fetch("""
                SELECT id, name, created_at, updated_at FROM users ORDER BY id
            """)
        return [self._row_to_user(row) for row in rows]

    async def create_user(self, params: CreateUserParams) -> User:
        async with self._connection("create user") as conn:
            row = await conn.fetchrow("""
                INSERT INTO users (id, name) VALUES ($1, $2)
                RETURNING id, name, created_at, updated_at
            """, new_id(), params.name)
        user = self._row_to_user(row)
        self.logger.info("User saved", user_id=str(user.id))
        return user

    async def update_user(self, user_id: UserId, params: UpdateUserParams) -> User:
        async with self._connection("update user") as conn:
            row = await conn.fetchrow("""
                UPDATE users SET name = $2, updated_at = NOW() WHERE id = $1
                RETURNING id, name, created_at, updated_at
            """, user_id, params.name)
        if row is None:
            raise NotFoundError("User not found", {"user_id": str(user_id)})
        return self._row_to_user(row)

    # Groups

    async def get_group(self, group_id: GroupId) -> Group:
        async with self._connection("fetch group") as conn:
            row = await conn.fetchrow(GROUP_WITH_MEMBERS_SQL, group_id)
        if row is None:
            raise NotFoundError("Group not found", {"group_id": str(group_id)})
        return self._row_to_group(row)

    async def get_group_members(self, group_id: GroupId) -> List[UserId]:
        """Current authoritative membership of a group."""
        group = await self.get_group(group_id)
        return list(group.members)

    async def list_groups(self) -> List[GroupCore]:
        async with self._connection("list groups") as conn:
            rows = await conn.fetch("""
                SELECT id, name, created_at, updated_at FROM groups ORDER BY id
            """)
        return [
            GroupCore(id=GroupId(row["id"]), name=row["name"],
                      created_at=row["created_at"], updated_at=row["updated_at"])
            for row in rows
        ]

    async def create_group(self, params: CreateGroupParams) -> Group:
        group_id = GroupId(new_id())
        members = _unique(params.members)
        async with self._connection("create group") as conn:
            async with conn.transaction():
                await self._check_users_exist(conn, members)
                await conn.execute("""
                    INSERT INTO groups (id, name) VALUES ($1, $2)
                """, group_id, params.name)
                await conn.execute("""
                    INSERT INTO group_members (group_id, user_id)
                    SELECT $1, unnest($2::uuid[])
                """, group_id, members)
                row = await conn.fetchrow(GROUP_WITH_MEMBERS_SQL, group_id)
        group = self._row_to_group(row)
        self.logger.info("Group saved", group_id=str(group.id), members=len(group.members))
        return group

    async def update_group(self, group_id: GroupId, params: UpdateGroupParams) -> Group:
        async with self._connection("update group") as conn:
            async with conn.transaction():
                result = await conn.execute("""
                    UPDATE groups SET name = $2, updated_at = NOW() WHERE id = $1
                """, group_id, params.name)
                if result == "UPDATE 0":
                    raise NotFoundError("Group not found", {"group_id": str(group_id)})
                row = await conn.fetchrow(GROUP_WITH_MEMBERS_SQL, group_id)
        return self._row_to_group(row)

    async def update_group_members(self, group_id: GroupId, members: Sequence[UserId]) -> Group:
        """Replace the membership of a group in one transaction."""
        members = _unique(members)
        async with self._connection("update group members") as conn:
            async with conn.transaction():
                locked = await conn.fetchval("""
                    SELECT id FROM groups WHERE id = $1 FOR UPDATE
                """, group_id)
                if locked is None:
                    raise NotFoundError("Group not found", {"group_id": str(group_id)})
                await self._check_users_exist(conn, members)

                await conn.execute("DELETE FROM group_members WHERE group_id = $1", group_id)
                await conn.execute("""
                    INSERT INTO group_members (group_id, user_id)
                    SELECT $1, unnest($2::uuid[])
                """, group_id, members)
                await conn.execute("UPDATE groups SET updated_at = NOW() WHERE id = $1", group_id)
                row = await conn.fetchrow(GROUP_WITH_MEMBERS_SQL, group_id)
        group = self._row_to_group(row)
        self.logger.info("Group members replaced", group_id=str(group_id), members=len(group.members))
        return group

    async def _check_users_exist(self, conn: asyncpg.Connection, members: Sequence[UserId]):
        if not members:
            return
        found = await conn.fetchval("""
            SELECT COUNT(*) FROM users WHERE id = ANY($1::uuid[])
        """, list(members))
        if found != len(members):
            raise NotFoundError("Some members not found", {"requested": len(members), "found": found})

    def _row_to_user(self, row) -> User:
        """Convert database row to User object."""
        return User(
            id=UserId(row["id"]),
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    def _row_to_group(self, row) -> Group:
        """Convert database row to Group object."""
        return Group(
            id=GroupId(row["id"]),
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            members=[UserId(m) for m in row["members"]]
        )

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            return False


def _unique(members: Sequence[UserId]) -> List[UserId]:
    return list(dict.fromkeys(members))
