"""
User and group operations guarded by the access-control facade.
"""

from typing import List, Protocol, Sequence

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger

from .authz.engine import AccessControl
from .authz.principal import Judgement, Principal
from .domain.models import (
    CreateGroupParams, CreateUserParams, Group, GroupCore, GroupId,
    UpdateGroupParams, UpdateUserParams, User, UserId
)


class UserRepository(Protocol):

    async def get_user(self, user_id: UserId) -> User: ...

    async def list_users(self) -> List[User]: ...

    async def create_user(self, params: CreateUserParams) -> User: ...

    async def update_user(self, user_id: UserId, params: UpdateUserParams) -> User: ...


class GroupRepository(Protocol):

    async def get_group(self, group_id: GroupId) -> Group: ...

    async def list_groups(self) -> List[GroupCore]: ...

    async def create_group(self, params: CreateGroupParams) -> Group: ...

    async def update_group(self, group_id: GroupId, params: UpdateGroupParams) -> Group: ...

    async def update_group_members(self, group_id: GroupId, members: Sequence[UserId]) -> Group: ...


def ensure_allowed(judgement: Judgement, by: Principal, operation: str):
    """Turn a Deny into the matching authentication/authorization error."""
    if judgement.is_allowed:
        return
    if by.is_anonymous:
        raise AuthenticationError("Unauthenticated access", {"operation": operation})
    raise AuthorizationError("Operation not permitted", {"operation": operation})


class UserService:
    """User operations."""

    def __init__(self, access: AccessControl, repository: UserRepository):
        self.access = access
        self.repository = repository
        self.logger = get_logger("directory.service.users")

    async def get_user(self, by: Principal, user_id: UserId) -> User:
        ensure_allowed(await self.access.judge_get_user(by, user_id), by, "get-user")
        user = await self.repository.get_user(user_id)
        self.logger.debug("Retrieved user", user_id=str(user.id))
        return user

    async def list_users(self, by: Principal) -> List[User]:
        ensure_allowed(await self.access.judge_list_users(by), by, "list-users")
        users = await self.repository.list_users()
        self.logger.debug("Listed users", count=len(users))
        return users

    async def create_user(self, by: Principal, params: CreateUserParams) -> User:
        ensure_allowed(await self.access.judge_create_user(by, params), by, "create-user")
        user = await self.repository.create_user(params)
        self.logger.debug("Created user", user_id=str(user.id))
        return user

    async def update_user(self, by: Principal, user_id: UserId, params: UpdateUserParams) -> User:
        ensure_allowed(await self.access.judge_update_user(by, user_id, params), by, "update-user")
        user = await self.repository.update_user(user_id, params)
        self.logger.debug("Updated user", user_id=str(user.id))
        return user


class GroupService:
    """Group operations."""

    def __init__(self, access: AccessControl, repository: GroupRepository):
        self.access = access
        self.repository = repository
        self.logger = get_logger("directory.service.groups")

    async def get_group(self, by: Principal, group_id: GroupId) -> Group:
        ensure_allowed(await self.access.judge_get_group(by, group_id), by, "get-group")
        group = await self.repository.get_group(group_id)
        self.logger.debug("Retrieved group", group_id=str(group.id))
        return group

    async def list_groups(self, by: Principal) -> List[GroupCore]:
        ensure_allowed(await self.access.judge_list_groups(by), by, "list-groups")
        groups = await self.repository.list_groups()
        self.logger.debug("Listed groups", count=len(groups))
        return groups

    async def create_group(self, by: Principal, params: CreateGroupParams) -> Group:
        ensure_allowed(await self.access.judge_create_group(by, params), by, "create-group")
        group = await self.repository.create_group(params)
        self.logger.debug("Created group", group_id=str(group.id), members=len(group.members))
        return group

    async def update_group(self, by: Principal, group_id: GroupId, params: UpdateGroupParams) -> Group:
        ensure_allowed(await self.access.judge_update_group(by, group_id, params), by, "update-group")
        group = await self.repository.update_group(group_id, params)
        self.logger.debug("Updated group", group_id=str(group.id))
        return group

    async def update_group_members(self, by: Principal, group_id: GroupId, members: Sequence[UserId]) -> Group:
        judgement = await self.access.judge_update_group_members(by, group_id, members)
        ensure_allowed(judgement, by, "update-group-members")
        group = await self.repository.update_group_members(group_id, members)
        self.logger.debug("Updated group members", group_id=str(group.id), members=len(group.members))
        return group
