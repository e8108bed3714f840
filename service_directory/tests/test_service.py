"""
Tests for the guarded user and group services.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from shared.errors import AuthenticationError, AuthorizationError
from service_directory.app.authz.engine import AccessControl
from service_directory.app.authz.principal import Judgement, Principal
from service_directory.app.domain.models import (
    CreateGroupParams, CreateUserParams, Group, GroupId, UpdateGroupParams, User, UserId
)
from service_directory.app.service import GroupService, UserService, ensure_allowed


U1 = UserId(uuid.uuid4())
U2 = UserId(uuid.uuid4())
G1 = GroupId(uuid.uuid4())
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def repository():
    """Repository mock holding U1 and G1 with U1 as its only member."""
    repository = AsyncMock()
    repository.get_group_members.return_value = [U1]
    repository.get_user.return_value = User(U1, "alice", NOW, NOW)
    repository.create_user.return_value = User(U2, "bob", NOW, NOW)
    repository.update_group.return_value = Group(G1, "renamed", NOW, NOW, [U1])
    repository.update_group_members.return_value = Group(G1, "ops", NOW, NOW, [U2])
    return repository


@pytest.fixture
def access(repository):
    return AccessControl.load(repository)


@pytest.fixture
def users(access, repository):
    return UserService(access, repository)


@pytest.fixture
def groups(access, repository):
    return GroupService(access, repository)


def test_ensure_allowed():
    """Test Deny maps to 401 for anonymous callers and 403 otherwise."""
    ensure_allowed(Judgement.ALLOW, Principal.anonymous(), "get-user")

    with pytest.raises(AuthenticationError) as exc_info:
        ensure_allowed(Judgement.DENY, Principal.anonymous(), "get-user")
    assert exc_info.value.status_code == 401

    with pytest.raises(AuthorizationError) as exc_info:
        ensure_allowed(Judgement.DENY, Principal.user(U1), "get-user")
    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {"operation": "get-user"}


@pytest.mark.asyncio
async def test_allowed_operation_reaches_repository(users, repository):
    """Test an allowed read is served from the repository."""
    user = await users.get_user(Principal.user(U1), U1)

    assert user.name == "alice"
    repository.get_user.assert_awaited_once_with(U1)


@pytest.mark.asyncio
async def test_anonymous_registration(users, repository):
    """Test the anonymous principal may create a user."""
    user = await users.create_user(Principal.anonymous(), CreateUserParams(name="bob"))

    assert user.id == U2


@pytest.mark.asyncio
async def test_denied_read_never_touches_repository(users, repository):
    """Test a denied operation has no side effects."""
    with pytest.raises(AuthenticationError):
        await users.list_users(Principal.anonymous())

    repository.list_users.assert_not_called()


@pytest.mark.asyncio
async def test_non_member_cannot_update_group(groups, repository):
    """Test a non-member gets a 403 and the group is unchanged."""
    with pytest.raises(AuthorizationError):
        await groups.update_group(Principal.user(U2), G1, UpdateGroupParams(name="renamed"))

    repository.update_group.assert_not_called()


@pytest.mark.asyncio
async def test_member_updates_group(groups, repository):
    """Test a member may update their group."""
    group = await groups.update_group(Principal.user(U1), G1, UpdateGroupParams(name="renamed"))

    assert group.name == "renamed"
    repository.update_group.assert_awaited_once()


@pytest.mark.asyncio
async def test_member_replaces_members(groups, repository):
    """Test a member may hand the group over to others."""
    group = await groups.update_group_members(Principal.user(U1), G1, [U2])

    assert group.members == [U2]
    repository.update_group_members.assert_awaited_once_with(G1, [U2])


@pytest.mark.asyncio
async def test_anonymous_cannot_create_group(groups, repository):
    """Test anonymous group creation is rejected as unauthenticated."""
    with pytest.raises(AuthenticationError):
        await groups.create_group(Principal.anonymous(), CreateGroupParams(name="ops"))

    repository.create_group.assert_not_called()
