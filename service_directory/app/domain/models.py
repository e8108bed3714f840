"""
Domain data models for the Directory service.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NewType

import uuid6
from pydantic import BaseModel, Field

UserId = NewType("UserId", uuid.UUID)
GroupId = NewType("GroupId", uuid.UUID)


def new_id() -> uuid.UUID:
    """Generate a time-ordered (version 7) identifier."""
    return uuid.UUID(int=uuid6.uuid7().int)


@dataclass(frozen=True)
class User:
    """Directory user."""
    id: UserId
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class GroupCore:
    """Group without its membership list."""
    id: GroupId
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Group:
    """Group with its authoritative membership list."""
    id: GroupId
    name: str
    created_at: datetime
    updated_at: datetime
    members: List[UserId] = field(default_factory=list)


@dataclass(frozen=True)
class CreateUserParams:
    name: str


@dataclass(frozen=True)
class UpdateUserParams:
    name: str


@dataclass(frozen=True)
class CreateGroupParams:
    name: str
    members: List[UserId] = field(default_factory=list)


@dataclass(frozen=True)
class UpdateGroupParams:
    name: str


class UserResponse(BaseModel):
    """Response model for a user."""
    id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(id=user.id, name=user.name, created_at=user.created_at, updated_at=user.updated_at)


class GroupResponse(BaseModel):
    """Response model for a group with members."""
    id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: datetime
    members: List[uuid.UUID]

    @classmethod
    def from_domain(cls, group: Group) -> "GroupResponse":
        return cls(
            id=group.id,
            name=group.name,
            created_at=group.created_at,
            updated_at=group.updated_at,
            members=list(group.members)
        )


class GroupCoreResponse(BaseModel):
    """Response model for a group listing entry."""
    id: uuid.UUID
    name: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, group: GroupCore) -> "GroupCoreResponse":
        return cls(id=group.id, name=group.name, created_at=group.created_at, updated_at=group.updated_at)


class CreateUserRequest(BaseModel):
    """Request model for creating a user."""
    name: str = Field(..., min_length=1, description="User name")

    def to_params(self) -> CreateUserParams:
        return CreateUserParams(name=self.name)


class UpdateUserRequest(BaseModel):
    """Request model for updating a user."""
    name: str = Field(..., min_length=1, description="User name")

    def to_params(self) -> UpdateUserParams:
        return UpdateUserParams(name=self.name)


class CreateGroupRequest(BaseModel):
    """Request model for creating a group."""
    name: str = Field(..., min_length=1, description="Group name")
    members: List[uuid.UUID] = Field(default_factory=list, description="Initial member user IDs")

    def to_params(self) -> CreateGroupParams:
        return CreateGroupParams(name=self.name, members=[UserId(m) for m in self.members])


class UpdateGroupRequest(BaseModel):
    """Request model for updating a group."""
    name: str = Field(..., min_length=1, description="Group name")

    def to_params(self) -> UpdateGroupParams:
        return UpdateGroupParams(name=self.name)
