"""
Fact entities and the encoder that builds them from domain values.

A fact entity is a typed record (uid, attributes, relationship parents)
handed to the decision engine as ground truth for one evaluation. The
encoding helpers here are pure: they never look anything up, so callers
must pass in the authoritative values they gathered.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple

from shared.errors import EncodingError

from ..domain.models import CreateGroupParams, GroupId, UserId
from .principal import Principal

USER_TYPE = "User"
GROUP_TYPE = "Group"
ACTION_TYPE = "Action"
ANONYMOUS_ID = "anonymous"

# Singleton resources for actions that have no concrete resource id yet
CREATE_USER_TYPE = "CreateUser"
LIST_USERS_TYPE = "ListUsers"
CREATE_GROUP_TYPE = "CreateGroup"
LIST_GROUPS_TYPE = "ListGroups"
PLACEHOLDER_ID = "singleton"

TYPE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(::[A-Za-z_][A-Za-z0-9_]*)*$")
ENTITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]*$")


@dataclass(frozen=True)
class EntityUid:
    """Typed entity reference, e.g. ``Group::"0190..."``."""
    type: str
    id: str

    def __str__(self) -> str:
        return f'{self.type}::"{self.id}"'


@dataclass(frozen=True)
class Entity:
    """One fact entity."""
    uid: EntityUid
    attrs: Mapping[str, Any] = field(default_factory=dict)
    parents: FrozenSet[EntityUid] = frozenset()


class Entities:
    """Immutable fact set keyed by entity uid."""

    def __init__(self, entities: Iterable[Entity] = ()):
        self._entities: Dict[EntityUid, Entity] = {}
        for entity in entities:
            existing = self._entities.get(entity.uid)
            if existing is not None and existing != entity:
                raise EncodingError(
                    "Conflicting facts for entity",
                    {"uid": str(entity.uid)}
                )
            self._entities[entity.uid] = entity

    def get(self, uid: EntityUid) -> Optional[Entity]:
        return self._entities.get(uid)

    def ancestors(self, uid: EntityUid) -> FrozenSet[EntityUid]:
        """Transitive relationship parents of ``uid``."""
        seen = set()
        pending = [uid]
        while pending:
            entity = self._entities.get(pending.pop())
            if entity is None:
                continue
            for parent in entity.parents:
                if parent not in seen:
                    seen.add(parent)
                    pending.append(parent)
        return frozenset(seen)

    def __contains__(self, uid: object) -> bool:
        return uid in self._entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __repr__(self) -> str:
        return f"Entities({[str(uid) for uid in self._entities]})"


def entity_uid(type_name: str, raw_id: Any) -> EntityUid:
    """Build an entity uid, failing with EncodingError outside the id grammar."""
    if not isinstance(type_name, str) or not TYPE_NAME_PATTERN.match(type_name):
        raise EncodingError("Invalid entity type name", {"type": repr(type_name)})

    if isinstance(raw_id, uuid.UUID):
        entity_id = str(raw_id)
    elif isinstance(raw_id, str):
        entity_id = raw_id
    else:
        raise EncodingError(
            "Entity id must be a UUID or string",
            {"type": type_name, "id": repr(raw_id)}
        )

    if not ENTITY_ID_PATTERN.match(entity_id):
        raise EncodingError("Invalid entity id", {"type": type_name, "id": entity_id})

    return EntityUid(type_name, entity_id)


def action_uid(action_id: str) -> EntityUid:
    return entity_uid(ACTION_TYPE, action_id)


def user_uid(user_id: UserId) -> EntityUid:
    return entity_uid(USER_TYPE, user_id)


def group_uid(group_id: GroupId) -> EntityUid:
    return entity_uid(GROUP_TYPE, group_id)


def placeholder_uid(type_name: str) -> EntityUid:
    return entity_uid(type_name, PLACEHOLDER_ID)


def principal_uid(principal: Principal) -> EntityUid:
    if principal.is_anonymous:
        return entity_uid(USER_TYPE, ANONYMOUS_ID)
    return user_uid(principal.user_id)


def encode_principal(principal: Principal, groups: Iterable[GroupId] = ()) -> Entity:
    """Encode the principal as a User entity.

    ``groups`` must only name the groups relevant to the current decision.
    The anonymous principal never carries membership.
    """
    uid = principal_uid(principal)
    if principal.is_anonymous:
        parents: FrozenSet[EntityUid] = frozenset()
    else:
        parents = frozenset(group_uid(group_id) for group_id in groups)
    return Entity(uid=uid, attrs={"id": uid.id}, parents=parents)


def encode_user(user_id: UserId) -> Entity:
    uid = user_uid(user_id)
    return Entity(uid=uid, attrs={"id": uid.id})


def encode_members(members: Iterable[UserId]) -> Tuple[Dict[str, str], ...]:
    """Encode member ids as ``{"id": ...}`` records, dropping duplicates."""
    records = []
    seen = set()
    for member in members:
        member_id = user_uid(member).id
        if member_id in seen:
            continue
        seen.add(member_id)
        records.append({"id": member_id})
    return tuple(records)


def encode_group(group_id: GroupId, members: Iterable[UserId]) -> Entity:
    uid = group_uid(group_id)
    return Entity(uid=uid, attrs={"id": uid.id, "members": encode_members(members)})


def encode_placeholder(type_name: str, attrs: Optional[Mapping[str, Any]] = None) -> Entity:
    uid = placeholder_uid(type_name)
    return Entity(uid=uid, attrs=dict(attrs or {}))


def encode_create_group(params: CreateGroupParams) -> Entity:
    """CreateGroup singleton carrying the proposed, unverified member list."""
    return encode_placeholder(CREATE_GROUP_TYPE, {"members": encode_members(params.members)})
