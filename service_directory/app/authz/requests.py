"""
Request synthesizer: maps each directory operation to the
(request, facts, policy set) tuple the decision engine evaluates.

Only the group update operations consult the fact repository; every other
operation is synthesized from its arguments alone.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Sequence

from shared.errors import NotFoundError
from shared.logging import get_logger

from ..domain.models import (
    CreateGroupParams, CreateUserParams, GroupId, UpdateGroupParams, UpdateUserParams, UserId
)
from .entities import (
    CREATE_GROUP_TYPE, CREATE_USER_TYPE, LIST_GROUPS_TYPE, LIST_USERS_TYPE,
    Entities, Entity, EntityUid, action_uid, encode_create_group, encode_group,
    encode_principal, encode_user, group_uid, placeholder_uid, principal_uid, user_uid
)
from .evaluator import AuthorizationRequest
from .policies import SLOT_RESOURCE, PolicySet
from .principal import Principal
from .store import PolicyStore, ResourceKind

TEMPLATE_ANNOTATION = "name"
MEMBER_UPDATES_OWN_GROUP = "member-updates-own-group"


class Action(str, Enum):
    """Action identifiers, one per operation."""
    GET_USER = "get-user"
    LIST_USERS = "list-users"
    CREATE_USER = "create-user"
    UPDATE_USER = "update-user"
    GET_GROUP = "get-group"
    LIST_GROUPS = "list-groups"
    CREATE_GROUP = "create-group"
    UPDATE_GROUP = "update-group"
    UPDATE_GROUP_MEMBERS = "update-group-members"

    @property
    def uid(self) -> EntityUid:
        return action_uid(self.value)


class FactRepository(Protocol):
    """Authoritative source of group membership."""

    async def get_group_members(self, group_id: GroupId) -> List[UserId]:
        ...


@dataclass(frozen=True)
class SynthesizedRequest:
    """Everything one evaluation needs."""
    action: Action
    request: AuthorizationRequest
    entities: Entities
    policy_set: PolicySet


def member_policy_id(group_id: GroupId) -> str:
    """Stable id of the member template bound to one group."""
    return f"{MEMBER_UPDATES_OWN_GROUP}:{group_uid(group_id).id}"


class RequestSynthesizer:
    """Builds evaluation requests from operation arguments and current facts."""

    def __init__(self, store: PolicyStore, facts: FactRepository):
        self.store = store
        self.facts = facts
        self.logger = get_logger("directory.authz.requests")

    def _build(
        self,
        action: Action,
        principal: Principal,
        resource: EntityUid,
        kind: ResourceKind,
        entities: Iterable[Entity] = (),
        policy_set: Optional[PolicySet] = None,
    ) -> SynthesizedRequest:
        return SynthesizedRequest(
            action=action,
            request=AuthorizationRequest(
                principal=principal_uid(principal),
                action=action.uid,
                resource=resource,
            ),
            entities=Entities(entities),
            policy_set=policy_set if policy_set is not None else self.store.policy_set(kind),
        )

    # Users

    def get_user(self, principal: Principal, user_id: UserId) -> SynthesizedRequest:
        return self._build(Action.GET_USER, principal, user_uid(user_id), ResourceKind.USER)

    def list_users(self, principal: Principal) -> SynthesizedRequest:
        return self._build(Action.LIST_USERS, principal, placeholder_uid(LIST_USERS_TYPE), ResourceKind.USER)

    def create_user(self, principal: Principal, params: CreateUserParams) -> SynthesizedRequest:
        return self._build(Action.CREATE_USER, principal, placeholder_uid(CREATE_USER_TYPE), ResourceKind.USER)

    def update_user(self, principal: Principal, user_id: UserId, params: UpdateUserParams) -> SynthesizedRequest:
        return self._build(
            Action.UPDATE_USER,
            principal,
            user_uid(user_id),
            ResourceKind.USER,
            entities=[encode_principal(principal), encode_user(user_id)],
        )

    # Groups

    def get_group(self, principal: Principal, group_id: GroupId) -> SynthesizedRequest:
        return self._build(Action.GET_GROUP, principal, group_uid(group_id), ResourceKind.GROUP)

    def list_groups(self, principal: Principal) -> SynthesizedRequest:
        return self._build(Action.LIST_GROUPS, principal, placeholder_uid(LIST_GROUPS_TYPE), ResourceKind.GROUP)

    def create_group(self, principal: Principal, params: CreateGroupParams) -> SynthesizedRequest:
        creation = encode_create_group(params)
        return self._build(
            Action.CREATE_GROUP,
            principal,
            creation.uid,
            ResourceKind.GROUP,
            entities=[encode_principal(principal), creation],
        )

    async def update_group(
        self, principal: Principal, group_id: GroupId, params: UpdateGroupParams
    ) -> SynthesizedRequest:
        """Synthesize update-group with the member template bound to ``group_id``.

        The principal carries membership in this group only when the
        repository lists it as a current member.
        """
        members = await self._current_members(group_id)

        if not principal.is_anonymous and principal.user_id in members:
            principal_entity = encode_principal(principal, groups=[group_id])
        else:
            principal_entity = encode_principal(principal)

        return self._build(
            Action.UPDATE_GROUP,
            principal,
            group_uid(group_id),
            ResourceKind.GROUP,
            entities=[principal_entity, encode_group(group_id, members)],
            policy_set=self.bind_member_template(self.store.groups, group_id),
        )

    async def update_group_members(
        self, principal: Principal, group_id: GroupId, members: Sequence[UserId]
    ) -> SynthesizedRequest:
        """Synthesize update-group-members against the stored membership.

        ``members`` is the proposed replacement list; it is request data and
        never enters the fact set.
        """
        current = await self._current_members(group_id)
        self.logger.debug(
            "Gathered group membership",
            group_id=str(group_id),
            current_members=len(current),
            proposed_members=len(members)
        )

        return self._build(
            Action.UPDATE_GROUP_MEMBERS,
            principal,
            group_uid(group_id),
            ResourceKind.GROUP,
            entities=[encode_principal(principal), encode_group(group_id, current)],
        )

    async def _current_members(self, group_id: GroupId) -> List[UserId]:
        """Stored membership; a missing group has no members and so denies."""
        try:
            return await self.facts.get_group_members(group_id)
        except NotFoundError:
            self.logger.debug("Group not found for membership facts", group_id=str(group_id))
            return []

    def bind_member_template(self, policy_set: PolicySet, group_id: GroupId) -> PolicySet:
        """Bind the member template to one group, returning a new policy set."""
        template = policy_set.template_by_annotation(TEMPLATE_ANNOTATION, MEMBER_UPDATES_OWN_GROUP)
        return policy_set.link(
            template.id,
            member_policy_id(group_id),
            {SLOT_RESOURCE: group_uid(group_id)},
        )
