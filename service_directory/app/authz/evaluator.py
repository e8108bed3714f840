"""
Decision engine for directory authorization.

Semantics: default-deny, and a request is allowed iff at least one permit
policy matches and no forbid policy matches. A policy whose conditions
cannot be evaluated (missing entity, missing attribute, type mismatch) is
skipped and reported as an evaluation error; it never raises.
"""

import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Protocol, Tuple

from shared.logging import get_logger

from .entities import Entities, EntityUid
from .policies import (
    Condition, Effect, Literal, Operand, Operator, Policy, PolicySet,
    RecordRef, Ref, Slot, parse_policy_text
)
from .principal import Judgement


@dataclass(frozen=True)
class AuthorizationRequest:
    """The (principal, action, resource) triple under evaluation."""
    principal: EntityUid
    action: EntityUid
    resource: EntityUid


@dataclass(frozen=True)
class EvaluationError:
    policy_id: str
    message: str


@dataclass(frozen=True)
class Decision:
    """Result of one evaluation."""
    judgement: Judgement
    reasons: Tuple[str, ...] = ()
    errors: Tuple[EvaluationError, ...] = ()
    evaluation_time_ms: float = 0.0

    @property
    def allowed(self) -> bool:
        return self.judgement.is_allowed


class PolicyEvaluator(Protocol):
    """Declarative evaluation capability consumed by the access-control facade."""

    def parse(self, text: str, source: str = "<string>") -> PolicySet:
        ...

    def evaluate(self, request: AuthorizationRequest, policy_set: PolicySet, entities: Entities) -> Decision:
        ...


class _EvaluationFailure(Exception):
    pass


class DecisionEngine:
    """Rule evaluation engine over YAML policy sets."""

    def __init__(self):
        self.logger = get_logger("directory.authz.evaluator")

    def parse(self, text: str, source: str = "<string>") -> PolicySet:
        return parse_policy_text(text, source)

    def evaluate(self, request: AuthorizationRequest, policy_set: PolicySet, entities: Entities) -> Decision:
        """Evaluate ``request`` against every ground policy in ``policy_set``."""
        start_time = time.time()
        permits: List[str] = []
        forbids: List[str] = []
        errors: List[EvaluationError] = []

        for policy in policy_set.policies:
            if not self._is_policy_applicable(policy, request):
                continue

            try:
                matched = self._evaluate_conditions(policy.conditions, request, entities)
            except _EvaluationFailure as e:
                error = EvaluationError(policy.id, str(e))
                errors.append(error)
                self.logger.warning(
                    "Policy evaluation error",
                    policy_id=policy.id,
                    action=request.action.id,
                    error=error.message
                )
                continue

            if matched:
                (permits if policy.effect == Effect.PERMIT else forbids).append(policy.id)

        if forbids:
            judgement, reasons = Judgement.DENY, forbids
        elif permits:
            judgement, reasons = Judgement.ALLOW, permits
        else:
            judgement, reasons = Judgement.DENY, []

        return Decision(
            judgement=judgement,
            reasons=tuple(reasons),
            errors=tuple(errors),
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

    def _is_policy_applicable(self, policy: Policy, request: AuthorizationRequest) -> bool:
        """Check the principal, action and resource scope of a policy."""
        if policy.actions and request.action.id not in policy.actions:
            return False
        if not policy.principal.matches(request.principal):
            return False
        if not policy.resource.matches(request.resource):
            return False
        return True

    def _evaluate_conditions(
        self, conditions: Iterable[Condition], request: AuthorizationRequest, entities: Entities
    ) -> bool:
        for condition in conditions:
            if not self._evaluate_condition(condition, request, entities):
                return False
        return True

    def _evaluate_condition(self, condition: Condition, request: AuthorizationRequest, entities: Entities) -> bool:
        left = self._resolve_path(condition.field, request, entities)
        right = self._resolve_operand(condition.operand, request, entities)
        operator = condition.operator

        if operator == Operator.EQUALS:
            return left == right

        if operator == Operator.NOT_EQUALS:
            return left != right

        if operator in (Operator.IN, Operator.NOT_IN):
            found = _member(left, right, condition.field)
            return found if operator == Operator.IN else not found

        if operator == Operator.CONTAINS:
            return _member(right, left, condition.field)

        if operator == Operator.MEMBER_OF:
            if not isinstance(left, EntityUid) or not isinstance(right, EntityUid):
                raise _EvaluationFailure(f"'{condition.field}' member_of requires entity operands")
            return left == right or right in entities.ancestors(left)

        raise _EvaluationFailure(f"unsupported operator {operator!r}")

    def _resolve_operand(self, operand: Operand, request: AuthorizationRequest, entities: Entities) -> Any:
        if isinstance(operand, Literal):
            return operand.value
        if isinstance(operand, Ref):
            return self._resolve_path(operand.path, request, entities)
        if isinstance(operand, RecordRef):
            return {k: self._resolve_operand(v, request, entities) for k, v in operand.fields}
        if isinstance(operand, Slot):
            raise _EvaluationFailure(f"unbound slot {operand.name}")
        raise _EvaluationFailure(f"unsupported operand {operand!r}")

    def _resolve_path(self, path: str, request: AuthorizationRequest, entities: Entities) -> Any:
        """Resolve ``principal``/``resource``/``action`` or one of their attributes."""
        head, _, attr = path.partition(".")
        uid = getattr(request, head)
        if not attr:
            return uid

        entity = entities.get(uid)
        if entity is None:
            raise _EvaluationFailure(f"entity {uid} does not exist in the fact set")
        if attr not in entity.attrs:
            raise _EvaluationFailure(f"entity {uid} has no attribute '{attr}'")
        return entity.attrs[attr]


def _member(needle: Any, haystack: Any, field: str) -> bool:
    if not isinstance(haystack, (tuple, list, frozenset, set)):
        raise _EvaluationFailure(f"'{field}' requires a collection operand")
    try:
        return needle in haystack
    except TypeError as e:
        raise _EvaluationFailure(f"'{field}' cannot be compared: {e}")
