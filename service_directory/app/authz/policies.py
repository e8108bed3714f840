"""
Policy model, policy text parser and template binding.

Policy text is YAML with two lists: ``policies`` (ground rules) and
``templates`` (rules with open ``?principal`` / ``?resource`` slots).
A template is never evaluated directly; binding it produces a new ground
policy and a new PolicySet, leaving the loaded set untouched.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import yaml

from shared.errors import ConfigurationError, EncodingError

from .entities import EntityUid, entity_uid

SLOT_PRINCIPAL = "?principal"
SLOT_RESOURCE = "?resource"
SLOTS = (SLOT_PRINCIPAL, SLOT_RESOURCE)

VARIABLES = ("principal", "action", "resource")


class Effect(str, Enum):
    """Policy effects."""
    PERMIT = "permit"
    FORBID = "forbid"


class Operator(str, Enum):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    MEMBER_OF = "member_of"


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ref:
    """Reference to a request variable or an entity attribute, e.g. ``principal.id``."""
    path: str


@dataclass(frozen=True)
class RecordRef:
    """Record built from references, e.g. ``{id: principal.id}``."""
    fields: Tuple[Tuple[str, "Operand"], ...]


@dataclass(frozen=True)
class Slot:
    name: str


Operand = Union[Literal, Ref, RecordRef, Slot]


@dataclass(frozen=True)
class Scope:
    """Constraint on the principal or resource of a request."""
    type: Optional[str] = None
    uid: Optional[EntityUid] = None
    slot: Optional[str] = None

    def matches(self, uid: EntityUid) -> bool:
        if self.slot is not None:
            return False
        if self.uid is not None:
            return self.uid == uid
        if self.type is not None:
            return self.type == uid.type
        return True


@dataclass(frozen=True)
class Condition:
    field: str
    operator: Operator
    operand: Operand
    description: Optional[str] = None


@dataclass(frozen=True)
class Policy:
    """A ground rule or, inside a Template, a rule with open slots."""
    id: str
    effect: Effect
    principal: Scope = field(default_factory=Scope)
    actions: FrozenSet[str] = frozenset()
    resource: Scope = field(default_factory=Scope)
    conditions: Tuple[Condition, ...] = ()
    annotations: Mapping[str, str] = field(default_factory=dict)
    template_id: Optional[str] = None

    @property
    def slots(self) -> FrozenSet[str]:
        found = set()
        for scope in (self.principal, self.resource):
            if scope.slot is not None:
                found.add(scope.slot)
        for condition in self.conditions:
            found.update(_operand_slots(condition.operand))
        return frozenset(found)


@dataclass(frozen=True)
class Template:
    """Policy with open slots; ``bind`` is pure and returns a ground Policy."""
    policy: Policy

    @property
    def id(self) -> str:
        return self.policy.id

    @property
    def slots(self) -> FrozenSet[str]:
        return self.policy.slots

    @property
    def annotations(self) -> Mapping[str, str]:
        return self.policy.annotations

    def bind(self, policy_id: str, values: Mapping[str, EntityUid]) -> Policy:
        missing = self.slots - set(values)
        extra = set(values) - self.slots
        if missing or extra:
            raise ConfigurationError(
                "Template slots do not match the supplied values",
                {"template_id": self.id, "missing": sorted(missing), "unexpected": sorted(extra)}
            )

        return replace(
            self.policy,
            id=policy_id,
            principal=_bind_scope(self.policy.principal, values),
            resource=_bind_scope(self.policy.resource, values),
            conditions=tuple(
                replace(c, operand=_bind_operand(c.operand, values))
                for c in self.policy.conditions
            ),
            template_id=self.id,
        )


@dataclass(frozen=True)
class PolicySet:
    """Ground policies plus the templates they may be extended with."""
    policies: Tuple[Policy, ...] = ()
    templates: Mapping[str, Template] = field(default_factory=dict)
    version: Optional[str] = None

    def get(self, policy_id: str) -> Optional[Policy]:
        for policy in self.policies:
            if policy.id == policy_id:
                return policy
        return None

    def template_by_annotation(self, key: str, value: str) -> Template:
        """Locate a template by a stable annotation; fail fast when absent."""
        for template in self.templates.values():
            if template.annotations.get(key) == value:
                return template
        raise ConfigurationError(
            "Policy template not found",
            {"annotation": key, "value": value}
        )

    def link(self, template_id: str, policy_id: str, values: Mapping[str, EntityUid]) -> "PolicySet":
        """Return a new set with ``template_id`` bound under ``policy_id``.

        Linking the same template with the same values under the same id
        again is a no-op; reusing the id for anything else is an error.
        """
        template = self.templates.get(template_id)
        if template is None:
            raise ConfigurationError("Policy template not found", {"template_id": template_id})

        bound = template.bind(policy_id, values)
        existing = self.get(policy_id)
        if existing is not None:
            if existing == bound:
                return self
            raise ConfigurationError("Policy id already in use", {"policy_id": policy_id})
        if policy_id in self.templates:
            raise ConfigurationError("Policy id already in use", {"policy_id": policy_id})

        return replace(self, policies=self.policies + (bound,))


def _operand_slots(operand: Operand) -> FrozenSet[str]:
    if isinstance(operand, Slot):
        return frozenset((operand.name,))
    if isinstance(operand, RecordRef):
        found: FrozenSet[str] = frozenset()
        for _, inner in operand.fields:
            found |= _operand_slots(inner)
        return found
    return frozenset()


def _bind_scope(scope: Scope, values: Mapping[str, EntityUid]) -> Scope:
    if scope.slot is None:
        return scope
    uid = values[scope.slot]
    return Scope(type=uid.type, uid=uid)


def _bind_operand(operand: Operand, values: Mapping[str, EntityUid]) -> Operand:
    if isinstance(operand, Slot):
        return Literal(values[operand.name])
    if isinstance(operand, RecordRef):
        return RecordRef(tuple((k, _bind_operand(v, values)) for k, v in operand.fields))
    return operand


# Parsing

def parse_policy_text(text: str, source: str = "<string>") -> PolicySet:
    """Parse YAML policy text into a PolicySet.

    Raises ConfigurationError for any syntactic or structural problem.
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError("Policy text is not valid YAML", {"source": source, "error": str(e)})

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigurationError("Policy document must be a mapping", {"source": source})

    unknown = set(document) - {"version", "policies", "templates"}
    if unknown:
        raise ConfigurationError("Unknown policy document keys", {"source": source, "keys": sorted(unknown)})

    seen_ids = set()
    policies: List[Policy] = []
    for raw in _as_list(document.get("policies"), "policies", source):
        policy = _parse_policy(raw, source)
        if policy.slots:
            raise ConfigurationError(
                "Ground policy uses template slots",
                {"source": source, "policy_id": policy.id, "slots": sorted(policy.slots)}
            )
        _claim_id(policy.id, seen_ids, source)
        policies.append(policy)

    templates: Dict[str, Template] = {}
    for raw in _as_list(document.get("templates"), "templates", source):
        policy = _parse_policy(raw, source)
        if not policy.slots:
            raise ConfigurationError("Template has no slots", {"source": source, "policy_id": policy.id})
        _claim_id(policy.id, seen_ids, source)
        templates[policy.id] = Template(policy)

    version = document.get("version")
    return PolicySet(
        policies=tuple(policies),
        templates=MappingProxyType(templates),
        version=str(version) if version is not None else None,
    )


def _claim_id(policy_id: str, seen_ids: set, source: str):
    if policy_id in seen_ids:
        raise ConfigurationError("Duplicate policy id", {"source": source, "policy_id": policy_id})
    seen_ids.add(policy_id)


def _as_list(value: Any, key: str, source: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"'{key}' must be a list", {"source": source})
    return value


def _parse_policy(raw: Any, source: str) -> Policy:
    if not isinstance(raw, dict):
        raise ConfigurationError("Policy entry must be a mapping", {"source": source})

    policy_id = raw.get("id")
    if not isinstance(policy_id, str) or not policy_id:
        raise ConfigurationError("Policy entry is missing an id", {"source": source})
    context = {"source": source, "policy_id": policy_id}

    unknown = set(raw) - {"id", "effect", "annotations", "principal", "action", "resource", "conditions"}
    if unknown:
        raise ConfigurationError("Unknown policy keys", {**context, "keys": sorted(unknown)})

    try:
        effect = Effect(raw.get("effect"))
    except ValueError:
        raise ConfigurationError("Unknown policy effect", {**context, "effect": raw.get("effect")})

    annotations = raw.get("annotations") or {}
    if not isinstance(annotations, dict):
        raise ConfigurationError("Annotations must be a mapping", context)

    actions = raw.get("action")
    if actions is None:
        actions = []
    elif isinstance(actions, str):
        actions = [actions]
    if not isinstance(actions, list) or not all(isinstance(a, str) for a in actions):
        raise ConfigurationError("Action scope must be a string or list of strings", context)

    conditions = tuple(
        _parse_condition(c, context) for c in _as_list(raw.get("conditions"), "conditions", source)
    )

    return Policy(
        id=policy_id,
        effect=effect,
        principal=_parse_scope(raw.get("principal"), SLOT_PRINCIPAL, context),
        actions=frozenset(actions),
        resource=_parse_scope(raw.get("resource"), SLOT_RESOURCE, context),
        conditions=conditions,
        annotations=MappingProxyType({str(k): str(v) for k, v in annotations.items()}),
    )


def _parse_scope(raw: Any, slot: str, context: Dict[str, Any]) -> Scope:
    if raw is None:
        return Scope()
    if isinstance(raw, str):
        if raw != slot:
            raise ConfigurationError("Unknown scope slot", {**context, "slot": raw})
        return Scope(slot=raw)
    if not isinstance(raw, dict) or "type" not in raw or set(raw) - {"type", "id"}:
        raise ConfigurationError("Scope must be a slot or {type, id} mapping", context)
    if "id" in raw:
        uid = _parse_uid(raw, context)
        return Scope(type=uid.type, uid=uid)
    if not isinstance(raw["type"], str):
        raise ConfigurationError("Scope type must be a string", context)
    return Scope(type=raw["type"])


def _parse_condition(raw: Any, context: Dict[str, Any]) -> Condition:
    if not isinstance(raw, dict):
        raise ConfigurationError("Condition must be a mapping", context)

    field_path = raw.get("field")
    _check_path(field_path, context)

    try:
        operator = Operator(raw.get("operator"))
    except ValueError:
        raise ConfigurationError("Unknown condition operator", {**context, "operator": raw.get("operator")})

    if ("value" in raw) == ("ref" in raw):
        raise ConfigurationError("Condition needs exactly one of 'value' or 'ref'", context)

    if "value" in raw:
        operand: Operand = Literal(_parse_literal(raw["value"], context))
    else:
        operand = _parse_ref(raw["ref"], context)

    return Condition(
        field=field_path,
        operator=operator,
        operand=operand,
        description=raw.get("description"),
    )


def _parse_ref(raw: Any, context: Dict[str, Any]) -> Operand:
    if isinstance(raw, dict):
        if not raw:
            raise ConfigurationError("Record reference must not be empty", context)
        return RecordRef(tuple((str(k), _parse_ref(v, context)) for k, v in raw.items()))
    if isinstance(raw, str) and raw.startswith("?"):
        if raw not in SLOTS:
            raise ConfigurationError("Unknown slot", {**context, "slot": raw})
        return Slot(raw)
    _check_path(raw, context)
    return Ref(raw)


def _check_path(path: Any, context: Dict[str, Any]):
    if not isinstance(path, str):
        raise ConfigurationError("Path must be a string", context)
    head, dot, attr = path.partition(".")
    if head not in VARIABLES or "." in attr or (dot and not attr):
        raise ConfigurationError("Invalid path", {**context, "path": path})


def _parse_literal(raw: Any, context: Dict[str, Any]) -> Any:
    if isinstance(raw, dict):
        return _parse_uid(raw, context)
    if isinstance(raw, list):
        return tuple(_parse_literal(item, context) for item in raw)
    if raw is None or isinstance(raw, (str, int, float, bool)):
        return raw
    raise ConfigurationError("Unsupported literal", {**context, "value": repr(raw)})


def _parse_uid(raw: Dict[str, Any], context: Dict[str, Any]) -> EntityUid:
    if set(raw) != {"type", "id"}:
        raise ConfigurationError("Entity literal must have exactly 'type' and 'id'", context)
    try:
        return entity_uid(raw["type"], str(raw["id"]))
    except EncodingError as e:
        raise ConfigurationError("Invalid entity literal", {**context, **e.details})
