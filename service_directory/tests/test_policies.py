"""
Unit tests for policy parsing and template binding.
"""

import pytest

from shared.errors import ConfigurationError
from service_directory.app.authz.entities import EntityUid
from service_directory.app.authz.policies import (
    SLOT_RESOURCE, Effect, Literal, Operator, RecordRef, Ref, Slot, parse_policy_text
)
from service_directory.app.authz.store import POLICY_DIR


TEMPLATE_TEXT = """
version: "7"
policies:
  - id: static-read
    effect: permit
    action: get-group
    resource: {type: Group}
templates:
  - id: member-template
    effect: permit
    annotations: {name: member-updates-own-group}
    action: update-group
    resource: "?resource"
    conditions:
      - field: principal
        operator: member_of
        ref: "?resource"
"""


class TestPolicyParser:
    """Test cases for parse_policy_text."""

    def test_parse_ground_and_template(self):
        """Test ground policies and templates are separated."""
        policy_set = parse_policy_text(TEMPLATE_TEXT)

        assert policy_set.version == "7"
        assert [p.id for p in policy_set.policies] == ["static-read"]
        assert list(policy_set.templates) == ["member-template"]
        assert policy_set.templates["member-template"].slots == frozenset({SLOT_RESOURCE})

    def test_parse_condition_operands(self):
        """Test literal, reference and record operands."""
        policy_set = parse_policy_text("""
policies:
  - id: p
    effect: forbid
    action: [a, b]
    conditions:
      - field: principal
        operator: equals
        value: {type: User, id: anonymous}
      - field: resource.members
        operator: contains
        ref: {id: principal.id}
      - field: principal.id
        operator: in
        value: [x, y]
      - field: principal
        operator: not_equals
        ref: resource
""")
        policy = policy_set.get("p")

        assert policy.effect == Effect.FORBID
        assert policy.actions == frozenset({"a", "b"})
        ops = [c.operand for c in policy.conditions]
        assert ops[0] == Literal(EntityUid("User", "anonymous"))
        assert ops[1] == RecordRef((("id", Ref("principal.id")),))
        assert ops[2] == Literal(("x", "y"))
        assert ops[3] == Ref("resource")
        assert policy.conditions[1].operator == Operator.CONTAINS

    def test_empty_document(self):
        """Test an empty document parses to an empty set."""
        policy_set = parse_policy_text("")

        assert policy_set.policies == ()
        assert len(policy_set.templates) == 0

    @pytest.mark.parametrize("text", [
        "policies: [",
        "- just a list",
        "policies:\n  - id: p\n    effect: maybe",
        "policies:\n  - id: p\n    effect: permit\n    conditions:\n      - field: principal\n        operator: like\n        value: x",
        "policies:\n  - id: p\n    effect: permit\n    conditions:\n      - field: subject\n        operator: equals\n        value: x",
        "policies:\n  - id: p\n    effect: permit\n    conditions:\n      - field: principal\n        operator: equals",
        "policies:\n  - id: p\n    effect: permit\n  - id: p\n    effect: forbid",
        "policies:\n  - id: p\n    effect: permit\n    resource: \"?resource\"",
        "templates:\n  - id: t\n    effect: permit",
        "policies:\n  - id: p\n    effect: permit\n    colour: blue",
        "policies:\n  - effect: permit",
        "rules: []",
    ])
    def test_invalid_text_raises_configuration_error(self, text):
        """Test malformed policy text is a configuration error."""
        with pytest.raises(ConfigurationError):
            parse_policy_text(text)

    def test_packaged_policies_parse(self):
        """Test the shipped policy files are valid."""
        for name in ("user.yaml", "group.yaml"):
            parse_policy_text((POLICY_DIR / name).read_text(encoding="utf-8"), source=name)


class TestTemplateBinding:
    """Test cases for template binding and linking."""

    @pytest.fixture
    def policy_set(self):
        return parse_policy_text(TEMPLATE_TEXT)

    @pytest.fixture
    def g1(self):
        return EntityUid("Group", "g1")

    def test_bind_produces_ground_policy(self, policy_set, g1):
        """Test binding replaces every slot with the concrete uid."""
        template = policy_set.templates["member-template"]
        policy = template.bind("bound-g1", {SLOT_RESOURCE: g1})

        assert policy.id == "bound-g1"
        assert policy.template_id == "member-template"
        assert policy.slots == frozenset()
        assert policy.resource.uid == g1
        assert policy.conditions[0].operand == Literal(g1)
        # the template itself is untouched
        assert template.policy.conditions[0].operand == Slot(SLOT_RESOURCE)

    def test_bind_requires_all_slots(self, policy_set):
        """Test binding without every slot value fails."""
        with pytest.raises(ConfigurationError):
            policy_set.templates["member-template"].bind("x", {})

    def test_bind_rejects_unknown_slots(self, policy_set, g1):
        """Test binding with an unexpected slot fails."""
        with pytest.raises(ConfigurationError):
            policy_set.templates["member-template"].bind("x", {SLOT_RESOURCE: g1, "?principal": g1})

    def test_link_returns_new_set(self, policy_set, g1):
        """Test linking never mutates the base set."""
        linked = policy_set.link("member-template", "bound-g1", {SLOT_RESOURCE: g1})

        assert linked is not policy_set
        assert policy_set.get("bound-g1") is None
        assert linked.get("bound-g1") is not None
        assert len(linked.policies) == len(policy_set.policies) + 1

    def test_link_same_id_twice_is_idempotent(self, policy_set, g1):
        """Test relinking with the same id and values does not error."""
        once = policy_set.link("member-template", "bound-g1", {SLOT_RESOURCE: g1})
        twice = once.link("member-template", "bound-g1", {SLOT_RESOURCE: g1})

        assert twice.policies == once.policies

    def test_link_same_id_different_values_fails(self, policy_set, g1):
        """Test reusing a bound id for another group fails."""
        once = policy_set.link("member-template", "bound", {SLOT_RESOURCE: g1})

        with pytest.raises(ConfigurationError):
            once.link("member-template", "bound", {SLOT_RESOURCE: EntityUid("Group", "g2")})

    def test_link_with_static_id_fails(self, policy_set, g1):
        """Test a bound id cannot shadow a static policy."""
        with pytest.raises(ConfigurationError):
            policy_set.link("member-template", "static-read", {SLOT_RESOURCE: g1})

    def test_template_lookup_by_annotation(self, policy_set):
        """Test templates are located by annotation."""
        template = policy_set.template_by_annotation("name", "member-updates-own-group")

        assert template.id == "member-template"

    def test_missing_template_fails_fast(self, policy_set):
        """Test a missing template annotation is a configuration error."""
        with pytest.raises(ConfigurationError):
            policy_set.template_by_annotation("name", "no-such-template")
