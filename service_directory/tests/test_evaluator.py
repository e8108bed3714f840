"""
Unit tests for the decision engine.
"""

import pytest

from service_directory.app.authz.entities import Entities, Entity, EntityUid
from service_directory.app.authz.evaluator import AuthorizationRequest, DecisionEngine
from service_directory.app.authz.principal import Judgement


POLICY_TEXT = """
policies:
  - id: readers
    effect: permit
    action: read
    resource: {type: Doc}
    conditions:
      - field: principal
        operator: member_of
        value: {type: Group, id: readers}

  - id: banned
    effect: forbid
    principal: {type: User, id: mallory}

  - id: owner-writes
    effect: permit
    action: write
    conditions:
      - field: resource.owner
        operator: equals
        ref: principal
"""


@pytest.fixture
def engine():
    """Create decision engine."""
    return DecisionEngine()


@pytest.fixture
def policy_set(engine):
    return engine.parse(POLICY_TEXT)


def request_for(user, action, doc="d1"):
    return AuthorizationRequest(
        principal=EntityUid("User", user),
        action=EntityUid("Action", action),
        resource=EntityUid("Doc", doc),
    )


def member(user, group="readers"):
    return Entity(EntityUid("User", user), {"id": user}, frozenset({EntityUid("Group", group)}))


def test_default_deny(engine, policy_set):
    """Test no applicable permit means Deny."""
    decision = engine.evaluate(request_for("alice", "read"), policy_set, Entities())

    assert decision.judgement == Judgement.DENY
    assert decision.reasons == ()
    assert not decision.allowed


def test_permit_when_member(engine, policy_set):
    """Test member_of follows the membership relationship."""
    decision = engine.evaluate(request_for("alice", "read"), policy_set, Entities([member("alice")]))

    assert decision.judgement == Judgement.ALLOW
    assert decision.reasons == ("readers",)


def test_forbid_overrides_permit(engine, policy_set):
    """Test a matching forbid wins over a matching permit."""
    decision = engine.evaluate(request_for("mallory", "read"), policy_set, Entities([member("mallory")]))

    assert decision.judgement == Judgement.DENY
    assert decision.reasons == ("banned",)


def test_evaluation_error_skips_policy(engine, policy_set):
    """Test a missing resource entity is reported and the policy skipped."""
    decision = engine.evaluate(request_for("alice", "write"), policy_set, Entities())

    assert decision.judgement == Judgement.DENY
    assert [e.policy_id for e in decision.errors] == ["owner-writes"]
    assert "does not exist" in decision.errors[0].message


def test_evaluation_error_missing_attribute(engine, policy_set):
    """Test a missing attribute is reported, never raised."""
    doc = Entity(EntityUid("Doc", "d1"), {"title": "x"})
    decision = engine.evaluate(request_for("alice", "write"), policy_set, Entities([doc]))

    assert decision.judgement == Judgement.DENY
    assert "no attribute 'owner'" in decision.errors[0].message


def test_attribute_reference(engine, policy_set):
    """Test attribute lookups compare against entity references."""
    doc = Entity(EntityUid("Doc", "d1"), {"owner": EntityUid("User", "alice")})

    assert engine.evaluate(request_for("alice", "write"), policy_set, Entities([doc])).allowed
    assert not engine.evaluate(request_for("bob", "write"), policy_set, Entities([doc])).allowed


def test_errors_do_not_block_other_permits(engine):
    """Test an erroring policy does not stop other permits from matching."""
    policy_set = engine.parse("""
policies:
  - id: broken
    effect: forbid
    conditions:
      - field: resource.flag
        operator: equals
        value: true
  - id: open
    effect: permit
""")
    decision = engine.evaluate(request_for("alice", "read"), policy_set, Entities())

    assert decision.judgement == Judgement.ALLOW
    assert decision.reasons == ("open",)
    assert len(decision.errors) == 1


@pytest.mark.parametrize("operator,value,expected", [
    ("in", "[a, b]", True),
    ("in", "[x]", False),
    ("not_in", "[x]", True),
    ("equals", "a", True),
    ("not_equals", "a", False),
])
def test_scalar_operators(engine, operator, value, expected):
    """Test scalar comparison operators on attributes."""
    policy_set = engine.parse(f"""
policies:
  - id: p
    effect: permit
    conditions:
      - field: principal.id
        operator: {operator}
        value: {value}
""")
    user = Entity(EntityUid("User", "a"), {"id": "a"})
    decision = engine.evaluate(request_for("a", "read"), policy_set, Entities([user]))

    assert decision.allowed is expected


def test_type_mismatch_is_evaluation_error(engine):
    """Test membership on a non-collection is an evaluation error."""
    policy_set = engine.parse("""
policies:
  - id: p
    effect: permit
    conditions:
      - field: principal.id
        operator: in
        value: a
""")
    user = Entity(EntityUid("User", "a"), {"id": "a"})
    decision = engine.evaluate(request_for("a", "read"), policy_set, Entities([user]))

    assert decision.judgement == Judgement.DENY
    assert decision.errors[0].policy_id == "p"
