"""
Authorization core package.

Converts each directory operation into a policy evaluation request before
it touches storage:

- principal: Principal and Judgement value types.
- entities: Fact entities and the encoder from domain values.
- policies: Policy/template model, YAML policy parser, template binding.
- evaluator: Decision engine (default-deny, permit unless forbidden).
- store: Per-resource-kind policy sets loaded once at startup.
- requests: Request synthesizer for the nine supported operations.
- engine: AccessControl facade with one judge_* coroutine per operation.

The policy text lives in policy_sets/<kind>.yaml.
"""

from .engine import AccessControl
from .principal import Judgement, Principal

__all__ = ["AccessControl", "Judgement", "Principal"]
