"""
Policy store: one compiled PolicySet per resource kind, loaded once.
"""

from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

from shared.errors import ConfigurationError
from shared.logging import get_logger

from .evaluator import PolicyEvaluator
from .policies import PolicySet

POLICY_DIR = Path(__file__).parent / "policy_sets"


class ResourceKind(str, Enum):
    """Resource kinds with their own policy set."""
    USER = "user"
    GROUP = "group"


class PolicyStore:
    """Immutable, shared read-only collection of policy sets."""

    def __init__(self, policy_sets: Mapping[ResourceKind, PolicySet]):
        missing = [kind.value for kind in ResourceKind if kind not in policy_sets]
        if missing:
            raise ConfigurationError("Policy sets missing for resource kinds", {"kinds": missing})
        self._policy_sets = MappingProxyType(dict(policy_sets))

    @classmethod
    def from_texts(cls, evaluator: PolicyEvaluator, texts: Mapping[ResourceKind, str]) -> "PolicyStore":
        """Parse policy text per resource kind."""
        return cls({
            kind: evaluator.parse(text, source=f"{kind.value}.yaml")
            for kind, text in texts.items()
        })

    @classmethod
    def load(cls, evaluator: PolicyEvaluator, policy_dir: Optional[Union[str, Path]] = None) -> "PolicyStore":
        """Load ``<kind>.yaml`` for every resource kind from ``policy_dir``."""
        logger = get_logger("directory.authz.store")
        directory = Path(policy_dir) if policy_dir else POLICY_DIR

        texts = {}
        for kind in ResourceKind:
            path = directory / f"{kind.value}.yaml"
            try:
                texts[kind] = path.read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError("Unable to read policy file", {"path": str(path), "error": str(e)})

        store = cls.from_texts(evaluator, texts)
        for kind, policy_set in store._policy_sets.items():
            logger.info(
                "Policy set loaded",
                kind=kind.value,
                version=policy_set.version,
                policies=len(policy_set.policies),
                templates=len(policy_set.templates)
            )
        return store

    def policy_set(self, kind: ResourceKind) -> PolicySet:
        return self._policy_sets[kind]

    @property
    def users(self) -> PolicySet:
        return self._policy_sets[ResourceKind.USER]

    @property
    def groups(self) -> PolicySet:
        return self._policy_sets[ResourceKind.GROUP]
