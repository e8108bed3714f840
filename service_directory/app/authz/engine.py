"""
Access-control facade: one ``judge_*`` coroutine per directory operation.

Every call synthesizes a fresh request, evaluates it and returns a
Judgement. Nothing is cached between calls. Errors other than Deny
(configuration, encoding, repository) propagate to the caller unchanged.
"""

from pathlib import Path
from typing import Optional, Sequence, Union

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..domain.models import (
    CreateGroupParams, CreateUserParams, GroupId, UpdateGroupParams, UpdateUserParams, UserId
)
from .evaluator import DecisionEngine, PolicyEvaluator
from .principal import Judgement, Principal
from .requests import FactRepository, RequestSynthesizer, SynthesizedRequest
from .store import PolicyStore


class AccessControl:
    """Authorization gate consulted by the service layer before acting."""

    def __init__(
        self,
        store: PolicyStore,
        facts: FactRepository,
        evaluator: Optional[PolicyEvaluator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.evaluator = evaluator or DecisionEngine()
        self.synthesizer = RequestSynthesizer(store, facts)
        self.metrics = metrics
        self.logger = get_logger("directory.authz.engine")

    @classmethod
    def load(
        cls,
        facts: FactRepository,
        policy_dir: Optional[Union[str, Path]] = None,
        evaluator: Optional[PolicyEvaluator] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "AccessControl":
        """Load the policy store from disk and build the facade."""
        evaluator = evaluator or DecisionEngine()
        store = PolicyStore.load(evaluator, policy_dir)
        return cls(store, facts, evaluator=evaluator, metrics=metrics)

    def _decide(self, synthesized: SynthesizedRequest) -> Judgement:
        request = synthesized.request
        decision = self.evaluator.evaluate(request, synthesized.policy_set, synthesized.entities)

        self.logger.debug(
            "Authorization decision",
            action=synthesized.action.value,
            principal=str(request.principal),
            resource=str(request.resource),
            judgement=decision.judgement.value,
            reasons=list(decision.reasons),
            errors=[f"{e.policy_id}: {e.message}" for e in decision.errors],
            evaluation_time_ms=round(decision.evaluation_time_ms, 3)
        )
        if self.metrics is not None:
            self.metrics.record_decision(
                synthesized.action.value,
                decision.judgement.value,
                error_count=len(decision.errors)
            )

        return decision.judgement

    # Users

    async def judge_get_user(self, by: Principal, user_id: UserId) -> Judgement:
        return self._decide(self.synthesizer.get_user(by, user_id))

    async def judge_list_users(self, by: Principal) -> Judgement:
        return self._decide(self.synthesizer.list_users(by))

    async def judge_create_user(self, by: Principal, params: CreateUserParams) -> Judgement:
        return self._decide(self.synthesizer.create_user(by, params))

    async def judge_update_user(self, by: Principal, user_id: UserId, params: UpdateUserParams) -> Judgement:
        return self._decide(self.synthesizer.update_user(by, user_id, params))

    # Groups

    async def judge_get_group(self, by: Principal, group_id: GroupId) -> Judgement:
        return self._decide(self.synthesizer.get_group(by, group_id))

    async def judge_list_groups(self, by: Principal) -> Judgement:
        return self._decide(self.synthesizer.list_groups(by))

    async def judge_create_group(self, by: Principal, params: CreateGroupParams) -> Judgement:
        return self._decide(self.synthesizer.create_group(by, params))

    async def judge_update_group(self, by: Principal, group_id: GroupId, params: UpdateGroupParams) -> Judgement:
        return self._decide(await self.synthesizer.update_group(by, group_id, params))

    async def judge_update_group_members(
        self, by: Principal, group_id: GroupId, members: Sequence[UserId]
    ) -> Judgement:
        return self._decide(await self.synthesizer.update_group_members(by, group_id, members))
