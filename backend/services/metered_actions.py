"""
Server side of the metered user actions: analyses, competitor comparisons
and project creation.

Each action checks the allowance first and records usage only after the
work succeeded, so a failed scoring call never costs the user quota.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from adapters.analysis.scoring_client import AnalysisWebhookClient
from core.domain.subscription import ActionKind, AllowanceDecision
from core.errors import StoreUnavailableError
from core.interfaces.repositories import EntitlementStore
from services.allowance import AllowanceEvaluator
from services.guest_allowance import GuestAllowance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionOutcome:
    """Allowance decision plus, when it proceeded, the action's output."""

    decision: AllowanceDecision
    result: Optional[dict[str, Any]] = None
    record_id: Optional[str] = None

    @property
    def performed(self) -> bool:
        return self.decision.can_proceed and (self.result is not None or self.record_id is not None)


class MeteredActionService:
    """Runs metered actions against the allowance evaluator."""

    def __init__(
        self,
        evaluator: AllowanceEvaluator,
        store: EntitlementStore,
        scoring: AnalysisWebhookClient,
    ):
        self.evaluator = evaluator
        self.store = store
        self.scoring = scoring

    async def _record(
        self,
        user_id: Optional[str],
        action: ActionKind,
        details: dict[str, Any],
        guest: Optional[GuestAllowance],
    ) -> Optional[str]:
        if user_id is None:
            if guest is not None:
                guest.consume()
            return None

        try:
            return await self.store.increment_usage(user_id, action, details)
        except StoreUnavailableError:
            # The user already has the result; the lost usage row is logged for reconciliation
            logger.error(
                "Could not record %s usage; result returned unrecorded",
                action.value,
                extra={"user_id": user_id, "action": action.value},
            )
            return None

    async def run_analysis(
        self,
        user_id: Optional[str],
        keyword: str,
        url: str,
        project_id: Optional[str] = None,
        guest: Optional[GuestAllowance] = None,
    ) -> ActionOutcome:
        """
        Score ``url`` for ``keyword`` if the caller has allowance left.

        Raises:
            AnalysisServiceError: If the scoring service fails; no usage is recorded
        """
        decision = await self.evaluator.evaluate(user_id, ActionKind.ANALYSIS, guest)
        if not decision.can_proceed:
            return ActionOutcome(decision=decision)

        result = await self.scoring.analyze(keyword, url)
        record_id = await self._record(
            user_id,
            ActionKind.ANALYSIS,
            {"keyword": keyword, "url": url, "project_id": project_id, "result": result},
            guest,
        )
        return ActionOutcome(decision=decision, result=result, record_id=record_id)

    async def run_comparison(
        self,
        user_id: Optional[str],
        keyword: str,
        user_url: str,
        competitor_url: str,
        guest: Optional[GuestAllowance] = None,
    ) -> ActionOutcome:
        """
        Compare the user's page with a competitor page.

        Raises:
            AnalysisServiceError: If the scoring service fails; no usage is recorded
        """
        decision = await self.evaluator.evaluate(user_id, ActionKind.COMPARISON, guest)
        if not decision.can_proceed:
            return ActionOutcome(decision=decision)

        result = await self.scoring.compare(keyword, user_url, competitor_url)
        record_id = await self._record(
            user_id,
            ActionKind.COMPARISON,
            {
                "keyword": keyword,
                "user_url": user_url,
                "competitor_url": competitor_url,
                "result": result,
            },
            guest,
        )
        return ActionOutcome(decision=decision, result=result, record_id=record_id)

    async def create_project(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
    ) -> ActionOutcome:
        """
        Create a project if the plan's project limit allows it.

        Raises:
            StoreUnavailableError: If the project row cannot be written
        """
        decision = await self.evaluator.evaluate(user_id, ActionKind.PROJECT)
        if not decision.can_proceed:
            return ActionOutcome(decision=decision)

        record_id = await self.store.increment_usage(
            user_id, ActionKind.PROJECT, {"name": name, "description": description}
        )
        logger.info("Project created", extra={"user_id": user_id})
        return ActionOutcome(decision=decision, record_id=record_id)
