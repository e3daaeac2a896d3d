"""
Reconciler - Converges provider state toward a provisioning plan.

For each spec in plan order the reconciler asks the provider whether the
resource already exists and creates it only if it does not. Existing
resources are never compared against their parameters. The first failure
halts the run; nothing created earlier is rolled back, so re-running the
same plan resumes at the failed step.
"""

import logging
import time
from enum import Enum
from typing import Iterable, List, Optional, Set

from events import EventBus, StepEvent
from models import (
    ErrorKind,
    ProvisioningPlan,
    ResourceSpec,
    StepOutcome,
    StepResult,
)
from providers.base import ProviderError, ProvisioningProvider

logger = logging.getLogger(__name__)


class MatchMode(Enum):
    """How a spec name is matched against listed identifiers."""

    EXACT = "exact"
    PREFIX = "prefix"
    # Same semantics as `list | grep NAME`
    SUBSTRING = "substring"


def find_match(
    name: str, identifiers: Iterable[str], mode: MatchMode = MatchMode.EXACT
) -> Optional[str]:
    """
    Return the first identifier matching ``name`` under ``mode``.

    Args:
        name: The spec name
        identifiers: Identifiers returned by the provider listing
        mode: Matching policy

    Returns:
        The matching identifier, or None.
    """
    for identifier in identifiers:
        if mode == MatchMode.EXACT and identifier == name:
            return identifier
        if mode == MatchMode.PREFIX and identifier.startswith(name):
            return identifier
        if mode == MatchMode.SUBSTRING and name in identifier:
            return identifier
    return None


class Reconciler:
    """
    Applies provisioning plans against a provider, one step at a time.

    Steps never overlap: each provider call is awaited before the next one
    starts, because later resources need earlier ones to be fully available.
    """

    def __init__(
        self,
        provider: ProvisioningProvider,
        match_mode: MatchMode = MatchMode.EXACT,
        event_bus: Optional[EventBus] = None,
    ):
        self.provider = provider
        self.match_mode = match_mode
        self._event_bus = event_bus

    async def apply(self, plan: ProvisioningPlan) -> List[StepResult]:
        """
        Ensure every resource in the plan exists.

        Args:
            plan: The ordered plan to apply

        Returns:
            One StepResult per attempted step. When a step fails it is the
            last result; later steps are not attempted.
        """
        logger.info(
            f"Applying plan with {len(plan)} steps using provider "
            f"'{self.provider.name}'"
        )
        return await self._run(plan, dry_run=False)

    async def check(self, plan: ProvisioningPlan) -> List[StepResult]:
        """
        Report which resources exist without creating anything.

        Missing resources resolve to ``WouldCreate``. A failed query halts
        the check just like it halts ``apply``.
        """
        logger.info(f"Checking plan with {len(plan)} steps (dry run)")
        return await self._run(plan, dry_run=True)

    async def _run(self, plan: ProvisioningPlan, dry_run: bool) -> List[StepResult]:
        results: List[StepResult] = []
        satisfied: Set[str] = set()
        total = len(plan)

        for index, spec in enumerate(plan, start=1):
            await self._publish(StepEvent.started(spec, index, total))
            result = await self._reconcile_step(spec, satisfied, dry_run)
            results.append(result)
            await self._publish(StepEvent.from_result(result, index, total))

            if result.failed:
                logger.error(
                    f"Step {index}/{total} {spec.key} failed, halting: "
                    f"{result.error}"
                )
                break
            satisfied.add(spec.key)

        return results

    async def _reconcile_step(
        self, spec: ResourceSpec, satisfied: Set[str], dry_run: bool
    ) -> StepResult:
        start_time = time.monotonic()

        def finish(
            outcome: StepOutcome,
            error: Optional[str] = None,
            error_kind: Optional[ErrorKind] = None,
        ) -> StepResult:
            return StepResult(
                spec=spec,
                outcome=outcome,
                error=error,
                error_kind=error_kind,
                duration_seconds=time.monotonic() - start_time,
            )

        # In dry runs missing dependencies are expected; they would be
        # created by earlier steps
        missing = [dep for dep in spec.depends_on if dep not in satisfied]
        if missing and not dry_run:
            return finish(
                StepOutcome.FAILED,
                f"Dependencies not satisfied: {', '.join(missing)}",
                ErrorKind.DEPENDENCY_FAILED,
            )

        try:
            identifiers = await self.provider.list_resources(spec.kind, spec.scope)
        except ProviderError as e:
            return finish(StepOutcome.FAILED, str(e), ErrorKind.QUERY_FAILED)

        existing = find_match(spec.name, identifiers, self.match_mode)
        if existing is not None:
            if existing != spec.name:
                logger.warning(
                    f"{spec.key} matched existing '{existing}' "
                    f"({self.match_mode.value} match)"
                )
            logger.info(f"{spec.key} already exists and will be used")
            return finish(StepOutcome.ALREADY_EXISTS)

        if dry_run:
            logger.info(f"{spec.key} does not exist and would be created")
            return finish(StepOutcome.WOULD_CREATE)

        logger.info(f"Creating {spec.key}")
        try:
            await self.provider.create_resource(spec.kind, spec.name, spec.parameters)
        except ProviderError as e:
            return finish(StepOutcome.FAILED, str(e), ErrorKind.CREATION_FAILED)

        logger.info(f"Created {spec.key}")
        return finish(StepOutcome.CREATED)

    async def _publish(self, event: StepEvent) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event)
