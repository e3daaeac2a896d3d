"""Unit tests for reconciler.py - plan application and existence matching."""

import pytest

from conftest import FakeProvider
from events import EventBus, EventType
from models import (
    ErrorKind,
    ProvisioningPlan,
    ResourceKind,
    ResourceSpec,
    StepOutcome,
    exit_code,
)
from plan import build_plan
from reconciler import MatchMode, Reconciler, find_match


def outcomes(results):
    return [(r.spec.name, r.outcome) for r in results]


# ==================== find_match tests ====================


class TestFindMatch:
    """Tests for name matching against listed identifiers."""

    def test_exact_match(self):
        assert find_match("vpc-a", ["default", "vpc-a"]) == "vpc-a"

    def test_exact_ignores_longer_names(self):
        assert find_match("vpc-a", ["vpc-a-old", "my-vpc-a"]) is None

    def test_exact_is_default(self):
        assert find_match("vpc", ["vpc-a"]) is None

    def test_prefix_match(self):
        assert find_match("vpc", ["default", "vpc-a"], MatchMode.PREFIX) == "vpc-a"

    def test_prefix_requires_leading_name(self):
        assert find_match("vpc", ["my-vpc"], MatchMode.PREFIX) is None

    def test_substring_match(self):
        assert find_match("vpc", ["my-vpc-a"], MatchMode.SUBSTRING) == "my-vpc-a"

    def test_returns_first_match(self):
        found = find_match("vpc", ["vpc-1", "vpc-2"], MatchMode.PREFIX)
        assert found == "vpc-1"

    def test_empty_listing(self):
        assert find_match("vpc-a", []) is None


# ==================== apply tests ====================


@pytest.mark.asyncio
class TestApply:
    """Tests for Reconciler.apply."""

    async def test_first_run_creates_everything_in_order(
        self, fake_provider, vpc_plan
    ):
        results = await Reconciler(fake_provider).apply(vpc_plan)

        assert outcomes(results) == [
            ("vpc-a", StepOutcome.CREATED),
            ("sub-a", StepOutcome.CREATED),
            ("gke-a", StepOutcome.CREATED),
        ]
        assert fake_provider.created() == [
            "Network/vpc-a",
            "Subnet/sub-a",
            "Cluster/gke-a",
        ]
        assert exit_code(results) == 0

    async def test_second_run_is_idempotent(self, fake_provider, vpc_plan):
        reconciler = Reconciler(fake_provider)
        await reconciler.apply(vpc_plan)
        FakeProvider.calls.clear()

        results = await reconciler.apply(vpc_plan)

        assert [r.outcome for r in results] == [StepOutcome.ALREADY_EXISTS] * 3
        assert fake_provider.created() == []
        assert exit_code(results) == 0

    async def test_existing_resources_are_not_recreated(
        self, fake_provider, vpc_plan
    ):
        FakeProvider.seed(ResourceKind.NETWORK, "default", "vpc-a")

        results = await Reconciler(fake_provider).apply(vpc_plan)

        assert outcomes(results) == [
            ("vpc-a", StepOutcome.ALREADY_EXISTS),
            ("sub-a", StepOutcome.CREATED),
            ("gke-a", StepOutcome.CREATED),
        ]
        assert "Network/vpc-a" not in fake_provider.created()

    async def test_creation_failure_halts_run(self, fake_provider, vpc_plan):
        FakeProvider.seed(ResourceKind.NETWORK, "vpc-a")
        FakeProvider.failing_creates.add("Subnet/sub-a")

        results = await Reconciler(fake_provider).apply(vpc_plan)

        assert len(results) == 2
        assert results[0].outcome == StepOutcome.ALREADY_EXISTS
        assert results[1].outcome == StepOutcome.FAILED
        assert results[1].error_kind == ErrorKind.CREATION_FAILED
        assert "quota exceeded" in results[1].error
        # gke-a never attempted
        assert ("list", "Cluster") not in FakeProvider.calls
        assert exit_code(results) == 1

    async def test_rerun_after_failure_resumes(self, fake_provider, vpc_plan):
        FakeProvider.seed(ResourceKind.NETWORK, "vpc-a")
        FakeProvider.failing_creates.add("Subnet/sub-a")
        reconciler = Reconciler(fake_provider)
        await reconciler.apply(vpc_plan)

        FakeProvider.failing_creates.clear()
        results = await reconciler.apply(vpc_plan)

        assert outcomes(results) == [
            ("vpc-a", StepOutcome.ALREADY_EXISTS),
            ("sub-a", StepOutcome.CREATED),
            ("gke-a", StepOutcome.CREATED),
        ]

    async def test_nothing_is_rolled_back_on_failure(self, fake_provider, vpc_plan):
        FakeProvider.failing_creates.add("Cluster/gke-a")

        await Reconciler(fake_provider).apply(vpc_plan)

        assert FakeProvider.remote == {"Network": ["vpc-a"], "Subnet": ["sub-a"]}

    async def test_query_failure_halts_without_creating(
        self, fake_provider, vpc_plan
    ):
        FakeProvider.failing_lists.add("Subnet")

        results = await Reconciler(fake_provider).apply(vpc_plan)

        assert results[-1].spec.name == "sub-a"
        assert results[-1].outcome == StepOutcome.FAILED
        assert results[-1].error_kind == ErrorKind.QUERY_FAILED
        assert fake_provider.created() == ["Network/vpc-a"]

    async def test_unsatisfied_dependency_fails_step(self, fake_provider):
        # Plans built by hand skip ordering checks
        plan = ProvisioningPlan(
            [
                ResourceSpec(
                    kind=ResourceKind.SUBNET,
                    name="sub-a",
                    depends_on=("Network/vpc-a",),
                )
            ]
        )

        results = await Reconciler(fake_provider).apply(plan)

        assert results[0].outcome == StepOutcome.FAILED
        assert results[0].error_kind == ErrorKind.DEPENDENCY_FAILED
        assert "Network/vpc-a" in results[0].error
        assert FakeProvider.calls == []

    async def test_empty_plan(self, fake_provider):
        results = await Reconciler(fake_provider).apply(build_plan([]))
        assert results == []
        assert exit_code(results) == 0

    async def test_same_name_different_kinds(self, fake_provider):
        FakeProvider.seed(ResourceKind.NETWORK, "shared")
        plan = build_plan(
            [
                ResourceSpec(kind=ResourceKind.NETWORK, name="shared"),
                ResourceSpec(kind=ResourceKind.STATIC_ADDRESS, name="shared"),
            ]
        )

        results = await Reconciler(fake_provider).apply(plan)

        assert [r.outcome for r in results] == [
            StepOutcome.ALREADY_EXISTS,
            StepOutcome.CREATED,
        ]

    async def test_durations_are_recorded(self, fake_provider, vpc_plan):
        results = await Reconciler(fake_provider).apply(vpc_plan)
        assert all(r.duration_seconds >= 0 for r in results)


# ==================== match mode tests ====================


@pytest.mark.asyncio
class TestMatchModes:
    """Tests for how the reconciler treats near-miss names."""

    @pytest.fixture
    def network_plan(self):
        return build_plan([ResourceSpec(kind=ResourceKind.NETWORK, name="vpc-a")])

    async def test_exact_creates_when_only_longer_name_exists(
        self, fake_provider, network_plan
    ):
        FakeProvider.seed(ResourceKind.NETWORK, "vpc-a-old")

        results = await Reconciler(fake_provider).apply(network_plan)

        assert results[0].outcome == StepOutcome.CREATED

    async def test_prefix_reuses_longer_name(self, fake_provider, network_plan):
        FakeProvider.seed(ResourceKind.NETWORK, "vpc-a-old")

        reconciler = Reconciler(fake_provider, match_mode=MatchMode.PREFIX)
        results = await reconciler.apply(network_plan)

        assert results[0].outcome == StepOutcome.ALREADY_EXISTS
        assert fake_provider.created() == []

    async def test_substring_reuses_containing_name(
        self, fake_provider, network_plan
    ):
        FakeProvider.seed(ResourceKind.NETWORK, "legacy-vpc-a")

        reconciler = Reconciler(fake_provider, match_mode=MatchMode.SUBSTRING)
        results = await reconciler.apply(network_plan)

        assert results[0].outcome == StepOutcome.ALREADY_EXISTS


# ==================== check tests ====================


@pytest.mark.asyncio
class TestCheck:
    """Tests for Reconciler.check (dry run)."""

    async def test_reports_would_create_without_creating(
        self, fake_provider, vpc_plan
    ):
        FakeProvider.seed(ResourceKind.NETWORK, "vpc-a")

        results = await Reconciler(fake_provider).check(vpc_plan)

        assert outcomes(results) == [
            ("vpc-a", StepOutcome.ALREADY_EXISTS),
            ("sub-a", StepOutcome.WOULD_CREATE),
            ("gke-a", StepOutcome.WOULD_CREATE),
        ]
        assert fake_provider.created() == []
        assert exit_code(results) == 0

    async def test_query_failure_halts_check(self, fake_provider, vpc_plan):
        FakeProvider.failing_lists.add("Network")

        results = await Reconciler(fake_provider).check(vpc_plan)

        assert len(results) == 1
        assert results[0].error_kind == ErrorKind.QUERY_FAILED
        assert exit_code(results) == 1


# ==================== event tests ====================


@pytest.mark.asyncio
class TestReconcilerEvents:
    """Tests for progress events published during a run."""

    async def collect(self, reconciler, plan, bus, dry_run=False):
        subscriber_id, subscription = bus.subscribe()
        if dry_run:
            await reconciler.check(plan)
        else:
            await reconciler.apply(plan)
        bus.unsubscribe(subscriber_id)
        return [event async for event in subscription]

    async def test_started_and_result_event_per_step(self, fake_provider, vpc_plan):
        bus = EventBus()
        reconciler = Reconciler(fake_provider, event_bus=bus)

        events = await self.collect(reconciler, vpc_plan, bus)

        assert [(e.event_type, e.name) for e in events] == [
            (EventType.STARTED, "vpc-a"),
            (EventType.CREATED, "vpc-a"),
            (EventType.STARTED, "sub-a"),
            (EventType.CREATED, "sub-a"),
            (EventType.STARTED, "gke-a"),
            (EventType.CREATED, "gke-a"),
        ]
        assert [e.step for e in events] == [1, 1, 2, 2, 3, 3]
        assert all(e.total == 3 for e in events)

    async def test_failure_event_carries_error(self, fake_provider, vpc_plan):
        FakeProvider.failing_creates.add("Network/vpc-a")
        bus = EventBus()
        reconciler = Reconciler(fake_provider, event_bus=bus)

        events = await self.collect(reconciler, vpc_plan, bus)

        assert len(events) == 2
        assert events[-1].event_type == EventType.FAILED
        assert "quota exceeded" in events[-1].detail

    async def test_dry_run_events(self, fake_provider, vpc_plan):
        bus = EventBus()
        reconciler = Reconciler(fake_provider, event_bus=bus)

        events = await self.collect(reconciler, vpc_plan, bus, dry_run=True)

        result_events = [e for e in events if e.event_type != EventType.STARTED]
        assert {e.event_type for e in result_events} == {EventType.WOULD_CREATE}
