"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Mapping, Set, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import InfraConfig, reset_config
from models import ResourceKind, ResourceSpec, make_key
from plan import build_plan
from providers.base import (
    CreationFailedError,
    ProvisioningProvider,
    QueryFailedError,
)
from providers.registry import reset_registry


class FakeProvider(ProvisioningProvider):
    """
    In-memory provider.

    Remote state lives on the class so every instance (including ones the
    registry creates) sees the same resources.
    """

    remote: Dict[str, List[str]] = {}
    failing_lists: Set[str] = set()
    failing_creates: Set[str] = set()
    calls: List[Tuple[str, str]] = []
    initialized_with: Dict[str, Any] = {}

    @classmethod
    def reset(cls) -> None:
        cls.remote = {}
        cls.failing_lists = set()
        cls.failing_creates = set()
        cls.calls = []
        cls.initialized_with = {}

    @classmethod
    def seed(cls, kind: ResourceKind, *names: str) -> None:
        cls.remote.setdefault(kind.value, []).extend(names)

    @property
    def name(self) -> str:
        return "fake"

    @property
    def version(self) -> str:
        return "0.0.1"

    async def initialize(self, config: Dict[str, Any]) -> None:
        type(self).initialized_with = dict(config)

    async def list_resources(
        self, kind: ResourceKind, scope: Mapping[str, str]
    ) -> List[str]:
        self.calls.append(("list", kind.value))
        if kind.value in self.failing_lists:
            raise QueryFailedError(f"Could not list {kind.value} resources", "denied")
        return list(self.remote.get(kind.value, []))

    async def create_resource(
        self, kind: ResourceKind, name: str, parameters: Mapping[str, str]
    ) -> None:
        key = make_key(kind, name)
        self.calls.append(("create", key))
        if key in self.failing_creates:
            raise CreationFailedError(f"Could not create {key}", "quota exceeded")
        self.remote.setdefault(kind.value, []).append(name)

    def created(self) -> List[str]:
        return [target for action, target in self.calls if action == "create"]


def mock_response(status=200, json_data=None, text=""):
    """Build an async context manager yielding a fake response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def mock_client_session(get=None, post=None):
    """
    Build a ClientSession replacement.

    Returns:
        Tuple of (ClientSession mock, session mock).
    """
    session = MagicMock()
    session.get = MagicMock(side_effect=get or [])
    session.post = MagicMock(return_value=post)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context), session


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset configuration and registry singletons around every test."""
    reset_config()
    reset_registry()
    FakeProvider.reset()
    yield
    reset_config()
    reset_registry()
    FakeProvider.reset()


@pytest.fixture
def fake_provider():
    """A FakeProvider with empty remote state."""
    return FakeProvider()


@pytest.fixture
def vpc_specs():
    """Network -> Subnet -> Cluster chain in declaration order."""
    return [
        ResourceSpec(kind=ResourceKind.NETWORK, name="vpc-a"),
        ResourceSpec(
            kind=ResourceKind.SUBNET,
            name="sub-a",
            parameters={
                "network": "vpc-a",
                "range": "10.0.0.0/24",
                "region": "us-east1",
            },
            scope={"network": "vpc-a"},
            depends_on=("vpc-a",),
        ),
        ResourceSpec(
            kind=ResourceKind.CLUSTER,
            name="gke-a",
            parameters={"network": "vpc-a", "subnetwork": "sub-a"},
            depends_on=("sub-a",),
        ),
    ]


@pytest.fixture
def vpc_plan(vpc_specs):
    return build_plan(vpc_specs)


@pytest.fixture
def infra_values():
    """Sample LMS configuration keyed by field name."""
    return {
        "project_id": "lms-prod",
        "region": "southamerica-east1",
        "zone": "southamerica-east1-a",
        "vpc_name": "moodle-vpc",
        "subnet_name": "moodle-subnet",
        "subnet_range": "10.10.0.0/20",
        "node_sa_email": "gke-nodes@lms-prod.iam.gserviceaccount.com",
        "gke_pod_range": "10.20.0.0/14",
        "gke_svc_range": "10.24.0.0/20",
        "gke_master_ipv4_range": "172.16.0.0/28",
        "cloud_build_sa_email": "123@cloudbuild.gserviceaccount.com",
        "master_authorized_networks": "203.0.113.0/24",
        "moodle_mysql_managed_peering_range": "10.30.0.0",
        "moodle_filestore_managed_peering_range": "10.31.0.0",
        "nat_config": "moodle-nat-config",
        "nat_router": "moodle-router",
        "gke_name": "moodle-gke",
        "mysql_instance_name": "moodle-mysql",
        "mysql_root_password": "s3cr3t-pass",
        "mysql_db": "moodle",
        "redis_name": "moodle-redis",
        "filestore_name": "moodle-filestore",
    }


@pytest.fixture
def infra_config(infra_values):
    return InfraConfig.from_mapping(infra_values)
