"""
Core provisioning types.

Resource specs describe desired infrastructure, plans order them, and step
results record what the reconciler did with each spec during a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple


class ResourceKind(Enum):
    """Kinds of infrastructure resources a provider can list and create."""

    NETWORK = "Network"
    SUBNET = "Subnet"
    CLUSTER = "Cluster"
    ROUTER_NAT = "RouterNAT"
    MANAGED_DATABASE = "ManagedDatabase"
    CACHE = "Cache"
    FILE_SHARE = "FileShare"
    ARTIFACT_REPO = "ArtifactRepo"
    IAM_BINDING = "IAMBinding"
    PEERING_RANGE = "PeeringRange"
    STATIC_ADDRESS = "StaticAddress"
    SERVICE_API = "ServiceAPI"
    SQL_DATABASE = "SqlDatabase"
    SERVICE_PEERING = "ServicePeering"


class StepOutcome(Enum):
    """Outcome of a single plan step."""

    ALREADY_EXISTS = "AlreadyExists"
    CREATED = "Created"
    FAILED = "Failed"
    # Only produced by dry runs
    WOULD_CREATE = "WouldCreate"


class ErrorKind(Enum):
    """Why a step failed."""

    QUERY_FAILED = "QueryFailed"
    CREATION_FAILED = "CreationFailed"
    DEPENDENCY_FAILED = "DependencyFailed"


def make_key(kind: ResourceKind, name: str) -> str:
    """Return the plan-wide identifier for a resource."""
    return f"{kind.value}/{name}"


@dataclass(frozen=True)
class ResourceSpec:
    """
    Declared resource: what should exist, not how to create it.

    ``parameters`` are passed verbatim to the provider on creation.
    ``scope`` narrows the listing call used to decide whether the resource
    already exists; ``name`` must be unique within kind and scope.
    ``depends_on`` holds keys (``"Kind/name"``) or bare names of other specs.
    """

    kind: ResourceKind
    name: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()
    scope: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError(f"{self.kind.value} resource must have a name")
        # Freeze the mappings so specs can be shared safely between runs
        object.__setattr__(
            self, "parameters", MappingProxyType(dict(self.parameters))
        )
        object.__setattr__(self, "scope", MappingProxyType(dict(self.scope)))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))

    @property
    def key(self) -> str:
        return make_key(self.kind, self.name)

    def __hash__(self) -> int:
        # Mapping fields are unhashable; the key is unique within a plan
        return hash(self.key)


class ProvisioningPlan:
    """
    Ordered, immutable sequence of resource specs.

    Instances are produced by ``plan.build_plan`` which guarantees that every
    spec appears after everything it depends on.
    """

    def __init__(self, specs: Sequence[ResourceSpec]):
        self._specs: Tuple[ResourceSpec, ...] = tuple(specs)
        self._by_key: Dict[str, ResourceSpec] = {s.key: s for s in self._specs}

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __getitem__(self, index: int) -> ResourceSpec:
        return self._specs[index]

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __repr__(self) -> str:
        keys = ", ".join(s.key for s in self._specs)
        return f"ProvisioningPlan([{keys}])"

    def get(self, key: str) -> Optional[ResourceSpec]:
        return self._by_key.get(key)

    @property
    def keys(self) -> List[str]:
        return [s.key for s in self._specs]


@dataclass
class StepResult:
    """Result of reconciling one spec."""

    spec: ResourceSpec
    outcome: StepOutcome
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome in (StepOutcome.ALREADY_EXISTS, StepOutcome.CREATED)

    @property
    def failed(self) -> bool:
        return self.outcome == StepOutcome.FAILED


def exit_code(results: Sequence[StepResult]) -> int:
    """Process exit code for a run: 0 when nothing failed, 1 otherwise."""
    return 1 if any(r.failed for r in results) else 0


def summarize(results: Sequence[StepResult]) -> Dict[str, int]:
    """Count results per outcome, keyed by outcome value."""
    counts = {outcome.value: 0 for outcome in StepOutcome}
    for result in results:
        counts[result.outcome.value] += 1
    return counts
