"""
gcloud command construction.

Maps each resource kind onto the gcloud command group that lists and creates
it. Parameters render as ``--key=value`` flags; an empty value renders a bare
``--key`` flag. RouterNAT parameters prefixed with ``nat:`` belong to the NAT
configuration created on the router. A RouterNAT exists only once its router
carries the NAT config, so listing one takes a router listing followed by a
NAT listing per router.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from models import ResourceKind

NAT_PREFIX = "nat:"

# RouterNAT scope key naming the NAT config the router must carry
NAT_SCOPE_KEY = "nat"

# Flags whose values must never reach logs
SENSITIVE_FLAGS = {"root-password", "password", "auth-string"}


@dataclass(frozen=True)
class KindCommands:
    """gcloud command group for one resource kind."""

    group: Tuple[str, ...]
    list_format: str = "value(name.basename())"
    # scope key -> list flag, for scope keys whose flag name differs
    scope_flags: Dict[str, str] = field(default_factory=dict)


COMMANDS: Dict[ResourceKind, KindCommands] = {
    ResourceKind.NETWORK: KindCommands(("compute", "networks")),
    ResourceKind.SUBNET: KindCommands(
        ("compute", "networks", "subnets"), scope_flags={"region": "regions"}
    ),
    ResourceKind.CLUSTER: KindCommands(("container", "clusters")),
    ResourceKind.ROUTER_NAT: KindCommands(
        ("compute", "routers"), scope_flags={"region": "regions"}
    ),
    ResourceKind.MANAGED_DATABASE: KindCommands(("sql", "instances")),
    ResourceKind.SQL_DATABASE: KindCommands(("sql", "databases")),
    ResourceKind.CACHE: KindCommands(("redis", "instances")),
    ResourceKind.FILE_SHARE: KindCommands(("filestore", "instances")),
    ResourceKind.ARTIFACT_REPO: KindCommands(("artifacts", "repositories")),
    ResourceKind.PEERING_RANGE: KindCommands(("compute", "addresses")),
    ResourceKind.STATIC_ADDRESS: KindCommands(("compute", "addresses")),
    ResourceKind.SERVICE_API: KindCommands(
        ("services",), list_format="value(config.name)"
    ),
    ResourceKind.SERVICE_PEERING: KindCommands(
        ("services", "vpc-peerings"), list_format="value(service.basename())"
    ),
    ResourceKind.IAM_BINDING: KindCommands(
        ("projects",), list_format="value(bindings.role)"
    ),
}


def to_flags(
    options: Mapping[str, str], renames: Optional[Mapping[str, str]] = None
) -> List[str]:
    """Render a mapping as gcloud flags, keeping its order."""
    renames = renames or {}
    flags = []
    for key, value in options.items():
        flag = renames.get(key, key)
        flags.append(f"--{flag}" if value == "" else f"--{flag}={value}")
    return flags


def mask_args(args: Sequence[str]) -> List[str]:
    """Return a copy of argv with sensitive flag values replaced."""
    masked = []
    for arg in args:
        flag, sep, _ = arg.partition("=")
        if sep and flag.lstrip("-") in SENSITIVE_FLAGS:
            arg = f"{flag}=****"
        masked.append(arg)
    return masked


def split_nat_parameters(
    parameters: Mapping[str, str],
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Split RouterNAT parameters into (router, nat) option mappings."""
    router: Dict[str, str] = {}
    nat: Dict[str, str] = {}
    for key, value in parameters.items():
        if key.startswith(NAT_PREFIX):
            nat[key[len(NAT_PREFIX) :]] = value
        else:
            router[key] = value
    return router, nat


def list_command(
    kind: ResourceKind, scope: Mapping[str, str], project: Optional[str] = None
) -> List[str]:
    """
    Build the argv (without the gcloud binary) listing a kind within a scope.

    Raises:
        ValueError: If an IAM binding listing has no project or member.
    """
    commands = COMMANDS[kind]
    fmt = f"--format={commands.list_format}"

    if kind == ResourceKind.IAM_BINDING:
        target = scope.get("project") or project
        member = scope.get("member")
        if not target or not member:
            raise ValueError("IAM binding listing needs a project and a member")
        return [
            "projects",
            "get-iam-policy",
            target,
            "--flatten=bindings[].members",
            f"--filter=bindings.members:{member}",
            fmt,
        ]

    if kind == ResourceKind.SERVICE_API:
        return ["services", "list", "--enabled", fmt]

    if kind == ResourceKind.ROUTER_NAT:
        scope = {k: v for k, v in scope.items() if k != NAT_SCOPE_KEY}

    return [*commands.group, "list", *to_flags(scope, commands.scope_flags), fmt]


def nat_list_command(router: str, scope: Mapping[str, str]) -> List[str]:
    """
    Build the argv listing the NAT configs of one router.

    Raises:
        ValueError: If the scope has no region.
    """
    region = scope.get("region")
    if not region:
        raise ValueError("RouterNAT listing needs a region")
    return [
        "compute",
        "routers",
        "nats",
        "list",
        f"--router={router}",
        f"--region={region}",
        "--format=value(name)",
    ]


def create_commands(
    kind: ResourceKind,
    name: str,
    parameters: Mapping[str, str],
    project: Optional[str] = None,
) -> List[List[str]]:
    """
    Build the argv list (without the gcloud binary) creating a resource.

    Most kinds need a single command; RouterNAT creates the router and then
    its NAT configuration.

    Raises:
        ValueError: If required composite parameters are missing.
    """
    commands = COMMANDS[kind]

    if kind == ResourceKind.IAM_BINDING:
        options = dict(parameters)
        target = options.pop("project", None) or project
        if not target:
            raise ValueError("IAM binding needs a project")
        return [
            [
                "projects",
                "add-iam-policy-binding",
                target,
                *to_flags(options),
                f"--role={name}",
            ]
        ]

    if kind == ResourceKind.SERVICE_API:
        return [["services", "enable", name, *to_flags(parameters)]]

    if kind == ResourceKind.SERVICE_PEERING:
        return [
            [
                "services",
                "vpc-peerings",
                "connect",
                f"--service={name}",
                *to_flags(parameters),
            ]
        ]

    if kind == ResourceKind.ROUTER_NAT:
        router, nat = split_nat_parameters(parameters)
        nat_name = nat.pop("name", None)
        if not nat_name:
            raise ValueError(
                f"RouterNAT '{name}' needs a '{NAT_PREFIX}name' parameter"
            )
        return [
            [*commands.group, "create", name, *to_flags(router)],
            [
                "compute",
                "routers",
                "nats",
                "create",
                nat_name,
                f"--router={name}",
                *to_flags(nat),
            ],
        ]

    return [[*commands.group, "create", name, *to_flags(parameters)]]
