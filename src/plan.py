"""
Plan building - orders resource specs and converts plan documents.

A plan is valid when every dependency reference resolves to exactly one spec
in the plan and the dependency graph has no cycles. Specs are emitted in
declaration order whenever their dependencies allow it, so the same input
always yields the same plan.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Union

import yaml

from models import ProvisioningPlan, ResourceKind, ResourceSpec
from validation import validate_plan_document, validate_resource

logger = logging.getLogger(__name__)


class PlanError(ValueError):
    """Raised when a set of specs cannot form a valid plan."""


def _resolve_reference(
    ref: str, spec: ResourceSpec, by_key: Dict[str, ResourceSpec]
) -> str:
    if ref in by_key:
        return ref

    candidates = [key for key, s in by_key.items() if s.name == ref]
    if not candidates:
        raise PlanError(f"{spec.key} depends on unknown resource '{ref}'")
    if len(candidates) > 1:
        raise PlanError(
            f"{spec.key} depends on ambiguous name '{ref}' "
            f"(matches {', '.join(sorted(candidates))}); use Kind/name"
        )
    return candidates[0]


def _find_cycle(pending: Dict[str, ResourceSpec]) -> List[str]:
    """
    Return one dependency cycle among the specs left unplaced.

    Every pending spec has at least one pending dependency, so walking any
    chain of pending dependencies must revisit a spec.
    """
    path: List[str] = []
    current = next(iter(pending))
    while current not in path:
        path.append(current)
        current = next(d for d in pending[current].depends_on if d in pending)
    return path[path.index(current) :] + [current]


def build_plan(
    specs: Iterable[ResourceSpec], validate: bool = True
) -> ProvisioningPlan:
    """
    Build an ordered plan from resource specs.

    Args:
        specs: Specs in declaration order
        validate: Check each spec against its kind's schema

    Returns:
        A ProvisioningPlan whose order respects every dependency, with all
        dependency references normalized to ``Kind/name`` keys.

    Raises:
        PlanError: On duplicate specs, invalid specs, unknown, ambiguous or
            self references, or dependency cycles.
    """
    declared: List[ResourceSpec] = list(specs)
    by_key: Dict[str, ResourceSpec] = {}
    for spec in declared:
        if spec.key in by_key:
            raise PlanError(f"Duplicate resource {spec.key}")
        if validate:
            is_valid, error = validate_resource(spec.kind, spec.parameters, spec.scope)
            if not is_valid:
                raise PlanError(f"Invalid resource {spec.key}: {error}")
        by_key[spec.key] = spec

    normalized: List[ResourceSpec] = []
    for spec in declared:
        deps = []
        for ref in spec.depends_on:
            key = _resolve_reference(ref, spec, by_key)
            if key == spec.key:
                raise PlanError(f"{spec.key} depends on itself")
            if key not in deps:
                deps.append(key)
        normalized.append(
            ResourceSpec(
                kind=spec.kind,
                name=spec.name,
                parameters=spec.parameters,
                depends_on=tuple(deps),
                scope=spec.scope,
            )
        )

    ordered: List[ResourceSpec] = []
    placed = set()
    pending: Dict[str, ResourceSpec] = {s.key: s for s in normalized}

    while pending:
        ready = next(
            (
                spec
                for spec in pending.values()
                if all(dep in placed for dep in spec.depends_on)
            ),
            None,
        )
        if ready is None:
            cycle = _find_cycle(pending)
            raise PlanError(f"Dependency cycle: {' -> '.join(cycle)}")
        ordered.append(ready)
        placed.add(ready.key)
        del pending[ready.key]

    logger.debug(f"Built plan with {len(ordered)} steps")
    return ProvisioningPlan(ordered)


def parse_plan_document(document: Any) -> ProvisioningPlan:
    """
    Convert a decoded plan document into a plan.

    Args:
        document: Mapping with a ``resources`` list

    Returns:
        The ordered ProvisioningPlan

    Raises:
        PlanError: If the document is malformed or the specs are invalid
    """
    is_valid, error = validate_plan_document(document)
    if not is_valid:
        raise PlanError(f"Invalid plan document: {error}")

    specs = [
        ResourceSpec(
            kind=ResourceKind(entry["kind"]),
            name=entry["name"],
            parameters=entry.get("parameters", {}),
            depends_on=tuple(entry.get("dependsOn", [])),
            scope=entry.get("scope", {}),
        )
        for entry in document["resources"]
    ]
    return build_plan(specs)


def load_plan(path: Union[str, Path]) -> ProvisioningPlan:
    """Load a plan from a YAML (.yaml/.yml) or JSON file."""
    path = Path(path)
    with open(path, "r") as f:
        if path.suffix in (".yaml", ".yml"):
            document = yaml.safe_load(f)
        else:
            document = json.load(f)

    logger.info(f"Loaded plan document {path}")
    return parse_plan_document(document)


def plan_to_document(plan: Sequence[ResourceSpec]) -> Dict[str, Any]:
    """Convert a plan back into its document form."""
    resources = []
    for spec in plan:
        entry: Dict[str, Any] = {"kind": spec.kind.value, "name": spec.name}
        if spec.parameters:
            entry["parameters"] = dict(spec.parameters)
        if spec.scope:
            entry["scope"] = dict(spec.scope)
        if spec.depends_on:
            entry["dependsOn"] = list(spec.depends_on)
        resources.append(entry)
    return {"resources": resources}
