"""
Schema Validation - JSON Schema validation for plan documents and specs.

Plan documents are validated as a whole before conversion, and each resource
kind declares the parameters and scope keys it cannot be created without.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from jsonschema import Draft7Validator

from models import ResourceKind

logger = logging.getLogger(__name__)

_STRING_MAP = {
    "type": "object",
    "additionalProperties": {"type": "string"},
}

PLAN_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["resources"],
    "properties": {
        "resources": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["kind", "name"],
                "additionalProperties": False,
                "properties": {
                    "kind": {"enum": [k.value for k in ResourceKind]},
                    "name": {"type": "string", "minLength": 1},
                    "parameters": _STRING_MAP,
                    "scope": _STRING_MAP,
                    "dependsOn": {
                        "type": "array",
                        "items": {"type": "string", "minLength": 1},
                    },
                },
            },
        },
    },
}


def _required(*params: str, scope: Tuple[str, ...] = ()) -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["parameters", "scope"],
        "properties": {
            "parameters": {"type": "object", "required": list(params)},
            "scope": {"type": "object", "required": list(scope)},
        },
    }


# Minimum each kind needs to be listed and created in the right place
KIND_SCHEMAS: Dict[ResourceKind, Dict[str, Any]] = {
    ResourceKind.NETWORK: _required(),
    ResourceKind.SUBNET: _required("network", "range", "region", scope=("network",)),
    ResourceKind.CLUSTER: _required("network", "subnetwork"),
    ResourceKind.ROUTER_NAT: _required(
        "network", "region", "nat:name", scope=("region",)
    ),
    ResourceKind.MANAGED_DATABASE: _required("database-version"),
    ResourceKind.CACHE: _required("region", scope=("region",)),
    ResourceKind.FILE_SHARE: _required("file-share", "network"),
    ResourceKind.ARTIFACT_REPO: _required(
        "location", "repository-format", scope=("location",)
    ),
    ResourceKind.IAM_BINDING: _required("member", scope=("member",)),
    ResourceKind.PEERING_RANGE: _required("addresses", "prefix-length", "network"),
    ResourceKind.STATIC_ADDRESS: _required(),
    ResourceKind.SERVICE_API: _required(),
    ResourceKind.SQL_DATABASE: _required("instance", scope=("instance",)),
    ResourceKind.SERVICE_PEERING: _required("ranges", "network", scope=("network",)),
}


def _collect_errors(validator: Draft7Validator, instance: Any) -> Optional[str]:
    errors = sorted(validator.iter_errors(instance), key=lambda e: list(e.path))
    if not errors:
        return None

    messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        messages.append(f"{path}: {error.message}")
    return "; ".join(messages)


def validate_plan_document(document: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a parsed plan document (YAML or JSON).

    Args:
        document: The decoded document

    Returns:
        Tuple of (is_valid, error_message)
    """
    error = _collect_errors(Draft7Validator(PLAN_DOCUMENT_SCHEMA), document)
    return error is None, error


def validate_resource(
    kind: ResourceKind,
    parameters: Mapping[str, str],
    scope: Mapping[str, str],
) -> Tuple[bool, Optional[str]]:
    """
    Validate that a resource declares what its kind requires.

    Args:
        kind: The resource kind
        parameters: Creation parameters
        scope: Listing scope

    Returns:
        Tuple of (is_valid, error_message)
    """
    schema = KIND_SCHEMAS.get(kind)
    if schema is None:
        return True, None

    instance = {"parameters": dict(parameters), "scope": dict(scope)}
    error = _collect_errors(Draft7Validator(schema), instance)
    if error:
        logger.debug(f"{kind.value} failed validation: {error}")
    return error is None, error
