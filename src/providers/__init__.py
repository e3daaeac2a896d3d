"""
Provider system for provisionctl.

Providers bind the reconciler to a concrete provisioning API.
"""

from providers.base import (
    CreationFailedError,
    ProviderError,
    ProvisioningProvider,
    QueryFailedError,
)
from providers.registry import ProviderRegistry, get_registry

__all__ = [
    "CreationFailedError",
    "ProviderError",
    "ProvisioningProvider",
    "QueryFailedError",
    "ProviderRegistry",
    "get_registry",
]
