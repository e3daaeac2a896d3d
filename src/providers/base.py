"""
Provider Base - Abstract interface for provisioning APIs.

A provider answers two questions for the reconciler: which resources of a
kind already exist within a scope, and how to create a missing one. The
default shipped provider drives the gcloud command-line tool.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple

from models import ResourceKind
from validation import validate_resource

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for failures reported by a provider."""

    def __init__(self, message: str, detail: str = ""):
        self.message = message
        self.detail = detail
        super().__init__(f"{message}: {detail}" if detail else message)


class QueryFailedError(ProviderError):
    """Listing existing resources failed; existence cannot be determined."""


class CreationFailedError(ProviderError):
    """The provider rejected or did not complete a create call."""


class ProvisioningProvider(ABC):
    """
    Abstract base class for provisioning providers.

    Providers are stateless with respect to the plan: existence is derived
    from the remote API on every call, never cached between steps.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (e.g., 'gcloud')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Provider version string."""
        pass

    @property
    def supported_kinds(self) -> List[ResourceKind]:
        """Resource kinds this provider can list and create."""
        return list(ResourceKind)

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the provider with configuration.

        Called once when the provider is loaded.

        Args:
            config: Provider-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def list_resources(
        self, kind: ResourceKind, scope: Mapping[str, str]
    ) -> List[str]:
        """
        List identifiers of existing resources of a kind.

        Args:
            kind: The resource kind to list
            scope: Filter narrowing the listing (network, region, ...)

        Returns:
            Identifiers of the resources found, possibly empty.

        Raises:
            QueryFailedError: If the listing itself failed.
        """
        pass

    @abstractmethod
    async def create_resource(
        self, kind: ResourceKind, name: str, parameters: Mapping[str, str]
    ) -> None:
        """
        Create a resource and wait until the provider reports it ready.

        Args:
            kind: The resource kind
            name: The resource name
            parameters: Creation parameters, passed through verbatim

        Raises:
            CreationFailedError: If creation was rejected or did not complete.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the provider."""
        return None

    def validate(
        self,
        kind: ResourceKind,
        parameters: Mapping[str, str],
        scope: Mapping[str, str],
    ) -> Tuple[bool, Optional[str]]:
        """
        Validate that a resource can be handled by this provider.

        Returns:
            Tuple of (is_valid, error_message).
        """
        if kind not in self.supported_kinds:
            return False, f"Provider '{self.name}' does not support {kind.value}"
        return validate_resource(kind, parameters, scope)

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load provider-specific configuration from environment variables.

        Returns:
            Dictionary of configuration values for this provider.
        """
        return {}
