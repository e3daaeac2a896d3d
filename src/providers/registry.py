"""
Provider Registry - Discovery and registration of provisioning providers.

Built-in providers are registered explicitly; third-party providers are
discovered through the 'provisionctl.providers' entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from providers.base import ProvisioningProvider

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "provisionctl.providers"


class ProviderRegistry:
    """
    Central registry for provisioning providers.

    Handles registration, configuration loading and instantiation.
    """

    def __init__(self):
        # Registered provider classes (not instantiated)
        self._providers: Dict[str, Type[ProvisioningProvider]] = {}

        # Cached metadata (name, version) to avoid repeated instantiation
        self._provider_info: Dict[str, Dict[str, str]] = {}

        # Instantiated and initialized providers
        self._instances: Dict[str, ProvisioningProvider] = {}

        # Provider configurations loaded from environment
        self._provider_configs: Dict[str, Dict[str, Any]] = {}

    def register_provider(self, provider_class: Type[ProvisioningProvider]) -> None:
        """
        Register a provider class.

        Args:
            provider_class: The ProvisioningProvider subclass to register
        """
        temp_instance = provider_class()
        name = temp_instance.name
        version = temp_instance.version

        if self._providers.get(name) is provider_class:
            return
        if name in self._providers:
            logger.warning(f"Overwriting existing provider: {name}")

        self._providers[name] = provider_class
        self._provider_info[name] = {"name": name, "version": version}
        self._provider_configs[name] = provider_class.load_config_from_env()
        logger.debug(f"Registered provider: {name} v{version}")

    async def get_provider(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> ProvisioningProvider:
        """
        Get an initialized provider instance.

        Args:
            name: The provider name
            config: Configuration passed to initialize(); defaults to the
                configuration loaded from the environment at registration

        Returns:
            An initialized ProvisioningProvider instance

        Raises:
            ValueError: If the provider name is not registered
        """
        if name not in self._providers:
            available = ", ".join(self._providers.keys()) or "none"
            raise ValueError(
                f"Unknown provider: {name}. Available providers: {available}"
            )

        if name not in self._instances:
            provider = self._providers[name]()
            if config is None:
                config = self.get_provider_config(name)
            await provider.initialize(config)
            self._instances[name] = provider
            logger.info(f"Initialized provider: {name}")

        return self._instances[name]

    async def close(self) -> None:
        """Close and forget every initialized provider."""
        for name, provider in list(self._instances.items()):
            try:
                await provider.close()
            except Exception as e:
                logger.error(f"Error closing provider '{name}': {e}")
        self._instances.clear()

    def list_providers(self) -> List[str]:
        """List all registered provider names."""
        return list(self._providers.keys())

    def has_provider(self, name: str) -> bool:
        """Check if a provider is registered."""
        return name in self._providers

    def get_provider_info(self, name: str) -> Optional[Dict[str, str]]:
        """
        Get information about a registered provider.

        Returns:
            Dictionary with 'name' and 'version', or None if not found
        """
        return self._provider_info.get(name)

    def get_provider_config(self, name: str) -> Dict[str, Any]:
        """Get a copy of the environment-loaded configuration for a provider."""
        return dict(self._provider_configs.get(name, {}))


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """Get the global provider registry singleton."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_providers() -> None:
    """
    Register the built-in providers and discover third-party providers
    via entry points.
    """
    from providers.gcloud import GcloudProvider
    from providers.http import HTTPProvider

    registry = get_registry()
    registry.register_provider(GcloudProvider)
    registry.register_provider(HTTPProvider)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            provider_class = ep.load()
            registry.register_provider(provider_class)
        except Exception as e:
            logger.warning(f"Could not load provider {ep.name}: {e}")
