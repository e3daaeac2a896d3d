"""
HTTP Provider - Implements ProvisioningProvider for a REST provisioning API.

Expected API shape:

    GET  {base}/resources/{kind}?<scope>     -> {"items": [{"name": ...}, ...]}
    POST {base}/resources/{kind}             <- {"name": ..., "parameters": {...}}
    GET  {base}/resources/{kind}/{name}      -> {"name": ..., "status": ...}

Creation is accepted asynchronously by the API, so the provider polls the
resource until it reports READY before returning.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from models import ResourceKind
from providers.base import (
    CreationFailedError,
    ProvisioningProvider,
    QueryFailedError,
)

logger = logging.getLogger(__name__)

STATUS_READY = "READY"
STATUS_FAILED = "FAILED"


class HTTPProvider(ProvisioningProvider):
    """Provider backed by a generic HTTP provisioning API."""

    def __init__(self):
        self.api_base_url: str = ""
        self.api_token: Optional[str] = None
        self.timeout: int = 3600  # seconds to wait for a resource to be ready
        self.poll_interval: int = 10  # seconds between status checks
        self.request_timeout: int = 60

    @property
    def name(self) -> str:
        return "http"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load HTTP provider configuration from environment variables."""
        return {
            "api_base_url": os.getenv("PROVISIONING_API_URL", ""),
            "api_token": os.getenv("PROVISIONING_API_TOKEN", ""),
            "timeout": int(os.getenv("PROVISIONING_API_TIMEOUT", "3600")),
            "poll_interval": int(os.getenv("PROVISIONING_API_POLL_INTERVAL", "10")),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the provider with configuration."""
        self.api_base_url = config.get("api_base_url", self.api_base_url).rstrip("/")
        self.api_token = config.get("api_token") or None
        self.timeout = config.get("timeout", self.timeout)
        self.poll_interval = config.get("poll_interval", self.poll_interval)
        self.request_timeout = config.get("request_timeout", self.request_timeout)

        if not self.api_base_url:
            raise ValueError(
                "Provisioning API URL not configured. "
                "Set PROVISIONING_API_URL environment variable."
            )

        logger.debug(
            f"HTTP provider initialized: api_base_url={self.api_base_url}, "
            f"timeout={self.timeout}s, poll_interval={self.poll_interval}s"
        )

    async def list_resources(
        self, kind: ResourceKind, scope: Mapping[str, str]
    ) -> List[str]:
        """List existing resource names of a kind within a scope."""
        url = self._collection_url(kind)
        error = f"Could not list {kind.value} resources"
        try:
            async with self._session() as session:
                async with session.get(url, params=dict(scope)) as response:
                    if response.status != 200:
                        raise QueryFailedError(
                            error, f"HTTP {response.status}: {await response.text()}"
                        )
                    data = await response.json()
            return _item_names(data)
        except asyncio.TimeoutError:
            raise QueryFailedError(
                error, f"request timed out after {self.request_timeout}s"
            )
        except aiohttp.ClientError as e:
            raise QueryFailedError(error, str(e))
        except ValueError as e:
            # Body was not JSON or not a listing
            raise QueryFailedError(error, f"unexpected response: {e}")

    async def create_resource(
        self, kind: ResourceKind, name: str, parameters: Mapping[str, str]
    ) -> None:
        """Submit a resource for creation and wait until it is ready."""
        error = f"Could not create {kind.value} {name}"
        payload = {"name": name, "parameters": dict(parameters)}
        try:
            async with self._session() as session:
                async with session.post(
                    self._collection_url(kind), json=payload
                ) as response:
                    if response.status not in (200, 201, 202):
                        raise CreationFailedError(
                            error, f"HTTP {response.status}: {await response.text()}"
                        )
        except asyncio.TimeoutError:
            raise CreationFailedError(
                error, f"request timed out after {self.request_timeout}s"
            )
        except aiohttp.ClientError as e:
            raise CreationFailedError(error, str(e))

        # Request failures while polling surface from _get_status as
        # CreationFailedError, so a timeout here is the readiness deadline
        try:
            await asyncio.wait_for(
                self._wait_until_ready(kind, name), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise CreationFailedError(error, f"not ready after {self.timeout}s")

    # Private helper methods

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        )

    def _collection_url(self, kind: ResourceKind) -> str:
        return f"{self.api_base_url}/resources/{kind.value}"

    async def _get_status(self, kind: ResourceKind, name: str) -> Dict[str, Any]:
        url = f"{self._collection_url(kind)}/{name}"
        error = f"Could not read status of {kind.value} {name}"
        try:
            async with self._session() as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise CreationFailedError(
                            error, f"HTTP {response.status}: {await response.text()}"
                        )
                    status = await response.json()
        except asyncio.TimeoutError:
            raise CreationFailedError(
                error, f"request timed out after {self.request_timeout}s"
            )
        except aiohttp.ClientError as e:
            raise CreationFailedError(error, str(e))
        except ValueError as e:
            raise CreationFailedError(error, f"unexpected response: {e}")

        if not isinstance(status, dict):
            raise CreationFailedError(
                error, f"unexpected response: expected an object, got {status!r}"
            )
        return status

    async def _wait_until_ready(self, kind: ResourceKind, name: str) -> None:
        while True:
            status = await self._get_status(kind, name)
            state = status.get("status")

            if state == STATUS_READY:
                return
            if state == STATUS_FAILED:
                raise CreationFailedError(
                    f"Could not create {kind.value} {name}",
                    status.get("message") or "provider reported FAILED",
                )

            logger.debug(
                f"{kind.value} {name} status: {state}, "
                f"waiting {self.poll_interval}s..."
            )
            await asyncio.sleep(self.poll_interval)


def _item_names(data: Any) -> List[str]:
    """
    Extract resource names from a listing body.

    Raises:
        ValueError: If the body is not a listing of named items.
    """
    if not isinstance(data, dict):
        raise ValueError(f"expected an object, got {data!r}")
    items = data.get("items", [])
    if not isinstance(items, list):
        raise ValueError("'items' is not a list")

    names = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            raise ValueError(f"item without a name: {item!r}")
        names.append(item["name"])
    return names
