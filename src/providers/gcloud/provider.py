"""
gcloud Provider - Implements ProvisioningProvider on top of the gcloud CLI.

Each existence check is a ``list`` call formatted down to bare resource
names; each creation is one or more blocking ``create`` calls. gcloud waits
for long-running operations to finish unless ``--async`` is passed, so a
successful create means the resource is ready for dependent steps.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

from models import ResourceKind
from providers.base import (
    CreationFailedError,
    ProvisioningProvider,
    QueryFailedError,
)
from providers.gcloud.commands import (
    COMMANDS,
    NAT_SCOPE_KEY,
    create_commands,
    list_command,
    mask_args,
    nat_list_command,
)

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """A gcloud invocation exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str):
        self.args_masked = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"'{' '.join(self.args_masked)}' exited with {returncode}: {stderr}"
        )


class GcloudProvider(ProvisioningProvider):
    """
    Provider that shells out to the gcloud command-line tool.

    Authentication and the active account are whatever the local gcloud
    configuration holds; only the target project is passed explicitly.
    """

    def __init__(self):
        self.binary: str = "gcloud"
        self.project: Optional[str] = None
        self.extra_args: List[str] = []

    @property
    def name(self) -> str:
        return "gcloud"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def supported_kinds(self) -> List[ResourceKind]:
        return list(COMMANDS.keys())

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load gcloud provider configuration from environment variables."""
        return {
            "binary": os.getenv("GCLOUD_BINARY", "gcloud"),
            "project": os.getenv("PROJECT_ID") or os.getenv("CLOUDSDK_CORE_PROJECT"),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the provider with configuration."""
        self.binary = config.get("binary") or self.binary
        self.project = config.get("project") or None
        self.extra_args = list(config.get("extra_args", []))

        if not self.project:
            logger.warning(
                "No project configured; gcloud will use its active configuration"
            )

        logger.debug(
            f"gcloud provider initialized: binary={self.binary}, "
            f"project={self.project}"
        )

    async def list_resources(
        self, kind: ResourceKind, scope: Mapping[str, str]
    ) -> List[str]:
        """List existing resource names of a kind within a scope."""
        try:
            names = _lines(await self._run(list_command(kind, scope, self.project)))
            if kind == ResourceKind.ROUTER_NAT:
                # A router without its NAT config is an unfinished RouterNAT
                names = [
                    router
                    for router in names
                    if await self._router_has_nat(router, scope)
                ]
        except (CommandError, OSError, ValueError) as e:
            raise QueryFailedError(f"Could not list {kind.value} resources", str(e))

        return names

    async def create_resource(
        self, kind: ResourceKind, name: str, parameters: Mapping[str, str]
    ) -> None:
        """
        Create a resource, running every command its kind needs in order.

        A RouterNAT whose router already exists (left behind by a NAT
        creation that failed) only gets its NAT config created.
        """
        try:
            commands = create_commands(kind, name, parameters, self.project)
            if kind == ResourceKind.ROUTER_NAT and await self._router_exists(
                name, parameters
            ):
                logger.info(f"Router {name} already exists, creating its NAT only")
                commands = commands[1:]

            for args in commands:
                await self._run(args)
        except (CommandError, OSError, ValueError) as e:
            raise CreationFailedError(f"Could not create {kind.value} {name}", str(e))

    async def _router_has_nat(self, router: str, scope: Mapping[str, str]) -> bool:
        nats = _lines(await self._run(nat_list_command(router, scope)))
        wanted = scope.get(NAT_SCOPE_KEY)
        return wanted in nats if wanted else bool(nats)

    async def _router_exists(self, name: str, parameters: Mapping[str, str]) -> bool:
        region = parameters.get("region")
        scope = {"region": region} if region else {}
        args = list_command(ResourceKind.ROUTER_NAT, scope, self.project)
        return name in _lines(await self._run(args))

    async def _run(self, args: Sequence[str]) -> str:
        """Run gcloud with the given arguments and return its stdout."""
        argv = [self.binary, *args, *self.extra_args, "--quiet"]
        if self.project:
            argv.append(f"--project={self.project}")

        masked = mask_args(argv)
        logger.debug(f"Running: {' '.join(masked)}")

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise CommandError(
                masked, process.returncode, stderr.decode(errors="replace").strip()
            )
        return stdout.decode(errors="replace")


def _lines(output: str) -> List[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]
