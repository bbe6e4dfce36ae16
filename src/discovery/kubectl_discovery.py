# src/discovery/kubectl_discovery.py — v1
"""Resource discovery through the kubectl CLI.

Runs ``kubectl api-resources`` and ``kubectl explain`` as async
subprocesses with a per-call timeout. No shell is involved: arguments are
passed as a list.
"""

from __future__ import annotations

import asyncio
import logging

from capscan.discovery.base_discovery import BaseResourceDiscovery, DiscoveryError
from capscan.discovery.models import ResourceDescription, ResourceType

logger = logging.getLogger(__name__)


class KubectlDiscovery(BaseResourceDiscovery):
    """Discovery adapter backed by kubectl."""

    def __init__(
        self,
        kubectl_path: str = "kubectl",
        kubeconfig: str | None = None,
        context: str | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._kubectl = kubectl_path
        self._kubeconfig = kubeconfig or None
        self._context = context or None
        self._timeout_s = timeout_s

    async def list_resource_types(self) -> list[str]:
        """Scan names of all API resources, de-duplicated, in listing order."""
        names: list[str] = []
        seen: set[str] = set()
        for rt in await self.list_api_resources():
            if rt.scan_name not in seen:
                seen.add(rt.scan_name)
                names.append(rt.scan_name)
        logger.info("Discovered %d resource types", len(names))
        return names

    async def list_api_resources(self) -> list[ResourceType]:
        """Parsed ``kubectl api-resources`` listing."""
        output = await self._run(["api-resources", "--no-headers"])
        return parse_api_resources(output)

    async def describe(self, resource_name: str) -> ResourceDescription:
        """``kubectl explain`` for a resource, falling back to the bare kind.

        A ``Kind.group`` name that kubectl cannot explain is retried as
        ``Kind`` alone.
        """
        try:
            definition = await self._run(["explain", resource_name])
        except DiscoveryError:
            if "." not in resource_name:
                raise
            kind = resource_name.split(".", 1)[0]
            logger.debug("explain %s failed, retrying with %s", resource_name, kind)
            definition = await self._run(["explain", kind])
        return parse_explain(resource_name, definition)

    @property
    def provider_name(self) -> str:
        return "kubectl"

    async def _run(self, args: list[str]) -> str:
        command = [self._kubectl, *args]
        if self._kubeconfig:
            command += ["--kubeconfig", self._kubeconfig]
        if self._context:
            command += ["--context", self._context]

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DiscoveryError(f"Cannot execute {self._kubectl}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout_s
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise DiscoveryError(
                f"kubectl {' '.join(args)} timed out after {self._timeout_s}s"
            ) from e

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            raise DiscoveryError(
                f"kubectl {' '.join(args)} failed (exit {process.returncode}): {detail}"
            )
        return stdout.decode(errors="replace") if stdout else ""


def parse_api_resources(output: str) -> list[ResourceType]:
    """Parse ``kubectl api-resources --no-headers`` output.

    Columns are NAME [SHORTNAMES] APIVERSION NAMESPACED KIND; SHORTNAMES may
    be empty, so rows are read from the right.
    """
    resources: list[ResourceType] = []
    for line in output.splitlines():
        cols = line.split()
        if len(cols) < 4:
            continue
        name, kind, namespaced, api_version = cols[0], cols[-1], cols[-2], cols[-3]
        short_names = cols[1].split(",") if len(cols) >= 5 else []
        group = api_version.rsplit("/", 1)[0] if "/" in api_version else ""
        resources.append(
            ResourceType(
                name=name,
                kind=kind,
                group=group,
                api_version=api_version,
                namespaced=namespaced.lower() == "true",
                short_names=short_names,
            )
        )
    return resources


def parse_explain(resource_name: str, definition: str) -> ResourceDescription:
    """Extract API metadata from the ``GROUP:`` and ``VERSION:`` header lines."""
    group: str | None = None
    version: str | None = None
    for line in definition.splitlines():
        if line.startswith("GROUP:"):
            group = line[len("GROUP:"):].strip()
        elif line.startswith("VERSION:"):
            version = line[len("VERSION:"):].strip()

    api_version: str | None = None
    if version:
        api_version = f"{group}/{version}" if group else version

    return ResourceDescription(
        resource_name=resource_name,
        definition=definition,
        api_version=api_version,
        group=group or None,
        version=version,
    )
