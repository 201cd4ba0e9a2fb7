"""Permission-enforcing network gateway handed to agent code and MCP clients."""

import logging
from typing import Any

import httpx

from agentpack.errors import PermissionDeniedError
from agentpack.permissions import PermissionGrant, check_permission

logger = logging.getLogger(__name__)


class NetworkGateway:
    """Permission-checked outbound HTTP for agent code and MCP clients.

    Every call made through the gateway is checked against the package's grant
    first. A denied call raises PermissionDeniedError for that call alone.

    The gateway only covers traffic routed through it. Agent code runs with
    full builtins, so a direct ``import httpx`` or ``urllib`` call bypasses
    these checks; the worker process is not a security boundary.
    """

    def __init__(
        self,
        grant: PermissionGrant | None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self.grant = grant
        self._transport = transport
        self._timeout = timeout

    def allows(self, url: str) -> bool:
        return check_permission(self.grant, "fetch", url)

    async def fetch(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self.allows(url):
            logger.warning("Blocked outbound request to %s", url)
            raise PermissionDeniedError("fetch", url)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.fetch("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.fetch("POST", url, **kwargs)
