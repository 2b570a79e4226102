"""
Client for the companion shutdown agent.

The agent listens on a fixed port and exposes a single endpoint::

    POST /shutdown
    Authorization: Bearer <shared secret>

Only the response status matters. Failures are reported to the caller and
never retried here; repeated attempts are operator-initiated.
"""

import logging
from ipaddress import ip_address as parse_ip
from typing import Optional

import httpx

from errors import AgentError, ValidationError

logger = logging.getLogger(__name__)

SHUTDOWN_PATH = "/shutdown"


class ShutdownClient:
    """Issues authenticated shutdown requests to device agents."""

    def __init__(
        self,
        port: int = 3001,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.port = port
        self.timeout = timeout
        self._transport = transport

    def endpoint_for(self, ip_address: str) -> str:
        try:
            addr = parse_ip(ip_address)
        except ValueError:
            raise ValidationError(f"Invalid IP address '{ip_address}'")
        host = f"[{addr}]" if addr.version == 6 else str(addr)
        return f"http://{host}:{self.port}{SHUTDOWN_PATH}"

    async def shutdown(self, ip_address: str, secret: str) -> None:
        """
        Ask the agent at ``ip_address`` to power its host off.

        Raises:
            ValidationError: bad IP or empty secret (nothing is sent).
            AgentError: non-2xx response, connection failure or timeout.
        """
        if not secret:
            raise ValidationError("No shutdown agent secret configured")
        url = self.endpoint_for(ip_address)

        async with httpx.AsyncClient(
            transport=self._transport, timeout=self.timeout
        ) as client:
            try:
                resp = await client.post(
                    url, headers={"Authorization": f"Bearer {secret}"}
                )
            except httpx.TimeoutException as exc:
                logger.warning(f"Shutdown agent at {url} timed out")
                raise AgentError(f"Shutdown agent at {ip_address} timed out") from exc
            except httpx.HTTPError as exc:
                logger.warning(f"Shutdown agent at {url} unreachable: {exc}")
                raise AgentError(f"Failed to contact shutdown agent at {ip_address}") from exc

        if not resp.is_success:
            logger.warning(f"Shutdown agent at {url} returned HTTP {resp.status_code}")
            raise AgentError(
                f"Shutdown agent at {ip_address} returned HTTP {resp.status_code}"
            )
        logger.info(f"Shutdown accepted by agent at {ip_address}")
