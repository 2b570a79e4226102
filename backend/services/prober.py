"""
Single-shot ICMP reachability probe.

Shells out to the system ``ping`` binary (one echo request) instead of
opening a raw socket, so the backend does not need CAP_NET_RAW itself.
A probe that times out is a normal "offline" outcome; only a probe that
cannot run at all raises :class:`errors.ProbeUnavailable`.
"""

import asyncio
import logging
import math
import re
import sys
import time
from dataclasses import dataclass
from ipaddress import ip_address as parse_ip
from typing import Optional

from config import settings
from errors import ProbeUnavailable, ValidationError
from models.device import Reachability

logger = logging.getLogger(__name__)

# "64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=1.23 ms"
# Windows prints "time<1ms" for sub-millisecond replies
PING_TIME_RE = re.compile(r"time[=<]\s*([0-9.]+)\s*ms", re.IGNORECASE)

_PRIVILEGE_MARKERS = ("operation not permitted", "permission denied")


@dataclass(frozen=True)
class ProbeResult:
    ip_address: Optional[str]
    reachability: Reachability
    latency_ms: Optional[float] = None

    @property
    def is_online(self) -> bool:
        return self.reachability is Reachability.ONLINE


def build_ping_command(
    ip: str, timeout: float, ping_binary: str = "ping", platform: str = sys.platform
) -> list[str]:
    """Build a one-echo ping command line for the current platform."""
    version = parse_ip(ip).version
    if platform.startswith("win"):
        command = [ping_binary, "-n", "1", "-w", str(max(1, int(timeout * 1000)))]
    elif platform == "darwin":
        # macOS: -W is in milliseconds, IPv6 needs ping6
        if version == 6:
            command = [ping_binary + "6", "-c", "1"]
        else:
            command = [ping_binary, "-c", "1", "-W", str(max(1, int(timeout * 1000)))]
    else:
        command = [ping_binary, "-n", "-c", "1", "-W", str(max(1, math.ceil(timeout)))]
        if version == 6:
            command.insert(1, "-6")
    command.append(ip)
    return command


def parse_latency(output: str) -> Optional[float]:
    """Extract the round-trip time in milliseconds from ping output."""
    match = PING_TIME_RE.search(output)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


async def probe_host(
    ip_address: str,
    timeout: float,
    ping_binary: Optional[str] = None,
) -> ProbeResult:
    """
    Send one ICMP echo to ``ip_address`` and wait at most ``timeout`` seconds.

    Returns:
        ProbeResult with ``online`` plus latency, or ``offline`` on timeout
        or a non-zero ping exit status.

    Raises:
        ValidationError: ``ip_address`` is not an IP address.
        ProbeUnavailable: the ping binary is missing or lacks privileges.
    """
    try:
        parse_ip(ip_address)
    except ValueError:
        raise ValidationError(f"Invalid IP address '{ip_address}'")

    command = build_ping_command(ip_address, timeout, ping_binary or settings.PING_BINARY)
    start = time.perf_counter()
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ProbeUnavailable(f"Ping binary not found: {command[0]}") from exc
    except PermissionError as exc:
        raise ProbeUnavailable(f"Not permitted to run {command[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(process)
        await process.wait()
        logger.debug(f"Probe {ip_address}: no reply within {timeout:.1f}s")
        return ProbeResult(ip_address, Reachability.OFFLINE)
    except asyncio.CancelledError:
        _kill(process)
        # Reap the child so a cancelled probe leaves no zombie
        await asyncio.shield(process.wait())
        raise

    elapsed_ms = (time.perf_counter() - start) * 1000
    output = stdout.decode(errors="replace")

    if process.returncode == 0:
        latency = parse_latency(output)
        return ProbeResult(
            ip_address,
            Reachability.ONLINE,
            latency if latency is not None else round(elapsed_ms, 1),
        )

    error_output = stderr.decode(errors="replace").lower()
    if any(marker in error_output for marker in _PRIVILEGE_MARKERS):
        raise ProbeUnavailable(
            f"Ping is not permitted on this host: {error_output.strip()}"
        )

    logger.debug(f"Probe {ip_address}: unreachable (exit {process.returncode})")
    return ProbeResult(ip_address, Reachability.OFFLINE)


async def probe_device(device, timeout: float, prober=probe_host) -> ProbeResult:
    """Probe a device, reporting ``unknown`` without any I/O when it has no IP."""
    if not device.ip_address:
        return ProbeResult(None, Reachability.UNKNOWN)
    return await prober(device.ip_address, timeout)


def _kill(process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
