"""
Background reachability monitor.

Every ``interval`` seconds the monitor snapshots the devices that have an
IP address, probes them concurrently (bounded by a semaphore and a
per-probe timeout), and reconciles the outcomes into cached device state:

    IDLE -> FETCHING -> PROBING -> RECONCILING -> IDLE

Only transitions (online <-> offline) produce a ``probe_online`` /
``probe_offline`` event, so devices with stable state do not flood the log.
A failed fetch skips the cycle; a failed probe or write skips one device.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from errors import LanWakeError
from models import EventKind, Reachability
from utils.audit import audit
from utils.clock import utcnow
from utils.logging_utils import LogTimer

from .prober import ProbeResult, probe_host
from .storage import DeviceSnapshot, NewDeviceEvent, Storage

logger = logging.getLogger(__name__)

Prober = Callable[[str, float], Awaitable[ProbeResult]]

# Extra time a probe gets beyond its own timeout before the monitor abandons it
PROBE_GRACE_SECONDS = 0.5


class MonitorState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROBING = "probing"
    RECONCILING = "reconciling"


@dataclass
class MonitorRunResult:
    """Summary of one monitor cycle."""
    probed: int = 0
    online: int = 0
    offline: int = 0
    transitions: int = 0
    errors: int = 0
    aborted: bool = False
    duration_ms: float = 0
    finished_at: Optional[datetime] = None
    outcomes: dict[int, Reachability] = field(default_factory=dict)


class DeviceMonitor:
    """Owns the periodic probe task; start it once, stop it on shutdown."""

    def __init__(
        self,
        storage: Storage,
        interval: float = 60.0,
        probe_timeout: float = 2.0,
        max_concurrency: int = 32,
        prober: Prober = probe_host,
        stop_timeout: float = 5.0,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.storage = storage
        self.interval = interval
        self.probe_timeout = probe_timeout
        self.max_concurrency = max_concurrency
        self.stop_timeout = stop_timeout
        self._prober = prober
        self._state = MonitorState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._last_run: Optional[MonitorRunResult] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_run(self) -> Optional[MonitorRunResult]:
        return self._last_run

    async def start(self) -> None:
        """Start the background loop. The first cycle runs immediately."""
        if self.running:
            logger.warning("Device monitor is already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="device-monitor")
        logger.info(
            f"Device monitor started (interval={self.interval:g}s, "
            f"timeout={self.probe_timeout:g}s, concurrency={self.max_concurrency})"
        )

    async def stop(self) -> None:
        """
        Stop accepting ticks and wait for an in-flight cycle to finish.

        A cycle still running after ``stop_timeout`` seconds is cancelled;
        each device is reconciled in its own transaction, so an abandoned
        cycle leaves no partial writes.
        """
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Device monitor cycle abandoned on shutdown")
        except asyncio.CancelledError:
            pass
        self._task = None
        self._state = MonitorState.IDLE
        logger.info("Device monitor stopped")

    async def run_once(self) -> MonitorRunResult:
        """Run one fetch, probe and reconcile cycle."""
        result = MonitorRunResult()
        start = time.perf_counter()
        try:
            with LogTimer(logger, "Reachability cycle", level=logging.DEBUG) as timer:
                self._state = MonitorState.FETCHING
                try:
                    devices = await self.storage.list_probe_targets()
                except LanWakeError as exc:
                    logger.error(f"Monitor cycle aborted, device fetch failed: {exc}")
                    result.aborted = True
                    return result

                self._state = MonitorState.PROBING
                outcomes = await self._probe_all(devices)

                self._state = MonitorState.RECONCILING
                now = utcnow()
                for device, outcome in zip(devices, outcomes):
                    if outcome is None:
                        result.errors += 1
                        continue
                    result.probed += 1
                    result.outcomes[device.id] = outcome.reachability
                    if outcome.is_online:
                        result.online += 1
                    else:
                        result.offline += 1
                    try:
                        if await self._reconcile(device, outcome, now):
                            result.transitions += 1
                    except LanWakeError as exc:
                        result.errors += 1
                        logger.error(f"Failed to record probe result for device {device.id}: {exc}")
                timer.set_record_count(len(devices))
                timer.add_info("transitions", result.transitions)
        finally:
            self._state = MonitorState.IDLE
            result.duration_ms = (time.perf_counter() - start) * 1000
            result.finished_at = utcnow()
            self._last_run = result
        return result

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                result = await self.run_once()
                if not result.aborted:
                    logger.info(
                        f"Reachability cycle: {result.probed} probed, {result.online} online, "
                        f"{result.offline} offline, {result.transitions} changed, "
                        f"{result.errors} errors ({result.duration_ms:.0f}ms)"
                    )
            except Exception:
                # The loop must survive anything a single cycle throws
                logger.exception("Reachability cycle failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def _probe_all(self, devices: list[DeviceSnapshot]) -> list[Optional[ProbeResult]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(device: DeviceSnapshot) -> Optional[ProbeResult]:
            async with semaphore:
                return await self._probe_one(device)

        return list(await asyncio.gather(*(_guarded(d) for d in devices)))

    async def _probe_one(self, device: DeviceSnapshot) -> Optional[ProbeResult]:
        try:
            return await asyncio.wait_for(
                self._prober(device.ip_address, self.probe_timeout),
                timeout=self.probe_timeout + PROBE_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            return ProbeResult(device.ip_address, Reachability.OFFLINE)
        except LanWakeError as exc:
            logger.warning(f"Probe of device {device.id} ({device.ip_address}) failed: {exc}")
            return None
        except Exception:
            logger.exception(f"Unexpected error probing device {device.id}")
            return None

    async def _reconcile(self, device: DeviceSnapshot, outcome: ProbeResult, now: datetime) -> bool:
        """Persist one outcome. Returns True when the device changed state."""
        is_online = outcome.is_online
        transitioned = is_online != device.is_online

        if not transitioned and not is_online:
            return False

        event = None
        if transitioned:
            kind = EventKind.PROBE_ONLINE if is_online else EventKind.PROBE_OFFLINE
            detail = "Device responded to probe" if is_online else "Device stopped responding to probe"
            if is_online and outcome.latency_ms is not None:
                detail += f" ({outcome.latency_ms:.1f}ms)"
            event = NewDeviceEvent(device_id=device.id, kind=kind, description=detail)

        updated = await self.storage.update_device_reachability(
            device.id,
            is_online,
            now if is_online else None,
            event=event,
        )
        if not updated:
            logger.debug(f"Device {device.id} was deleted during the cycle")
            return False
        if transitioned:
            audit.log_reachability_change(device.id, device.name, is_online)
        return transitioned
