"""
Tests for the ICMP reachability prober.

The system ping binary is replaced by a fake subprocess so tests do not
depend on network access or privileges.

Covers:
- Online result with parsed latency
- Non-zero exit and timeout both map to offline
- Missing binary / privilege errors raise ProbeUnavailable
- Invalid IP rejected before spawning
- Devices without an IP report unknown with no I/O
- Platform-specific command lines
"""

import asyncio
from types import SimpleNamespace

import pytest

from errors import ProbeUnavailable, ValidationError
from models import Reachability
from services import prober
from services.prober import (
    build_ping_command,
    parse_latency,
    probe_device,
    probe_host,
)


LINUX_REPLY = (
    "PING 192.168.1.10 (192.168.1.10) 56(84) bytes of data.\n"
    "64 bytes from 192.168.1.10: icmp_seq=1 ttl=64 time=0.532 ms\n"
)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False):
        self.returncode = None
        self._final_code = returncode
        self._stdout = stdout
        self._stderr = stderr
        self._hang = hang
        self.killed = False
        self.waited = False

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(3600)
        self.returncode = self._final_code
        return self._stdout, self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        self.waited = True
        return self.returncode


def fake_exec(monkeypatch, process=None, exc=None):
    """Replace create_subprocess_exec; returns the list of spawned commands."""
    calls = []

    async def _create(*args, **kwargs):
        calls.append(list(args))
        if exc is not None:
            raise exc
        return process

    monkeypatch.setattr(prober.asyncio, "create_subprocess_exec", _create)
    return calls


# ──────────────────────────────────────────────────────────────────────────────
# probe_host
# ──────────────────────────────────────────────────────────────────────────────


class TestProbeHost:
    """Single-host probing."""

    @pytest.mark.asyncio
    async def test_reply_is_online_with_latency(self, monkeypatch):
        calls = fake_exec(monkeypatch, FakeProcess(0, LINUX_REPLY.encode()))

        result = await probe_host("192.168.1.10", 1.0, ping_binary="ping")

        assert result.reachability == Reachability.ONLINE
        assert result.is_online
        assert result.latency_ms == pytest.approx(0.532)
        assert calls[0][0] == "ping"
        assert calls[0][-1] == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_no_reply_is_offline(self, monkeypatch):
        fake_exec(monkeypatch, FakeProcess(1, b"1 packets transmitted, 0 received"))

        result = await probe_host("192.168.1.10", 1.0)

        assert result.reachability == Reachability.OFFLINE
        assert result.latency_ms is None

    @pytest.mark.asyncio
    async def test_timeout_is_offline_and_kills_process(self, monkeypatch):
        """A ping that outlives the timeout is a normal offline result."""
        process = FakeProcess(hang=True)
        fake_exec(monkeypatch, process)

        result = await asyncio.wait_for(probe_host("192.168.1.10", 0.05), timeout=2.0)

        assert result.reachability == Reachability.OFFLINE
        assert process.killed
        assert process.waited

    @pytest.mark.asyncio
    async def test_cancelled_probe_kills_and_reaps_process(self, monkeypatch):
        process = FakeProcess(hang=True)
        fake_exec(monkeypatch, process)

        task = asyncio.create_task(probe_host("192.168.1.10", 5.0))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert process.killed
        assert process.waited

    @pytest.mark.asyncio
    async def test_missing_binary_raises_probe_unavailable(self, monkeypatch):
        fake_exec(monkeypatch, exc=FileNotFoundError("ping"))

        with pytest.raises(ProbeUnavailable):
            await probe_host("192.168.1.10", 1.0)

    @pytest.mark.asyncio
    async def test_privilege_error_raises_probe_unavailable(self, monkeypatch):
        fake_exec(
            monkeypatch,
            FakeProcess(2, b"", b"ping: socket: Operation not permitted\n"),
        )

        with pytest.raises(ProbeUnavailable):
            await probe_host("192.168.1.10", 1.0)

    @pytest.mark.asyncio
    async def test_invalid_ip_rejected_before_spawn(self, monkeypatch):
        calls = fake_exec(monkeypatch, FakeProcess(0))

        with pytest.raises(ValidationError):
            await probe_host("not-an-ip", 1.0)
        assert calls == []


# ──────────────────────────────────────────────────────────────────────────────
# probe_device
# ──────────────────────────────────────────────────────────────────────────────


class TestProbeDevice:
    """Device-level probing."""

    @pytest.mark.asyncio
    async def test_device_without_ip_is_unknown(self):
        async def must_not_probe(ip, timeout):
            raise AssertionError("no probe expected")

        device = SimpleNamespace(ip_address=None)
        result = await probe_device(device, 1.0, prober=must_not_probe)

        assert result.reachability == Reachability.UNKNOWN

    @pytest.mark.asyncio
    async def test_device_with_ip_is_probed(self):
        seen = []

        async def fake_probe(ip, timeout):
            seen.append((ip, timeout))
            return prober.ProbeResult(ip, Reachability.ONLINE, 1.0)

        device = SimpleNamespace(ip_address="10.0.0.5")
        result = await probe_device(device, 0.5, prober=fake_probe)

        assert result.is_online
        assert seen == [("10.0.0.5", 0.5)]


# ──────────────────────────────────────────────────────────────────────────────
# Command line and output parsing
# ──────────────────────────────────────────────────────────────────────────────


class TestPingCommand:
    """Platform-specific ping invocation."""

    def test_linux_ipv4(self):
        assert build_ping_command("10.0.0.1", 1.5, platform="linux") == [
            "ping", "-n", "-c", "1", "-W", "2", "10.0.0.1",
        ]

    def test_linux_ipv6(self):
        command = build_ping_command("fe80::1", 1.0, platform="linux")
        assert command[:2] == ["ping", "-6"]
        assert command[-1] == "fe80::1"

    def test_windows(self):
        assert build_ping_command("10.0.0.1", 2.0, platform="win32") == [
            "ping", "-n", "1", "-w", "2000", "10.0.0.1",
        ]

    def test_darwin_uses_milliseconds(self):
        assert build_ping_command("10.0.0.1", 1.0, platform="darwin") == [
            "ping", "-c", "1", "-W", "1000", "10.0.0.1",
        ]


class TestParseLatency:
    """Round-trip time extraction."""

    def test_linux_output(self):
        assert parse_latency(LINUX_REPLY) == pytest.approx(0.532)

    def test_windows_sub_millisecond(self):
        assert parse_latency("Reply from 10.0.0.1: bytes=32 time<1ms TTL=64") == 1.0

    def test_no_time(self):
        assert parse_latency("Request timed out.") is None
