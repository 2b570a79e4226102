"""
Wake-on-LAN magic packet construction and delivery.

A magic packet is six ``0xFF`` bytes followed by the target MAC address
repeated sixteen times (102 bytes). It is sent as a single UDP datagram to
the device's broadcast address; the protocol has no acknowledgment, so a
successful send only means the datagram reached the local network stack.

MAC addresses are validated here before ``wakeonlan`` sees them, since the
library accepts any separator and would coerce malformed input.
"""

import logging
import re
import socket
from ipaddress import ip_address as parse_ip
from typing import Union

from wakeonlan import create_magic_packet, send_magic_packet

from errors import NetworkError, ValidationError

logger = logging.getLogger(__name__)

MAGIC_PACKET_SIZE = 102

# Six hex pairs separated consistently by ":" or "-"
MAC_RE = re.compile(r"[0-9A-Fa-f]{2}([:\-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}")


def parse_mac_address(mac: Union[str, bytes]) -> bytes:
    """
    Parse a MAC address into its 6 raw bytes.

    Accepts ``AA:BB:CC:DD:EE:FF``, ``aa-bb-cc-dd-ee-ff`` or 6 raw bytes.
    Surrounding whitespace is not stripped.

    Raises:
        ValidationError: wrong length, non-hex digits, or a missing, mixed
            or unsupported separator.
    """
    if isinstance(mac, (bytes, bytearray)):
        if len(mac) != 6:
            raise ValidationError(
                f"Invalid MAC address: expected 6 bytes, got {len(mac)}"
            )
        return bytes(mac)

    if not isinstance(mac, str) or not MAC_RE.fullmatch(mac):
        raise ValidationError(
            f"Invalid MAC address '{mac}'. "
            "Expected format XX:XX:XX:XX:XX:XX or XX-XX-XX-XX-XX-XX "
            "(6 pairs of hex digits)"
        )
    return bytes.fromhex(re.sub(r"[:\-]", "", mac))


def canonical_mac(mac: Union[str, bytes]) -> str:
    """Return the upper-case, colon-separated form used for storage."""
    return ":".join(f"{b:02X}" for b in parse_mac_address(mac))


def build_magic_packet(mac: Union[str, bytes]) -> bytes:
    """Build the 102-byte Wake-on-LAN payload for ``mac``."""
    return create_magic_packet(parse_mac_address(mac).hex().upper())


def broadcast_magic_packet(mac: Union[str, bytes], broadcast_address: str, port: int) -> None:
    """
    Send the magic packet for ``mac`` as one UDP datagram to
    ``(broadcast_address, port)``.

    Fire-and-forget. Failures are raised immediately and never retried.

    Raises:
        ValidationError: malformed MAC, the address is not an IP address, or
            the port is out of range.
        NetworkError: the datagram could not be handed to the network layer.
    """
    target = canonical_mac(mac)
    try:
        address = parse_ip(broadcast_address)
    except ValueError:
        raise ValidationError(f"Invalid broadcast address '{broadcast_address}'")
    if not 0 < port < 65536:
        raise ValidationError(f"Invalid UDP port {port}")

    family = socket.AF_INET6 if address.version == 6 else socket.AF_INET
    try:
        send_magic_packet(
            target,
            ip_address=str(address),
            port=port,
            address_family=family,
        )
    except OSError as exc:
        logger.error(f"Magic packet send to {address}:{port} failed: {exc}")
        raise NetworkError(f"Failed to send magic packet: {exc}") from exc

    logger.debug(f"Magic packet for {target} sent to {address}:{port}")
