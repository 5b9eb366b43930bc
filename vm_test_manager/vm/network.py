"""Host side of the test network: the bridge the VMs are attached to."""

import asyncio
import json
import logging
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network

from vm_test_manager.errors import ManagerError

log = logging.getLogger(__name__)

BRIDGE_NAME = "br-vmtest"
TEST_SUBNET = IPv4Network("172.29.1.0/24")
# Host address on the bridge that guests can reach without going through the
# tunnel of the app under test.
NON_TUN_GATEWAY = IPv4Address("172.29.1.200")
SOCKS5_PORT = 10275


class BridgeError(ManagerError):
    """Raised when the test bridge is missing or misconfigured."""


@dataclass(frozen=True, kw_only=True)
class Bridge:
    """The resolved host-side bridge interface."""

    interface: str
    gateway: IPv4Address
    subnet: IPv4Network


async def bridge(interface: str = BRIDGE_NAME) -> Bridge:
    """Resolve the test bridge and check it carries the gateway address."""
    try:
        process = await asyncio.create_subprocess_exec(
            "ip",
            "-json",
            "addr",
            "show",
            "dev",
            interface,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise BridgeError(
            f"Failed to inspect bridge interface {interface}: {exc}"
        ) from exc
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise BridgeError(
            f"Bridge interface {interface} not found: {stderr.decode().strip()}"
        )

    addresses = parse_addresses(stdout.decode())
    log.debug("Addresses on %s: %s", interface, ", ".join(map(str, addresses)))

    if NON_TUN_GATEWAY not in addresses:
        raise BridgeError(
            f"Bridge interface {interface} does not have address {NON_TUN_GATEWAY}"
        )

    return Bridge(interface=interface, gateway=NON_TUN_GATEWAY, subnet=TEST_SUBNET)


def parse_addresses(ip_json: str) -> list[IPv4Address]:
    """Extract IPv4 addresses from ``ip -json addr`` output.

    Raises:
        BridgeError: If the output is not the JSON ``ip`` produces

    """
    addresses: list[IPv4Address] = []
    try:
        for link in json.loads(ip_json or "[]"):
            for addr_info in link.get("addr_info", []):
                if addr_info.get("family") == "inet":
                    addresses.append(IPv4Address(addr_info["local"]))
    except (ValueError, KeyError, AttributeError) as exc:
        raise BridgeError(f"Unexpected output from ip: {exc}") from exc
    return addresses
