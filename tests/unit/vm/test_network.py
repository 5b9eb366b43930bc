"""Tests for the host bridge."""

import json
from ipaddress import IPv4Address
from typing import Any

import pytest

from vm_test_manager.vm import network
from vm_test_manager.vm.network import (
    NON_TUN_GATEWAY,
    TEST_SUBNET,
    BridgeError,
    bridge,
    parse_addresses,
)


def ip_output(*addresses: str) -> str:
    return json.dumps(
        [
            {
                "ifname": "br-vmtest",
                "addr_info": [
                    {"family": "inet", "local": address, "prefixlen": 24}
                    for address in addresses
                ]
                + [{"family": "inet6", "local": "fe80::1", "prefixlen": 64}],
            }
        ]
    )


class FakeProcess:
    """Completed ``ip`` process."""

    def __init__(self, returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self._output = (stdout.encode(), stderr.encode())

    async def communicate(self) -> tuple[bytes, bytes]:
        return self._output


@pytest.fixture
def ip_result(monkeypatch: pytest.MonkeyPatch) -> list[FakeProcess]:
    """Holder for what the next ``ip`` invocation returns."""
    result: list[FakeProcess] = []

    async def fake_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        assert args[:4] == ("ip", "-json", "addr", "show")
        return result[0]

    monkeypatch.setattr(network.asyncio, "create_subprocess_exec", fake_exec)
    return result


def test_parse_addresses_keeps_ipv4_only() -> None:
    """IPv6 addresses are ignored."""
    addresses = parse_addresses(ip_output("172.29.1.200", "10.0.0.1"))

    assert addresses == [IPv4Address("172.29.1.200"), IPv4Address("10.0.0.1")]


def test_parse_addresses_empty_output() -> None:
    """Empty output means no addresses."""
    assert parse_addresses("") == []


@pytest.mark.parametrize(
    "output",
    ["not json", json.dumps([{"addr_info": [{"family": "inet"}]}]), "[1]"],
)
def test_parse_addresses_rejects_unexpected_output(output: str) -> None:
    """Output that is not what ip prints is a bridge error."""
    with pytest.raises(BridgeError, match="Unexpected output from ip"):
        parse_addresses(output)


async def test_bridge_with_gateway(ip_result: list[FakeProcess]) -> None:
    """Resolves the bridge when it carries the gateway address."""
    ip_result.append(FakeProcess(0, ip_output("172.29.1.200")))

    resolved = await bridge()

    assert resolved.interface == "br-vmtest"
    assert resolved.gateway == NON_TUN_GATEWAY
    assert resolved.subnet == TEST_SUBNET


async def test_bridge_without_gateway(ip_result: list[FakeProcess]) -> None:
    """A bridge without the gateway address is misconfigured."""
    ip_result.append(FakeProcess(0, ip_output("172.29.1.1")))

    with pytest.raises(BridgeError, match="does not have address 172.29.1.200"):
        await bridge()


async def test_missing_bridge(ip_result: list[FakeProcess]) -> None:
    """A missing interface is a bridge error."""
    ip_result.append(
        FakeProcess(1, stderr='Device "br-vmtest" does not exist.')
    )

    with pytest.raises(BridgeError, match="not found"):
        await bridge()


async def test_missing_ip_command(monkeypatch: pytest.MonkeyPatch) -> None:
    """A host without the ip tool cannot resolve the bridge."""

    async def fake_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        raise FileNotFoundError(2, "No such file or directory", "ip")

    monkeypatch.setattr(network.asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(BridgeError, match="Failed to inspect bridge interface"):
        await bridge()
