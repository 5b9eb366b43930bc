"""Minimal SOCKS5 proxy that gives guests egress around the tunnel under test.

Only the no-authentication method and the CONNECT command are supported,
which is all the tests need.
"""

import asyncio
import logging
import socket
import struct
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address

log = logging.getLogger(__name__)

SOCKS_VERSION = 5
NO_AUTH = 0x00
NO_ACCEPTABLE_METHODS = 0xFF
CMD_CONNECT = 0x01
ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04
REPLY_SUCCEEDED = 0x00
REPLY_GENERAL_FAILURE = 0x01
REPLY_HOST_UNREACHABLE = 0x04
REPLY_COMMAND_NOT_SUPPORTED = 0x07
REPLY_ADDRESS_NOT_SUPPORTED = 0x08
RELAY_CHUNK = 65536


class SocksProtocolError(Exception):
    """Raised when a client sends something that is not valid SOCKS5."""


@dataclass(kw_only=True)
class SocksServer:
    """A running proxy. Use ``serve_socks`` rather than building one directly."""

    host: str
    port: int
    _server: asyncio.Server | None = field(default=None, repr=False)
    _handlers: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    @property
    def address(self) -> tuple[str, int]:
        """Address the proxy is listening on."""
        return (self.host, self.port)

    async def start(self) -> None:
        """Bind the listening socket; connections are accepted once this returns."""
        self._server = await asyncio.start_server(
            self._handle, self.host, self.port, reuse_address=True
        )
        if self.port == 0:
            self.port = self._server.sockets[0].getsockname()[1]
        log.info("SOCKS5 proxy listening on %s:%d", self.host, self.port)

    async def close(self) -> None:
        """Stop listening and drop every open relay."""
        if self._server is None:
            return
        self._server.close()
        for task in self._handlers:
            task.cancel()
        await asyncio.gather(*self._handlers, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
        log.info("SOCKS5 proxy on %s:%d stopped", self.host, self.port)

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        try:
            await self._serve_client(reader, writer)
        except (SocksProtocolError, OSError, asyncio.IncompleteReadError) as exc:
            log.debug("SOCKS client %s dropped: %s", writer.get_extra_info("peername"), exc)
        finally:
            if task is not None:
                self._handlers.discard(task)
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()

    async def _serve_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        version, method_count = await reader.readexactly(2)
        if version != SOCKS_VERSION:
            raise SocksProtocolError(f"Unsupported SOCKS version {version}")
        methods = await reader.readexactly(method_count)
        if NO_AUTH not in methods:
            writer.write(bytes([SOCKS_VERSION, NO_ACCEPTABLE_METHODS]))
            await writer.drain()
            return
        writer.write(bytes([SOCKS_VERSION, NO_AUTH]))
        await writer.drain()

        version, command, _, address_type = await reader.readexactly(4)
        if version != SOCKS_VERSION:
            raise SocksProtocolError(f"Unsupported SOCKS version {version}")

        try:
            host = await read_address(reader, address_type)
        except SocksProtocolError:
            await send_reply(writer, REPLY_ADDRESS_NOT_SUPPORTED)
            raise
        (port,) = struct.unpack("!H", await reader.readexactly(2))

        if command != CMD_CONNECT:
            await send_reply(writer, REPLY_COMMAND_NOT_SUPPORTED)
            return

        try:
            remote_reader, remote_writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            log.debug("SOCKS connect to %s:%d failed: %s", host, port, exc)
            await send_reply(writer, REPLY_HOST_UNREACHABLE)
            return

        try:
            bound_host, bound_port = remote_writer.get_extra_info("sockname")[:2]
            await send_reply(writer, REPLY_SUCCEEDED, bound_host, bound_port)
            log.debug("SOCKS relay to %s:%d", host, port)
            await relay(reader, writer, remote_reader, remote_writer)
        finally:
            remote_writer.close()
            with suppress(ConnectionError):
                await remote_writer.wait_closed()


async def read_address(reader: asyncio.StreamReader, address_type: int) -> str:
    """Read a SOCKS5 destination address of the given type."""
    match address_type:
        case 0x01:
            return str(IPv4Address(await reader.readexactly(4)))
        case 0x03:
            (length,) = await reader.readexactly(1)
            try:
                return (await reader.readexactly(length)).decode("idna")
            except UnicodeError as exc:
                raise SocksProtocolError(f"Invalid domain name: {exc}") from exc
        case 0x04:
            return str(IPv6Address(await reader.readexactly(16)))
        case _:
            raise SocksProtocolError(f"Unsupported address type {address_type}")


async def send_reply(
    writer: asyncio.StreamWriter,
    reply: int,
    bound_host: str = "0.0.0.0",
    bound_port: int = 0,
) -> None:
    """Send a SOCKS5 reply carrying the bound address."""
    try:
        packed = socket.inet_pton(socket.AF_INET, bound_host)
        address_type = ATYP_IPV4
    except OSError:
        # Link-local addresses carry a scope suffix that inet_pton rejects.
        packed = socket.inet_pton(socket.AF_INET6, bound_host.partition("%")[0])
        address_type = ATYP_IPV6
    writer.write(
        bytes([SOCKS_VERSION, reply, 0x00, address_type])
        + packed
        + struct.pack("!H", bound_port)
    )
    await writer.drain()


async def relay(
    client_reader: asyncio.StreamReader,
    client_writer: asyncio.StreamWriter,
    remote_reader: asyncio.StreamReader,
    remote_writer: asyncio.StreamWriter,
) -> None:
    """Copy bytes both ways until either side closes."""

    async def pipe(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> None:
        try:
            while data := await src.read(RELAY_CHUNK):
                dst.write(data)
                await dst.drain()
            if dst.can_write_eof():
                dst.write_eof()
        except ConnectionError as exc:
            log.debug("SOCKS relay closed: %s", exc)

    async with asyncio.TaskGroup() as group:
        group.create_task(pipe(client_reader, remote_writer))
        group.create_task(pipe(remote_reader, client_writer))


@asynccontextmanager
async def serve_socks(host: str, port: int) -> AsyncGenerator[SocksServer]:
    """Run a SOCKS5 proxy on ``host:port`` for the duration of the context.

    The proxy is accepting connections before the body runs, and the port is
    released before the context exits.
    """
    server = SocksServer(host=host, port=port)
    await server.start()
    try:
        yield server
    finally:
        await server.close()
