# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Connect to an indexer node and perform the version handshake.

The client sends its version message, answers the version message of the
node with a version ack and stops when it receives the node's version ack.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from ipaddress import ip_address
from typing import Self

from ergvein import aio
from ergvein.__info__ import __version__
from ergvein.link import MessageStream
from ergvein.messages import Ping, RejectMessage, VersionAck, VersionMessage
from ergvein.messages.datamodel import RejectReason, Version
from ergvein.messages.exceptions import DecodeError

__all__ = 'HandshakeError', 'HandshakeSettings', 'handshake', 'main', 'parse_address'  # noqa: RUF022


log = logging.getLogger(__name__)


class HandshakeError(Exception):
    """Raised when the node does not complete the version handshake"""


@dataclass(frozen=True, kw_only=True)
class HandshakeSettings:
    host: str
    port: int
    timeout: float = 10.0
    verbose: bool = False

    @classmethod
    def from_arguments(cls, arguments: argparse.Namespace) -> Self:
        host, port = parse_address(arguments.address)
        return cls(host=host, port=port, timeout=arguments.timeout, verbose=arguments.verbose)


def parse_address(address: str) -> tuple[str, int]:
    """Parse an IP:PORT or [IPv6]:PORT address"""
    host, separator, port = address.rpartition(':')
    if not separator or not host or not port.isdigit():
        raise ValueError(f'Invalid address {address!r}: expected IP:PORT or [IPv6]:PORT')
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    ip_address(host)  # the address must be numeric, like for the nodes announced in peer lists
    if not 0 < int(port) < 65536:  # noqa: PLR2004
        raise ValueError(f'Invalid address {address!r}: the port is out of range')
    return host, int(port)


async def handshake(settings: HandshakeSettings) -> VersionMessage:
    """Perform the version handshake and return the version message of the node"""
    async with asyncio.timeout(settings.timeout):
        stream = await MessageStream.connect(settings.host, settings.port)

    peer_version: VersionMessage | None = None
    acknowledged = False

    async with stream, asyncio.timeout(settings.timeout):
        await stream.send(VersionMessage.new())
        log.info('Sent version message')
        async for message in stream:
            match message:
                case VersionMessage():
                    log.info('Received version message: %s', message)
                    if not message.version.compatible(Version.current()):
                        await stream.send(RejectMessage.for_error(message.id, RejectReason.VersionNotSupported, f'Version {message.version} is not supported'))
                        raise HandshakeError(f'Node {stream.peer} uses incompatible version {message.version}')
                    peer_version = message
                    await stream.send(VersionAck())
                    log.info('Sent version ack message')
                    if acknowledged:
                        break
                case VersionAck():
                    log.info('Received version ack message')
                    acknowledged = True
                    if peer_version is not None:
                        break
                case Ping():
                    await stream.send(message.reply())
                case RejectMessage():
                    raise HandshakeError(f'Node {stream.peer} rejected the handshake: {message}')
                case _:
                    log.warning('Received unexpected message: %s', message)
                    break

    if peer_version is None or not acknowledged:
        raise HandshakeError(f'Node {stream.peer} did not complete the handshake')
    return peer_version


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog='ergvein-handshake', description=__doc__.strip().splitlines()[0])
    parser.add_argument('address', help='the address of the node as IP:PORT or [IPv6]:PORT')
    parser.add_argument('--timeout', type=float, default=10.0, help='seconds to wait for connecting and for the handshake (default: %(default)s)')
    parser.add_argument('--verbose', action='store_true', help='log the protocol messages')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    arguments = parser.parse_args(argv)

    try:
        settings = HandshakeSettings.from_arguments(arguments)
    except ValueError as exc:
        print(f'Error parsing address: {exc}', file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.DEBUG if settings.verbose else logging.INFO, format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    try:
        peer_version = asyncio.run(handshake(settings))
    except (OSError, TimeoutError, aio.BrokenResourceError, aio.ClosedResourceError) as exc:
        log.error('Failed to communicate with %s:%d: %s', settings.host, settings.port, str(exc) or exc.__class__.__name__)  # noqa: TRY400
        return 1
    except (DecodeError, HandshakeError) as exc:
        log.error('Handshake failed: %s', exc)  # noqa: TRY400
        return 1

    log.info('Handshake completed with a node using protocol version %s', peer_version.version)
    return 0


if __name__ == '__main__':
    sys.exit(main())
