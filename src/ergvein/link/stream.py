# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
import logging
from typing import ClassVar, Self

from ergvein import aio
from ergvein.messages import Message, serialize

from .common import MessageBuffer

__all__ = 'MessageStream',  # noqa: COM818


log = logging.getLogger(__name__)


class MessageStream:
    """Sends and receives protocol messages over a stream connection"""

    max_read_size: ClassVar[int] = 65536

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._input_buffer = MessageBuffer()
        self._closed = False
        self.peer = self._format_peer(writer.get_extra_info('peername'))

    def __repr__(self) -> str:
        return f'<{self.__class__.__qualname__}: {self.peer}>'

    @classmethod
    async def connect(cls, host: str, port: int) -> Self:
        reader, writer = await asyncio.open_connection(host, port)
        stream = cls(reader, writer)
        log.debug('Connected to %s', stream.peer)
        return stream

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._input_buffer.clear()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, TimeoutError) as exc:
            log.debug('Error while closing the connection to %s: %s', self.peer, exc)
        log.debug('Closed the connection to %s', self.peer)

    async def send(self, message: Message) -> None:
        if self._closed:
            raise aio.ClosedResourceError
        data = serialize(message)
        log.debug('Sending %s message to %s (%d bytes)', message.name, self.peer, len(data))
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (BrokenPipeError, TimeoutError) as exc:
            raise aio.BrokenResourceError from exc
        except ConnectionError as exc:
            raise aio.ClosedResourceError from exc

    async def receive(self) -> Message:
        """
        Return the next message received from the peer.

        Decoding errors are propagated to the caller. After a payload error
        the stream can still be used, but after a header error the stream
        cannot find the start of the next message and should be closed.
        """
        while True:
            if self._closed:
                raise aio.ClosedResourceError
            message = next(self._input_buffer, None)
            if message is not None:
                log.debug('Received %s message from %s', message.name, self.peer)
                return message
            self._input_buffer.write(await self._read_data())

    async def _read_data(self) -> bytes:
        try:
            data = await self._reader.read(self.max_read_size)
        except (BrokenPipeError, TimeoutError) as exc:
            raise aio.BrokenResourceError from exc
        except ConnectionError as exc:
            raise aio.ClosedResourceError from exc
        else:
            if not data:
                if self._input_buffer:
                    log.warning('Connection to %s closed with %d bytes of an incomplete message in the buffer', self.peer, len(self._input_buffer))
                raise aio.ClosedResourceError
            return data

    @staticmethod
    def _format_peer(peername: tuple | None) -> str:
        match peername:
            case (str() as host, int() as port, *_) if ':' in host:
                return f'[{host}]:{port}'
            case (str() as host, int() as port, *_):
                return f'{host}:{port}'
            case _:
                return 'unknown peer'

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        await self.close()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Message:
        try:
            return await self.receive()
        except aio.ClosedResourceError as exc:
            raise StopAsyncIteration from exc
