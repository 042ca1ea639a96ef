# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Iterator
from io import BytesIO
from typing import ClassVar, Self

from ergvein.messages import MAX_MESSAGE_SIZE, Message, deserialize
from ergvein.messages.datamodel import VarIntAdapter
from ergvein.messages.exceptions import OversizedPayloadError, TruncatedInputError

__all__ = 'MessageBuffer',  # noqa: COM818


class MessageBuffer(Iterator[Message]):
    """
    Accumulates data received from a stream and extracts the messages in it.

    Iterating over the buffer yields the complete messages that are available
    and stops when the next message has not been fully received yet.

    A message with an invalid header (an unknown message type or a declared
    length that is too large) raises an error and is left in the buffer, as
    there is no way to find where the next message starts. A message whose
    payload cannot be decoded is removed from the buffer before the error is
    raised, so the messages that follow it can still be read.
    """

    _header_size_: ClassVar[int] = 18  # the message id and the payload length, as VarInts of up to 9 bytes each

    def __init__(self, initial_data: bytes | bytearray = b'', /) -> None:
        self._buffer = bytearray(initial_data)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({bytes(self._buffer)!r})'

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> Message:
        if not self._buffer:
            raise StopIteration
        message_length = self._message_length()
        if message_length is None or len(self._buffer) < message_length:
            raise StopIteration
        message_data = bytes(self._buffer[:message_length])
        self._buffer[0:message_length] = b''
        return deserialize(message_data)

    def _message_length(self) -> int | None:
        # Return the full length of the message at the start of the buffer, or None if the header is incomplete
        header = BytesIO(self._buffer[:self._header_size_])
        try:
            message_type = Message[VarIntAdapter.from_wire(header)]
            if not message_type._payload_:
                return header.tell()
            payload_length = VarIntAdapter.from_wire(header)
        except TruncatedInputError:
            return None
        if payload_length > MAX_MESSAGE_SIZE:
            raise OversizedPayloadError(f'Message size is too large: {payload_length} > {MAX_MESSAGE_SIZE}')
        return header.tell() + payload_length

    def clear(self) -> None:
        self._buffer.clear()

    def write(self, data: bytes | bytearray) -> None:
        self._buffer.extend(data)
