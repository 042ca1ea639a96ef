# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = (  # noqa: RUF022
    'DecodeError',
    'MalformedHeaderError',
    'OversizedPayloadError',
    'TruncatedInputError',
    'InvalidDiscriminantError',
    'CompressionError',
    'TrailingDataError',
    'InvariantViolation',
)


class DecodeError(ValueError):
    """Base class for errors raised while decoding data received from the wire."""


class MalformedHeaderError(DecodeError):
    """Raised when the message header carries an unknown message id."""


class OversizedPayloadError(DecodeError):
    """Raised when the declared payload length exceeds the maximum message size."""


class TruncatedInputError(DecodeError):
    """Raised when there are fewer bytes available than the encoding requires."""


class InvalidDiscriminantError(DecodeError):
    """Raised when a closed enumeration (like the address type) has an unknown value on the wire."""


class CompressionError(DecodeError):
    """Raised when the payload of a compressed bulk message cannot be decompressed."""


class TrailingDataError(DecodeError):
    """Raised when a message payload is not consumed entirely by its decoder."""


class InvariantViolation(TypeError):  # noqa: N818
    """
    Raised when a locally constructed value breaks a structural invariant.

    This indicates a programming error in the code that built the value and
    is never the result of decoding data received from the network.
    """
