# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import enum
import sys
from collections.abc import Buffer, Iterable, MutableMapping
from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO
from ipaddress import IPv4Address, IPv6Address
from secrets import token_bytes as secure_random_bytes
from types import GenericAlias, NotImplementedType, new_class
from typing import ClassVar, Protocol, Self, SupportsBytes, SupportsIndex, SupportsInt, TypeVar, overload, runtime_checkable

from . import compression
from .exceptions import DecodeError, InvalidDiscriminantError, TruncatedInputError

__all__ = (  # noqa: RUF022
    # Protocols and types

    'WireData',
    'DataWireProtocol',
    'DataWireAdapter',

    # Adapters and the adapter registry

    'AdapterRegistry',

    'UnsignedIntegerAdapter',

    'UInt32Adapter',
    'UInt64Adapter',
    'PortAdapter',

    'VarIntAdapter',
    'VarInt32Adapter',

    'VarBytesAdapter',
    'VarStringAdapter',

    'IPv4AddressAdapter',
    'IPv6AddressAdapter',

    # Abstract types

    'UnsignedInteger',

    'Enum',
    'OpenEnum',

    'FixedSize',
    'VarBytes',

    'List',
    'CompressedList',
    'make_list_type',
    'make_compressed_list_type',

    # Concrete types

    'UInt64',

    'AddressType',
    'Currency',
    'Fiat',
    'RejectReason',

    'BlockID',
    'Nonce',
    'TxPrefix',
    'OnionV3Address',

    'MemFilter',
    'Transaction',

    'Version',
    'Rate',

    # Helpers

    'read_exact',
    'swap_bytes',
)


type WireData = bytes | bytearray | memoryview | BytesIO


# Protocols

@runtime_checkable
class DataWireProtocol(Protocol):
    """The wire protocol for message data elements"""

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self: ...

    def to_wire(self) -> bytes: ...

    def wire_length(self) -> int: ...


@runtime_checkable
class DataWireAdapter[T](Protocol):
    """Wire protocol adapter for a message data element of type T"""

    _abstract_: ClassVar[bool] = True

    @staticmethod
    def from_wire(buffer: WireData) -> T: ...

    @staticmethod
    def to_wire(value: T, /) -> bytes: ...

    @staticmethod
    def wire_length(value: T, /) -> int: ...

    @staticmethod
    def validate(value: T, /) -> T: ...


class AdapterRegistry[T]:
    _adapters: ClassVar[MutableMapping[type, type[DataWireAdapter]]] = {}

    @classmethod
    def associate(cls, data_type: type[T], adapter: type[DataWireAdapter[T]]) -> None:
        if issubclass(data_type, DataWireProtocol):
            raise TypeError('Adapters for types that already implement DataWireProtocol must be explicitly provided with the element descriptors.')
        cls._adapters[data_type] = adapter

    @classmethod
    def get_adapter(cls, data_type: type[T]) -> type[DataWireAdapter[T]] | None:
        return cls._adapters.get(data_type, None)


# Helpers

def read_exact(buffer: WireData, size: int, what: str) -> bytes:
    """Read exactly size bytes from buffer or fail with TruncatedInputError"""
    if isinstance(buffer, BytesIO):
        data = buffer.read(min(size, sys.maxsize))
    else:
        data = bytes(buffer[:size])
    if len(data) < size:
        raise TruncatedInputError(f'Insufficient data in buffer to extract {what}')
    return data


def swap_bytes(word: int, size: int = 4) -> int:
    """Reverse the byte order of an unsigned integer of the given byte size"""
    return int.from_bytes(word.to_bytes(size, byteorder='little'), byteorder='big')


# Adapters

class UnsignedIntegerAdapter:
    _abstract_: ClassVar[bool] = True
    _bits_: ClassVar[int] = NotImplemented
    _size_: ClassVar[int] = NotImplemented
    _byteorder_: ClassVar[str] = 'little'

    def __init_subclass__(cls, *, bits: int = NotImplemented, byteorder: str = 'little', **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
            cls._size_ = bits // 8
            cls._byteorder_ = byteorder
            cls._abstract_ = False
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: WireData) -> int:
        data = read_exact(buffer, cls._size_, f'an unsigned {cls._bits_}-bit integer')
        return int.from_bytes(data, byteorder=cls._byteorder_)  # type: ignore[arg-type]

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        return value.to_bytes(cls._size_, byteorder=cls._byteorder_)  # type: ignore[arg-type]

    @classmethod
    def wire_length(cls, _: int, /) -> int:
        return cls._size_

    @classmethod
    def validate(cls, value: int, /) -> int:
        if value < 0 or value.bit_length() > cls._bits_:
            raise ValueError(f'Value is out of range for unsigned {cls._bits_}-bits integer: {value!r}')
        return value


class UInt32Adapter(UnsignedIntegerAdapter, bits=32):
    pass


class UInt64Adapter(UnsignedIntegerAdapter, bits=64):
    pass


# Ports are the only integers that are sent in network byte order
class PortAdapter(UnsignedIntegerAdapter, bits=16, byteorder='big'):
    pass


class VarIntAdapter:
    """
    Variable length unsigned integer (also known as CompactSize).

    Values below 0xfd are encoded in a single byte. Larger values are encoded
    as a prefix byte (0xfd, 0xfe or 0xff) followed by the value as a 16, 32
    or 64-bit little endian integer. Encodings that use more bytes than they
    need are rejected.

    Subclasses that declare fewer bits keep only the low bits of the decoded
    value, while refusing to encode values that do not fit.
    """

    _abstract_: ClassVar[bool] = False
    _bits_: ClassVar[int] = 64

    _prefixes_: ClassVar[dict[int, tuple[int, int]]] = {  # prefix -> (size, minimum value)
        0xfd: (2, 0xfd),
        0xfe: (4, 0x1_0000),
        0xff: (8, 0x1_0000_0000),
    }

    def __init_subclass__(cls, *, bits: int = NotImplemented, **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: WireData) -> int:
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        prefix = read_exact(buffer, 1, 'a VarInt')[0]
        if prefix not in cls._prefixes_:
            return prefix
        size, minimum = cls._prefixes_[prefix]
        value = int.from_bytes(read_exact(buffer, size, 'a VarInt'), byteorder='little')
        if value < minimum:
            raise DecodeError(f'Non-minimal VarInt encoding for {value}')
        return value & ((1 << cls._bits_) - 1)

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        if value < 0xfd:  # noqa: PLR2004
            return value.to_bytes(1)
        if value <= 0xffff:  # noqa: PLR2004
            return b'\xfd' + value.to_bytes(2, byteorder='little')
        if value <= 0xffff_ffff:  # noqa: PLR2004
            return b'\xfe' + value.to_bytes(4, byteorder='little')
        return b'\xff' + value.to_bytes(8, byteorder='little')

    @classmethod
    def wire_length(cls, value: int, /) -> int:
        if value < 0xfd:  # noqa: PLR2004
            return 1
        if value <= 0xffff:  # noqa: PLR2004
            return 3
        if value <= 0xffff_ffff:  # noqa: PLR2004
            return 5
        return 9

    @classmethod
    def validate(cls, value: int, /) -> int:
        if value < 0 or value.bit_length() > cls._bits_:
            raise ValueError(f'Value is out of range for a {cls._bits_}-bits VarInt: {value!r}')
        return value


class VarInt32Adapter(VarIntAdapter, bits=32):
    pass


class VarBytesAdapter:
    """Adapter for a bytes buffer prefixed with its length as a VarInt"""

    _abstract_: ClassVar[bool] = False

    @staticmethod
    def from_wire(buffer: WireData) -> bytes:
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        data_length = VarIntAdapter.from_wire(buffer)
        return read_exact(buffer, data_length, 'the variable length bytes')

    @staticmethod
    def to_wire(value: bytes, /) -> bytes:
        return VarIntAdapter.to_wire(len(value)) + value

    @staticmethod
    def wire_length(value: bytes, /) -> int:
        return VarIntAdapter.wire_length(len(value)) + len(value)

    @staticmethod
    def validate(value: bytes, /) -> bytes:
        return bytes(value)


class VarStringAdapter:
    """Represent strings as UTF-8 encoded bytes prefixed with their length as a VarInt"""

    _abstract_: ClassVar[bool] = False

    @staticmethod
    def from_wire(buffer: WireData) -> str:
        data = VarBytesAdapter.from_wire(buffer)
        try:
            return data.decode()
        except UnicodeDecodeError as exc:
            raise DecodeError(f'Cannot decode bytes to string: {exc}') from exc

    @staticmethod
    def to_wire(value: str, /) -> bytes:
        return VarBytesAdapter.to_wire(value.encode())

    @staticmethod
    def wire_length(value: str, /) -> int:
        return VarBytesAdapter.wire_length(value.encode())

    @staticmethod
    def validate(value: str, /) -> str:
        if not isinstance(value, str):
            raise TypeError(f'Expected a str value, got {value.__class__.__qualname__!r}')
        return value


AdapterRegistry.associate(bytes, VarBytesAdapter)
AdapterRegistry.associate(str, VarStringAdapter)


class IPv4AddressAdapter:
    _abstract_: ClassVar[bool] = False
    _size_ = UInt32Adapter._size_

    @classmethod
    def from_wire(cls, buffer: WireData) -> IPv4Address:
        return IPv4Address(read_exact(buffer, cls._size_, 'an IPv4Address'))

    @classmethod
    def to_wire(cls, value: IPv4Address, /) -> bytes:
        return value.packed

    @classmethod
    def wire_length(cls, _: IPv4Address, /) -> int:
        return cls._size_

    @classmethod
    def validate(cls, value: IPv4Address, /) -> IPv4Address:
        return IPv4Address(value)


class IPv6AddressAdapter:
    # The 16 bytes are the 8 hextets of the address, each in network byte order
    _abstract_: ClassVar[bool] = False
    _size_ = 16

    @classmethod
    def from_wire(cls, buffer: WireData) -> IPv6Address:
        return IPv6Address(read_exact(buffer, cls._size_, 'an IPv6Address'))

    @classmethod
    def to_wire(cls, value: IPv6Address, /) -> bytes:
        return value.packed

    @classmethod
    def wire_length(cls, _: IPv6Address, /) -> int:
        return cls._size_

    @classmethod
    def validate(cls, value: IPv6Address, /) -> IPv6Address:
        return IPv6Address(value)


# Data types

type ConvertibleToInt = str | Buffer | SupportsInt | SupportsIndex


# Numeric types

class UnsignedInteger(int):
    _bits_: ClassVar[int] = NotImplemented
    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, bits: int = NotImplemented, **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
            cls._size_ = bits // 8
        super().__init_subclass__(**kw)

    @overload
    def __new__(cls, x: ConvertibleToInt = ..., /) -> Self: ...

    @overload
    def __new__(cls, x: str | Buffer, /, base: SupportsIndex) -> Self: ...

    def __new__(cls, *args, **kw) -> Self:
        if cls._bits_ is NotImplemented:
            raise TypeError(f'Cannot instantiate abstract unsigned integer type {cls.__qualname__!r} that does not define its bit length')
        value = super().__new__(cls, *args, **kw)
        if value < 0 or value.bit_length() > cls._bits_:
            raise ValueError(f'Value is out of range for unsigned {cls._bits_}-bits integer: {value!r}')
        return value

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({super().__repr__()})'

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate abstract unsigned integer type {cls.__qualname__!r} that does not define its bit length')
        return cls.from_bytes(read_exact(buffer, cls._size_, repr(cls.__qualname__)), byteorder='little')

    def to_wire(self) -> bytes:
        return self.to_bytes(self._size_, byteorder='little')

    def wire_length(self) -> int:
        return self._size_


class UInt64(UnsignedInteger, bits=64):
    pass


class Rate(UInt64):
    """A non-negative fiat value with two decimal digits, stored as a number of hundredths"""

    @classmethod
    def from_decimal(cls, value: Decimal | int | str) -> Self:
        hundredths = Decimal(value).scaleb(2)
        if hundredths != hundredths.to_integral_value():
            raise ValueError(f'{cls.__qualname__} values can have at most 2 decimal digits: {value!r}')
        return cls(int(hundredths))

    @property
    def value(self) -> Decimal:
        return Decimal(int(self)).scaleb(-2)

    def __str__(self) -> str:
        return str(self.value)

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)


# Enumeration types

class Enum(enum.IntEnum):
    """A closed enumeration encoded as a fixed size integer. Unknown values are rejected."""

    _size_: ClassVar[int]
    _description_: ClassVar[str]

    def __init_subclass__(cls, *, size: int = 1, description: str = '', **kw: object) -> None:
        cls._size_ = size
        cls._description_ = description or cls.__qualname__
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        value = int.from_bytes(read_exact(buffer, cls._size_, repr(cls.__qualname__)), byteorder='little')
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidDiscriminantError(f'Unknown {cls._description_}: {value}') from exc

    def to_wire(self) -> bytes:
        return self.to_bytes(self._size_, byteorder='little')

    def wire_length(self) -> int:
        return self._size_


class OpenEnum(enum.IntEnum):
    """
    An enumeration of 32-bit indexes encoded as a VarInt.

    The set of values is open: indexes that do not correspond to any of the
    defined members are represented by unknown pseudo-members that hold the
    raw index, so they decode without loss and encode back to the same index.
    Pseudo-members are created on every lookup and are not cached, so they
    must be compared by value rather than by identity. The declaration order
    of the members must never change.
    """

    @classmethod
    def _missing_(cls, value: object) -> Self | None:
        if not isinstance(value, int) or not 0 <= value <= 0xffff_ffff:  # noqa: PLR2004
            return None
        pseudo_member = int.__new__(cls, value)
        pseudo_member._name_ = None  # type: ignore[assignment]
        pseudo_member._value_ = value
        return pseudo_member

    def __repr__(self) -> str:
        if self.is_unknown:
            return f'{self.__class__.__qualname__}({self._value_})'
        return f'{self.__class__.__qualname__}.{self._name_}'

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)

    @property
    def is_unknown(self) -> bool:
        return self._name_ is None

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        return cls(VarInt32Adapter.from_wire(buffer))

    def to_wire(self) -> bytes:
        return VarIntAdapter.to_wire(self._value_)

    def wire_length(self) -> int:
        return VarIntAdapter.wire_length(self._value_)


class AddressType(Enum, description='address type'):
    ipv4 = 0
    ipv6 = 1
    onion_v3 = 2


# Currencies that the protocol is aware of. Some of them may never be
# implemented, but their index is reserved.

class Currency(OpenEnum):
    Btc = 0
    TBtc = 1
    Ergo = 2
    TErgo = 3
    UsdtOmni = 4
    TUsdtOmni = 5
    Ltc = 6
    TLtc = 7
    Zec = 8
    TZec = 9
    Cpr = 10
    TCpr = 11
    Dash = 12
    TDash = 13

    def __str__(self) -> str:
        return _currency_names.get(self, f'Unknown currency {self._value_}')


class Fiat(OpenEnum):
    Usd = 0
    Eur = 1
    Rub = 2

    def __str__(self) -> str:
        return _fiat_names.get(self, f'Unknown fiat currency {self._value_}')


class RejectReason(OpenEnum):
    HeaderParsing = 0
    PayloadParsing = 1
    InternalError = 2
    ZeroBytesReceived = 3
    VersionNotSupported = 4

    def __str__(self) -> str:
        return _reject_reason_names.get(self, f'unknown error {self._value_}')


_currency_names = {
    Currency.Btc: 'Bitcoin',
    Currency.TBtc: 'Testnet Bitcoin',
    Currency.Ergo: 'Ergo',
    Currency.TErgo: 'Testnet Ergo',
    Currency.UsdtOmni: 'USDT on Omni',
    Currency.TUsdtOmni: 'Testnet USDT on Omni',
    Currency.Ltc: 'Litecoin',
    Currency.TLtc: 'Testnet Litecoin',
    Currency.Zec: 'ZCash',
    Currency.TZec: 'Testnet ZCash',
    Currency.Cpr: 'Cypra',
    Currency.TCpr: 'Testnet Cypra',
    Currency.Dash: 'Dash',
    Currency.TDash: 'Testnet Dash',
}

_fiat_names = {
    Fiat.Usd: 'US Dollar',
    Fiat.Eur: 'Euro',
    Fiat.Rub: 'Ruble',
}

_reject_reason_names = {
    RejectReason.HeaderParsing: 'header parsing',
    RejectReason.PayloadParsing: 'payload parsing',
    RejectReason.InternalError: 'internal error',
    RejectReason.ZeroBytesReceived: 'got zero bytes',
    RejectReason.VersionNotSupported: 'version is not supported',
}


# Byte strings

class FixedSize(bytes):
    """A fixed size bytes buffer"""

    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, size: int = NotImplemented, **kw: object) -> None:
        if size is not NotImplemented:
            cls._size_ = size
        super().__init_subclass__(**kw)

    @overload
    def __new__(cls, o: Iterable[SupportsIndex] | SupportsBytes | Buffer, /) -> Self: ...

    @overload
    def __new__(cls, string: str, /, encoding: str, errors: str = ...) -> Self: ...

    def __new__(cls, *args, **kw):
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate fixed size bytes type {cls.__qualname__!r} that does not define its size')
        instance = super().__new__(cls, *args, **kw)
        if len(instance) != cls._size_:
            raise ValueError(f'{cls.__qualname__!r} objects must have {cls._size_} bytes')
        return instance

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({super().__repr__()})'

    def __str__(self) -> str:
        return self.hex()

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate fixed size bytes type {cls.__qualname__!r} that does not define its size')
        return cls(read_exact(buffer, cls._size_, repr(cls.__qualname__)))

    def to_wire(self) -> bytes:
        return bytes(self)

    def wire_length(self) -> int:
        return self._size_


class VarBytes(bytes):
    """A bytes buffer prefixed with its length as a VarInt"""

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({super().__repr__() if self else ''})'

    def __str__(self) -> str:
        return self.hex()

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        try:
            return cls(VarBytesAdapter.from_wire(buffer))
        except TruncatedInputError as exc:
            raise TruncatedInputError(f'Insufficient data in buffer to extract {cls.__qualname__!r}') from exc

    def to_wire(self) -> bytes:
        return VarBytesAdapter.to_wire(self)

    def wire_length(self) -> int:
        return VarBytesAdapter.wire_length(self)


class BlockID(FixedSize, size=32):
    pass


class Nonce(FixedSize, size=8):
    @classmethod
    def generate(cls) -> Self:
        return cls(secure_random_bytes(cls._size_))


class TxPrefix(FixedSize, size=2):
    pass


class OnionV3Address(FixedSize, size=56):
    def __str__(self) -> str:
        try:
            return self.decode()
        except UnicodeDecodeError:
            return repr(bytes(self))


class MemFilter(VarBytes):
    """A mempool filter"""

    def compress(self) -> bytes:
        return compression.compress(self)

    @classmethod
    def decompress(cls, data: WireData) -> Self:
        if isinstance(data, BytesIO):
            data = data.read()
        return cls(compression.decompress(bytes(data)))


class Transaction(VarBytes):
    """The raw bytes of a transaction"""


# Versions

@dataclass(frozen=True, slots=True, order=True)
class Version:
    """
    Protocol version with 10 bits used for each component.

    The components are packed in a 32-bit word, starting with the major
    version right after the 2 low reserved bits. Values that do not fit
    in 10 bits silently lose their high bits when packed.

    On the wire the packed word has its bytes swapped relative to how the
    rest of the integers are sent, i.e. it is sent in big endian order.
    """

    major: int
    minor: int
    patch: int

    _size_: ClassVar[int] = 4
    _mask_: ClassVar[int] = 0x3ff

    def __str__(self) -> str:
        return f'{self.major}.{self.minor}.{self.patch}'

    @classmethod
    def current(cls) -> Self:
        """The protocol version implemented by this package"""
        return cls(major=2, minor=0, patch=0)

    def compatible(self, other: Self) -> bool:
        """Versions are compatible when they share the same major version"""
        return self.major == other.major

    def pack(self) -> int:
        return (self.major & self._mask_) << 2 | (self.minor & self._mask_) << 12 | (self.patch & self._mask_) << 22

    @classmethod
    def unpack(cls, word: int) -> Self:
        return cls(major=(word >> 2) & cls._mask_, minor=(word >> 12) & cls._mask_, patch=(word >> 22) & cls._mask_)

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        return cls.unpack(swap_bytes(UInt32Adapter.from_wire(buffer)))

    def to_wire(self) -> bytes:
        return UInt32Adapter.to_wire(swap_bytes(self.pack()))

    def wire_length(self) -> int:
        return self._size_


# List types

class List[T: DataWireProtocol](list[T]):
    """A list of items prefixed with the number of items as a VarInt"""

    _type_: type[T] = NotImplementedType

    def __init_subclass__(cls, *, custom_repr: bool = True, **kw: object) -> None:
        if not custom_repr:
            cls.__repr__ = list.__repr__  # type: ignore[method-assign]
        for base in getattr(cls, '__orig_bases__', ()):
            if isinstance(base, GenericAlias) and isinstance(base.__origin__, type) and issubclass(base.__origin__, List):
                match base.__args__[0]:
                    case TypeVar():
                        pass  # new type is still generic
                    case type() as list_type:
                        cls._type_ = list_type
                    case _:
                        raise TypeError(f'The {cls.__qualname__!r} type can only be parameterized with a single base type or a type variable')
        super().__init_subclass__(**kw)

    def __init__(self, iterable: Iterable[T] = (), /) -> None:
        if self._type_ is NotImplementedType:
            raise TypeError(f'Cannot instantiate abstract list {self.__class__.__qualname__!r} that does not define its item type')
        super().__init__(iterable)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({super().__repr__()})'

    def __hash__(self) -> int:  # type: ignore[override]
        return hash(tuple(self))

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._type_ is NotImplementedType:
            raise TypeError(f'Cannot instantiate abstract list {cls.__qualname__!r} that does not define its item type')
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        count = VarIntAdapter.from_wire(buffer)
        return cls(cls._read_items(buffer, count))

    @classmethod
    def _read_items(cls, buffer: BytesIO, count: int) -> list[T]:
        # The count comes from the wire and is not trusted, so the items are
        # read one by one and decoding stops at the first one that is missing.
        items = []
        for index in range(count):
            try:
                items.append(cls._type_.from_wire(buffer))
            except DecodeError as exc:
                raise exc.__class__(f'Failed to read item {index} of {count} of {cls.__qualname__!r}: {exc}') from exc
        return items

    def to_wire(self) -> bytes:
        return VarIntAdapter.to_wire(len(self)) + b''.join(item.to_wire() for item in self)

    def wire_length(self) -> int:
        return VarIntAdapter.wire_length(len(self)) + sum(item.wire_length() for item in self)


class CompressedList[T: DataWireProtocol](List[T]):
    """
    A list of items that is sent as the number of items (a VarInt) followed
    by the compressed concatenation of the item encodings.

    The compressed data has no length prefix and extends to the end of the
    buffer, so a compressed list must be the last element of a structure.
    Any decompressed data left after reading the items is ignored.
    """

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._type_ is NotImplementedType:
            raise TypeError(f'Cannot instantiate abstract list {cls.__qualname__!r} that does not define its item type')
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        count = VarIntAdapter.from_wire(buffer)
        data = compression.decompress(buffer.read())
        return cls(cls._read_items(BytesIO(data), count))

    def to_wire(self) -> bytes:
        return VarIntAdapter.to_wire(len(self)) + compression.compress(b''.join(item.to_wire() for item in self))

    def wire_length(self) -> int:
        return len(self.to_wire())


def make_list_type[T: DataWireProtocol](item_type: type[T], *, custom_repr: bool = True) -> type[List[T]]:
    return new_class(f'{item_type.__name__}List', (List[item_type],), kwds={'custom_repr': custom_repr})  # type: ignore[valid-type]


def make_compressed_list_type[T: DataWireProtocol](item_type: type[T], *, custom_repr: bool = True) -> type[CompressedList[T]]:
    return new_class(f'Compressed{item_type.__name__}List', (CompressedList[item_type],), kwds={'custom_repr': custom_repr})  # type: ignore[valid-type]
