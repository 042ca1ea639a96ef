# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Wire protocol used by wallets to synchronize with indexer nodes.

   Each message is sent as its numeric identifier, followed (for messages
   that carry a payload) by the payload length and the payload itself:

     +---------------------+
     |    id (VarInt)      |
     +---------------------+
     |  length (VarInt)    |   only present for messages with a payload
     +---------------------+
     |      payload        |   exactly length bytes
     +---------------------+

   All integers are little endian unless noted otherwise, and VarInt is the
   variable length integer encoding also known as CompactSize. The declared
   payload length cannot exceed MAX_MESSAGE_SIZE.

   The payloads of the filters and mempool chunk messages carry their items
   compressed, in order to reduce the bandwidth used for bulk responses.

"""

import time
from collections.abc import Iterable, MutableMapping, Sequence
from io import BytesIO
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import ClassVar, Self

from .datamodel import (
    AddressType,
    BlockID,
    Currency,
    Fiat,
    IPv4AddressAdapter,
    IPv6AddressAdapter,
    MemFilter,
    Nonce,
    OnionV3Address,
    PortAdapter,
    Rate,
    RejectReason,
    Transaction,
    TxPrefix,
    UInt64Adapter,
    VarInt32Adapter,
    VarIntAdapter,
    Version,
    WireData,
    read_exact,
)
from .elements import AnnotatedStructure, DependentElementSpec, Element, FieldDependentElement, ListElement
from .exceptions import MalformedHeaderError, OversizedPayloadError, TrailingDataError

__all__ = (  # noqa: RUF022
    # Constants
    'MAX_MESSAGE_SIZE',

    # Address elements
    'IPv4AddrPort',
    'IPv6AddrPort',
    'OnionAddrPort',
    'Address',

    # Payload elements
    'ScanBlock',
    'Filter',
    'FeeBtc',
    'FeeOther',
    'FeeResp',
    'RateReq',
    'FiatRate',
    'RateResp',
    'FilterPrefixPair',

    # Messages
    'Message',

    'VersionMessage',
    'VersionAck',
    'FiltersReq',
    'FiltersResp',
    'FilterEvent',
    'GetPeers',
    'Peers',
    'GetFee',
    'Fee',
    'PeerIntroduce',
    'RejectMessage',
    'Ping',
    'Pong',
    'GetRates',
    'Rates',
    'FullFilterInv',
    'GetFullFilter',
    'FullFilter',
    'GetMemFilters',
    'MemFilters',
    'GetMempool',
    'MempoolChunkResp',

    # Envelope
    'serialize',
    'deserialize',
    'deserialize_partial',
    'read_message',
)


MAX_MESSAGE_SIZE = 10 * 1024 * 1024  # The maximum declared payload length (10 MiB)


# Address elements

class IPv4AddrPort(AnnotatedStructure):
    addr: Element[IPv4Address] = Element(IPv4Address, adapter=IPv4AddressAdapter)
    port: Element[int] = Element(int, adapter=PortAdapter)

    def __str__(self) -> str:
        return f'{self.addr}:{self.port}'


class IPv6AddrPort(AnnotatedStructure):
    addr: Element[IPv6Address] = Element(IPv6Address, adapter=IPv6AddressAdapter)
    port: Element[int] = Element(int, adapter=PortAdapter)

    def __str__(self) -> str:
        return f'[{self.addr}]:{self.port}'


class OnionAddrPort(AnnotatedStructure):
    addr: Element[OnionV3Address] = Element(OnionV3Address)
    port: Element[int] = Element(int, adapter=PortAdapter)

    def __str__(self) -> str:
        return f'{self.addr}:{self.port}'


class Address(AnnotatedStructure):
    # AddressType  type       // one byte discriminant
    # AddrPort     addr_port  // the address bytes followed by a big endian port (no length prefix)

    _addr_port_specification: ClassVar = DependentElementSpec[IPv4AddrPort | IPv6AddrPort | OnionAddrPort, AddressType](
        type_map={
            AddressType.ipv4: IPv4AddrPort,
            AddressType.ipv6: IPv6AddrPort,
            AddressType.onion_v3: OnionAddrPort,
        },
    )

    type: Element[AddressType] = Element(AddressType)
    addr_port: FieldDependentElement[IPv4AddrPort | IPv6AddrPort | OnionAddrPort, AddressType] = FieldDependentElement(control_field=type, specification=_addr_port_specification)

    def __str__(self) -> str:
        return str(self.addr_port)

    @classmethod
    def from_address(cls, host: str, port: int) -> Self:
        address = ip_address(host)
        match address:
            case IPv4Address():
                return cls(type=AddressType.ipv4, addr_port=IPv4AddrPort(addr=address, port=port))
            case IPv6Address():
                return cls(type=AddressType.ipv6, addr_port=IPv6AddrPort(addr=address, port=port))

    @classmethod
    def onion(cls, name: str | bytes, port: int) -> Self:
        if isinstance(name, str):
            name = name.removesuffix('.onion').encode()
        return cls(type=AddressType.onion_v3, addr_port=OnionAddrPort(addr=OnionV3Address(name), port=port))


# Payload elements

class ScanBlock(AnnotatedStructure):
    currency: Element[Currency] = Element(Currency)
    version: Element[Version] = Element(Version)
    scan_height: Element[int] = Element(int, adapter=VarIntAdapter)
    height: Element[int] = Element(int, adapter=VarIntAdapter)

    def __str__(self) -> str:
        return f'{self.currency} v{self.version} scanned {self.scan_height} of {self.height}'


class Filter(AnnotatedStructure):
    block_id: Element[BlockID] = Element(BlockID)
    filter: Element[bytes] = Element(bytes)

    def __str__(self) -> str:
        return f'Block {self.block_id.hex()}, filter {self.filter.hex()}'


class FeeBtc(AnnotatedStructure):
    """Bitcoin fee estimates, for conservative and economic modes (satoshi per byte)"""

    fast_conserv: Element[int] = Element(int, adapter=VarIntAdapter)
    fast_econom: Element[int] = Element(int, adapter=VarIntAdapter)
    moderate_conserv: Element[int] = Element(int, adapter=VarIntAdapter)
    moderate_econom: Element[int] = Element(int, adapter=VarIntAdapter)
    cheap_conserv: Element[int] = Element(int, adapter=VarIntAdapter)
    cheap_econom: Element[int] = Element(int, adapter=VarIntAdapter)


class FeeOther(AnnotatedStructure):
    fast: Element[int] = Element(int, adapter=VarIntAdapter)
    moderate: Element[int] = Element(int, adapter=VarIntAdapter)
    cheap: Element[int] = Element(int, adapter=VarIntAdapter)


class FeeResp(AnnotatedStructure):
    # The currency selects the fee layout. Only the bitcoin currencies use the detailed one.

    _fees_specification: ClassVar = DependentElementSpec[FeeBtc | FeeOther, Currency](
        type_map={
            Currency.Btc: FeeBtc,
            Currency.TBtc: FeeBtc,
        },
        fallback_type=FeeOther,
    )

    currency: Element[Currency] = Element(Currency)
    fees: FieldDependentElement[FeeBtc | FeeOther, Currency] = FieldDependentElement(control_field=currency, specification=_fees_specification)

    def __str__(self) -> str:
        return f'Fee for {self.currency}: {self.fees!r}'


class RateReq(AnnotatedStructure):
    currency: Element[Currency] = Element(Currency)
    fiats: ListElement[Fiat] = ListElement(Fiat)

    def __str__(self) -> str:
        return f'{self.currency} in {', '.join(map(str, self.fiats))}'


class FiatRate(AnnotatedStructure):
    fiat: Element[Fiat] = Element(Fiat)
    rate: Element[Rate] = Element(Rate)

    def __str__(self) -> str:
        return f'{self.rate} {self.fiat}'


class RateResp(AnnotatedStructure):
    currency: Element[Currency] = Element(Currency)
    rates: ListElement[FiatRate] = ListElement(FiatRate)

    def __str__(self) -> str:
        return f'{self.currency}: {', '.join(map(str, self.rates))}'


class FilterPrefixPair(AnnotatedStructure):
    prefix: Element[TxPrefix] = Element(TxPrefix)
    filter: Element[MemFilter] = Element(MemFilter)

    def __str__(self) -> str:
        return f'{self.prefix}: {self.filter}'


# Messages

type MessageType = type[Message]


class Message(AnnotatedStructure):
    # The message code must be defined by subclasses. Messages without a
    # payload are sent as their code alone and cannot have any fields.

    _id_: ClassVar[int] = NotImplemented
    _name_: ClassVar[str] = ''
    _payload_: ClassVar[bool] = True
    _registry_: ClassVar[MutableMapping[int, MessageType]] = {}

    def __init_subclass__(cls, *, code: int = NotImplemented, name: str = '', payload: bool = True, **kw: object) -> None:
        super().__init_subclass__(**kw)
        if code is NotImplemented:
            raise TypeError(f'Message type {cls.__qualname__!r} must define its code')
        if not payload and cls._fields_:
            raise TypeError(f'Message type {cls.__qualname__!r} has no payload, but it defines fields')
        cls._id_ = VarInt32Adapter.validate(code)
        cls._name_ = name or cls.__name__.lower()
        cls._payload_ = payload
        if cls._registry_.setdefault(code, cls) is not cls:
            raise TypeError(f'Message code {code} is already used by {cls._registry_[code].__qualname__!r}')

    def __class_getitem__(cls, code: int) -> MessageType:
        try:
            return cls._registry_[code]
        except KeyError as exc:
            raise MalformedHeaderError(f'Unknown message type: {code}') from exc

    def __str__(self) -> str:
        if not self._fields_:
            return self._name_
        return f'{self._name_}: {'; '.join(_display(getattr(self, name)) for name in self._fields_)}'

    @property
    def id(self) -> int:
        return self._id_

    @property
    def name(self) -> str:
        return self._name_

    @classmethod
    def name_from_id(cls, code: int) -> str | None:
        """Return the human readable name of the message type with the given code"""
        message_type = cls._registry_.get(code)
        return message_type._name_ if message_type is not None else None

    @classmethod
    def from_payload(cls, payload: WireData) -> Self:
        buffer = BytesIO(payload)
        instance = cls.from_wire(buffer)
        if buffer.read(1):
            raise TrailingDataError(f'The {cls._name_} message payload has trailing data')
        return instance


class VersionMessage(Message, code=0, name='version'):
    version: Element[Version] = Element(Version, default=Version.current())
    time: Element[int] = Element(int, adapter=UInt64Adapter)
    nonce: Element[Nonce] = Element(Nonce)
    scan_blocks: ListElement[ScanBlock] = ListElement(ScanBlock, default=())

    @classmethod
    def new(cls, scan_blocks: Iterable[ScanBlock] = ()) -> Self:
        """Create a version message for the current protocol version, with a fresh timestamp and nonce"""
        return cls(version=Version.current(), time=int(time.time()), nonce=Nonce.generate(), scan_blocks=list(scan_blocks))


class VersionAck(Message, code=1, name='version ack', payload=False):
    pass


class FiltersReq(Message, code=2, name='req filters'):
    currency: Element[Currency] = Element(Currency)
    start: Element[int] = Element(int, adapter=VarIntAdapter)
    amount: Element[int] = Element(int, adapter=VarInt32Adapter)


class FiltersResp(Message, code=3, name='filters'):
    currency: Element[Currency] = Element(Currency)
    filters: ListElement[Filter] = ListElement(Filter, compressed=True)


class FilterEvent(Message, code=4, name='filter'):
    currency: Element[Currency] = Element(Currency)
    height: Element[int] = Element(int, adapter=VarIntAdapter)
    block_id: Element[BlockID] = Element(BlockID)
    filter: Element[bytes] = Element(bytes)


class GetPeers(Message, code=5, name='req peers', payload=False):
    pass


class Peers(Message, code=6, name='peers'):
    peers: ListElement[Address] = ListElement(Address)


class GetFee(Message, code=7, name='req fee'):
    currencies: ListElement[Currency] = ListElement(Currency)


class Fee(Message, code=8, name='fee'):
    fees: ListElement[FeeResp] = ListElement(FeeResp)


class PeerIntroduce(Message, code=9, name='peer announce'):
    peers: ListElement[Address] = ListElement(Address)


class RejectMessage(Message, code=10, name='reject'):
    message_id: Element[int] = Element(int, adapter=VarInt32Adapter)  # The code of the rejected message
    reason: Element[RejectReason] = Element(RejectReason)
    message: Element[str] = Element(str)

    def __str__(self) -> str:
        return f'reject {self.reason} for {self.name_from_id(self.message_id) or 'unknown'}, reason: {self.message}'

    @classmethod
    def for_error(cls, message_id: int, reason: RejectReason, text: str) -> Self:
        return cls(message_id=message_id, reason=reason, message=text)


class Ping(Message, code=11, name='ping'):
    nonce: Element[Nonce] = Element(Nonce)

    @classmethod
    def new(cls) -> Self:
        return cls(nonce=Nonce.generate())

    def reply(self) -> 'Pong':
        return Pong(nonce=self.nonce)


class Pong(Message, code=12, name='pong'):
    nonce: Element[Nonce] = Element(Nonce)


class GetRates(Message, code=13, name='req rates'):
    requests: ListElement[RateReq] = ListElement(RateReq)


class Rates(Message, code=14, name='rates'):
    rates: ListElement[RateResp] = ListElement(RateResp)


class FullFilterInv(Message, code=15, name='full filter inv', payload=False):
    pass


class GetFullFilter(Message, code=16, name='get full filter', payload=False):
    pass


class FullFilter(Message, code=17, name='full filter'):
    filter: Element[MemFilter] = Element(MemFilter)


class GetMemFilters(Message, code=18, name='get mempool filters', payload=False):
    pass


class MemFilters(Message, code=19, name='mempool filters'):
    filters: ListElement[FilterPrefixPair] = ListElement(FilterPrefixPair)


class GetMempool(Message, code=20, name='get mempool'):
    prefixes: ListElement[TxPrefix] = ListElement(TxPrefix)


class MempoolChunkResp(Message, code=21, name='mempool chunk'):
    prefix: Element[TxPrefix] = Element(TxPrefix)
    txs: ListElement[Transaction] = ListElement(Transaction, compressed=True)


# Envelope

def serialize(message: Message) -> bytes:
    """Encode a message together with its header"""
    if message._id_ is NotImplemented:
        raise TypeError(f'Cannot serialize abstract message type {message.__class__.__qualname__!r}')
    header = VarIntAdapter.to_wire(message._id_)
    if not message._payload_:
        return header
    payload = message.to_wire()
    return header + VarIntAdapter.to_wire(len(payload)) + payload


def read_message(buffer: BytesIO) -> Message:
    """Read the next message from buffer, leaving the buffer positioned right after it"""
    code = VarIntAdapter.from_wire(buffer)
    message_type = Message[code]
    if not message_type._payload_:
        return message_type()
    length = VarIntAdapter.from_wire(buffer)
    if length > MAX_MESSAGE_SIZE:
        raise OversizedPayloadError(f'Message size is too large: {length} > {MAX_MESSAGE_SIZE}')
    return message_type.from_payload(read_exact(buffer, length, f'the {message_type._name_} message payload'))


def deserialize_partial(data: WireData) -> tuple[Message, int]:
    """Decode the message at the start of data and return it together with the number of bytes it used"""
    buffer = data if isinstance(data, BytesIO) else BytesIO(data)
    start = buffer.tell()
    message = read_message(buffer)
    return message, buffer.tell() - start


def deserialize(data: WireData) -> Message:
    """Decode a message from data, which must contain exactly one message"""
    buffer = data if isinstance(data, BytesIO) else BytesIO(data)
    message = read_message(buffer)
    if buffer.read(1):
        raise TrailingDataError(f'Data left in buffer after the {message._name_} message')
    return message


# Helpers

def _display(value: object) -> str:
    match value:
        case bytes() as value:
            return value.hex()
        case Sequence() as value if not isinstance(value, str):
            return ', '.join(map(_display, value))
        case value:
            return str(value)
