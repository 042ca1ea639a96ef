# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import reduce
from inspect import Parameter, Signature
from io import BytesIO
from itertools import chain
from operator import or_
from types import NoneType, UnionType, new_class
from typing import ClassVar, Self, cast, dataclass_transform, overload

from .datamodel import AdapterRegistry, DataWireAdapter, DataWireProtocol, List, OpenEnum, WireData, make_compressed_list_type, make_list_type
from .exceptions import DecodeError, InvariantViolation

__all__ = (  # noqa: RUF022
    'Structure',
    'AnnotatedStructure',

    'DependentElementSpec',

    'Element',
    'FieldDependentElement',
    'ListElement',
)


class Structure:
    """
    A value made of the fields defined by its element descriptors.

    Structures are immutable once created and compare and hash by value.
    """

    __signature__: ClassVar[Signature] = Signature()

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    _all_arguments: ClassVar[frozenset[str]]
    _mandatory_arguments: ClassVar[frozenset[str]]
    _default_arguments: ClassVar[dict[str, object]]

    def __new__(cls, **kw: object) -> Self:
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'Got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'Missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        # Fields need to be set in the order they were defined (dependent
        # elements need their control element to be set first), but **kw
        # can be provided in any order.
        kw = self._default_arguments | kw
        for name in self._fields_:
            object.__setattr__(self, name, kw[name])

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f'Cannot set attribute {name!r} of immutable {self.__class__.__qualname__!r} object')

    def __init_subclass__(cls, **kw: object) -> None:
        super().__init_subclass__(**kw)

        # all the fields on this element (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)
        cls._default_arguments = {p.name: p.default for p in cls.__signature__.parameters.values() if p.default is not Parameter.empty}

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={_reprproxy(getattr(self, name))!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Structure):
            return self.__class__ is other.__class__ and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.__class__, *(getattr(self, name) for name in self._fields_)))

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.from_wire(instance, buffer)
        return instance

    def to_wire(self) -> bytes:
        return b''.join(field.to_wire(self) for field in self._fields_.values())

    def wire_length(self) -> int:
        return sum(field.wire_length(self) for field in self._fields_.values())


# Helpers

class _reprproxy:  # noqa: N801
    # Provide better representation for certain types which can be evaluated to recreate the object.

    def __init__(self, value: object) -> None:
        self.value = value

    def __repr__(self) -> str:
        match self.value:
            case OpenEnum() as value:
                return repr(value)
            case Enum() as value:
                return f'{value.__class__.__qualname__}.{value.name}'
            case UnionType() as value:
                return ' | '.join('None' if _type is NoneType else _type.__qualname__ for _type in value.__args__)
            case type() as value:
                return value.__qualname__
            case value:
                return repr(value)

    __str__ = __repr__


def _protocol2adapter[T: DataWireProtocol](proto: type[T]) -> type[DataWireAdapter[T]]:
    # Turn a DataWireProtocol into a DataWireAdapter by creating a stand-in adapter on the fly.
    #
    # Field descriptors treat DataWireProtocol and DataWireAdapter interchangeably, but adapters
    # have an extra validate() method. The stand-in adapter converts the value to the protocol
    # type, which lets plain values (like an int for an enumeration) be used to set the field.

    def validate(value: T, /) -> T:
        if isinstance(value, proto):
            return value
        try:
            return proto(value)  # type: ignore[call-arg]
        except (TypeError, ValueError) as exc:
            raise InvariantViolation(f'Cannot use {value!r} as a {proto.__qualname__!r} value: {exc}') from exc

    def prepare(ns: dict) -> None:
        ns['_abstract_'] = False
        ns['from_wire'] = staticmethod(proto.from_wire)
        ns['to_wire'] = staticmethod(proto.to_wire)
        ns['wire_length'] = staticmethod(proto.wire_length)
        ns['validate'] = staticmethod(validate)

    adapter = new_class(f'{proto.__name__}AdapterStandIn', (DataWireAdapter[T],), exec_body=prepare)
    adapter.__module__ = __name__
    adapter.__qualname__ = f'_protocol2adapter.<generated>.{adapter.__name__}'

    return adapter


def _field_error(exc: DecodeError, instance: Structure, name: str) -> DecodeError:
    # Same error type, with the path of the failing field prepended to the message
    return exc.__class__(f'Failed to read the {instance.__class__.__qualname__}.{name} element from wire: {exc}')


type DataWireAdapterType[T] = type[DataWireAdapter[T]]


# Field descriptor specifications

class FieldDescriptor(ABC):
    name: str | None

    @property
    @abstractmethod
    def signature_parameter(self) -> Parameter: ...

    @abstractmethod
    def from_wire(self, instance: Structure, buffer: WireData) -> None: ...

    @abstractmethod
    def to_wire(self, instance: Structure) -> bytes: ...

    @abstractmethod
    def wire_length(self, instance: Structure) -> int: ...

    def __set_name__(self, owner: type[Structure], name: str) -> None:
        if self.name is None:
            self.name = name
        elif name != self.name:
            raise TypeError(f'Cannot assign the same {self.__class__.__qualname__!r} to two different names: {self.name!r} and {name!r}')

    def __delete__(self, instance: Structure) -> None:
        raise AttributeError(f'Attribute {self.name!r} of {instance.__class__.__qualname__!r} object cannot be deleted')

    def _check_name(self) -> str:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        return self.name


class ElementDescriptor[T](FieldDescriptor):
    name: str | None
    type: type[T] | UnionType
    default: T
    adapter: DataWireAdapterType[T]

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        kwds = {} if self.default is NotImplemented else {'default': self.default}
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type, **kwds)


class DependentElementDescriptor[T, U](FieldDescriptor):
    name: str | None
    type_map: Mapping[U, type[T]]
    fallback_type: type[T] | None
    default: T

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        kwds = {} if self.default is NotImplemented else {'default': self.default}
        annotation = reduce(or_, chain(set(self.type_map.values()), [self.fallback_type] if self.fallback_type is not None else []))
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=annotation, **kwds)


class ListElementDescriptor[T: DataWireProtocol](FieldDescriptor):
    name: str | None
    compressed: bool
    default: Sequence[T]
    item_type: type[T]
    list_type: type[List[T]]

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        kwds = {} if self.default is NotImplemented else {'default': self.default}
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=list[self.item_type], **kwds)  # type: ignore[name-defined]


# Field descriptor implementations

class Element[T](ElementDescriptor[T]):
    @overload
    def __init__(self, element_type: type[T], /, *, default: T = ..., adapter: DataWireAdapterType[T] | None = ...) -> None: ...

    @overload
    def __init__(self, element_type: UnionType, /, *, default: T = ..., adapter: DataWireAdapterType[T]) -> None: ...

    def __init__(self, element_type: type[T] | UnionType, /, *, default: T = NotImplemented, adapter: DataWireAdapterType[T] | None = None) -> None:
        self.name = None
        self.type = element_type
        self.default = default
        self.provided_adapter = adapter
        if adapter is None:
            if isinstance(element_type, UnionType):
                raise TypeError('When the element type is a union of types a composite adapter for the same types must be provided')
            if issubclass(element_type, DataWireProtocol):
                adapter = cast(DataWireAdapterType[T], _protocol2adapter(element_type))
            else:
                adapter = AdapterRegistry.get_adapter(element_type)
        if adapter is None:
            raise TypeError('Either the element type must implement the DataWireProtocol or an adapter must be provided')
        if adapter._abstract_:
            raise TypeError(f'Cannot use abstract adapter {adapter.__qualname__!r} (need to select a concrete implementation of it, usually one that defines its size)')
        self.adapter = adapter

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({_reprproxy(self.type)!r}, default={self.default!r}, adapter={_reprproxy(self.provided_adapter)!r})'

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> T: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | T:
        if instance is None:
            return self
        name = self._check_name()
        try:
            return instance.__dict__[name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    def __set__(self, instance: Structure, value: T) -> None:
        instance.__dict__[self._check_name()] = self.adapter.validate(value)

    def from_wire(self, instance: Structure, buffer: WireData) -> None:
        name = self._check_name()
        try:
            instance.__dict__[name] = self.adapter.from_wire(buffer)
        except DecodeError as exc:
            raise _field_error(exc, instance, name) from exc

    def to_wire(self, instance: Structure) -> bytes:
        return self.adapter.to_wire(self.__get__(instance))

    def wire_length(self, instance: Structure) -> int:
        return self.adapter.wire_length(self.__get__(instance))


@dataclass(kw_only=True, slots=True)
class DependentElementSpec[T: DataWireProtocol, U]:
    """
    Maps the values of a control element to the type of a dependent element.

    Control values that are not present in the type map select the fallback
    type. Without a fallback type they are an error. The dependent element
    has no length prefix on the wire, so every type must know its own size.
    """

    type_map: Mapping[U, type[T]]
    fallback_type: type[T] | None = None

    def __post_init__(self) -> None:
        if not self.type_map and self.fallback_type is None:
            raise TypeError(f'A {self.__class__.__qualname__!r} with an empty type_map must specify a fallback type')

    def __repr__(self) -> str:
        type_map = {_reprproxy(name): _reprproxy(value) for name, value in self.type_map.items()}
        fallback_type = _reprproxy(self.fallback_type)
        return f'{self.__class__.__qualname__}({type_map=}, {fallback_type=})'

    def lookup(self, control_value: U) -> type[T] | None:
        return self.type_map.get(control_value, self.fallback_type)


class FieldDependentElement[T: DataWireProtocol, U](DependentElementDescriptor[T, U]):
    """An element whose type is selected by the value of a previous element in the same structure"""

    control_field: ElementDescriptor[U]

    def __init__(self, *, control_field: ElementDescriptor[U], specification: DependentElementSpec[T, U], default: T = NotImplemented) -> None:
        self.name = None
        self.control_field = control_field
        self.specification = specification
        self.default = default
        self.type_map = specification.type_map
        self.fallback_type = specification.fallback_type

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(control_field={self.control_field.name!s}, specification={self.specification!r}, default={self.default!r})'

    def _get_control_value(self, instance: Structure, /) -> U:
        if self.control_field.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on its control field.')
        try:
            return instance.__dict__[self.control_field.name]
        except KeyError as exc:
            raise InvariantViolation(f'Control element {instance.__class__.__qualname__}.{self.control_field.name} is not set') from exc

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> T: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | T:
        if instance is None:
            return self
        name = self._check_name()
        try:
            return instance.__dict__[name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    def __set__(self, instance: Structure, value: T) -> None:
        self._check_type(instance, value)
        instance.__dict__[self._check_name()] = value

    def _check_type(self, instance: Structure, value: T, /) -> None:
        name = self._check_name()
        control_value = self._get_control_value(instance)
        element_type = self.specification.lookup(control_value)
        if element_type is None:
            raise InvariantViolation(f'Cannot find associated type for dependent element {instance.__class__.__qualname__}.{name} with control value {control_value!r}')
        if not isinstance(value, element_type):
            raise InvariantViolation(f'The value for the {name!r} field should be of type {element_type.__qualname__!r} when {self.control_field.name} is {control_value!r}')

    def from_wire(self, instance: Structure, buffer: WireData) -> None:
        name = self._check_name()
        control_value = self._get_control_value(instance)
        element_type = self.specification.lookup(control_value)
        if element_type is None:
            # Only reachable with a closed control type, which fails to decode unknown values first
            raise DecodeError(f'Cannot find associated type for dependent element {instance.__class__.__qualname__}.{name} with control value {control_value!r}')
        try:
            instance.__dict__[name] = element_type.from_wire(buffer)
        except DecodeError as exc:
            raise _field_error(exc, instance, name) from exc

    def to_wire(self, instance: Structure) -> bytes:
        value = self.__get__(instance)
        self._check_type(instance, value)
        return value.to_wire()

    def wire_length(self, instance: Structure) -> int:
        return self.__get__(instance).wire_length()


class ListElement[T: DataWireProtocol](ListElementDescriptor[T]):
    """
    A list of items prefixed with the number of items.

    With compressed=True the item encodings are sent compressed after the
    count and run to the end of the buffer, which makes this usable only as
    the last element of a structure.
    """

    def __init__(self, item_type: type[T], /, *, default: Sequence[T] = NotImplemented, compressed: bool = False) -> None:
        self.name = None
        self.default = default
        self.compressed = compressed
        self.item_type = item_type
        self.item_adapter = _protocol2adapter(item_type)
        if compressed:
            self.list_type = make_compressed_list_type(item_type, custom_repr=False)
        else:
            self.list_type = make_list_type(item_type, custom_repr=False)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.item_type.__qualname__}, default={self.default!r}, compressed={self.compressed!r})'

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> List[T]: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | List[T]:
        if instance is None:
            return self
        name = self._check_name()
        try:
            return instance.__dict__[name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    def __set__(self, instance: Structure, value: Sequence[T]) -> None:
        name = self._check_name()
        instance.__dict__[name] = self.list_type(self.item_adapter.validate(item) for item in value)

    def from_wire(self, instance: Structure, buffer: WireData) -> None:
        name = self._check_name()
        try:
            instance.__dict__[name] = self.list_type.from_wire(buffer)
        except DecodeError as exc:
            raise _field_error(exc, instance, name) from exc

    def to_wire(self, instance: Structure) -> bytes:
        return self.__get__(instance).to_wire()

    def wire_length(self, instance: Structure) -> int:
        return self.__get__(instance).wire_length()


@dataclass_transform(kw_only_default=True, field_specifiers=(Element, FieldDependentElement, ListElement))
class AnnotatedStructure(Structure):
    pass
