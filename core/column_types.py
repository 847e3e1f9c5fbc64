"""
ClickHouse column types and scan destinations

Two halves:
- ColumnType: parsed ClickHouse type name ("Nullable(UInt64)", "DateTime('UTC')")
  able to check whether a Python value is assignable to it. Used by the
  external-table builder and for row scanning.
- Destination: typed scan target (Int8, UInt64, String, DateTime, ...).
  Nullable(dest) admits the absent marker (None). Plain Python types are
  accepted as shorthand (int, str, datetime, int | None, ...).
"""

import ipaddress
import types
import typing
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from core.errors import InvalidArgument, TypeMismatch

_INT_RANGES: dict[str, tuple[int, int]] = {
    "Int8": (-(2**7), 2**7 - 1),
    "Int16": (-(2**15), 2**15 - 1),
    "Int32": (-(2**31), 2**31 - 1),
    "Int64": (-(2**63), 2**63 - 1),
    "Int128": (-(2**127), 2**127 - 1),
    "Int256": (-(2**255), 2**255 - 1),
    "UInt8": (0, 2**8 - 1),
    "UInt16": (0, 2**16 - 1),
    "UInt32": (0, 2**32 - 1),
    "UInt64": (0, 2**64 - 1),
    "UInt128": (0, 2**128 - 1),
    "UInt256": (0, 2**256 - 1),
}

_WRAPPERS = {"Nullable", "LowCardinality", "Array"}

_SIMPLE = {
    "Float32",
    "Float64",
    "String",
    "Bool",
    "Date",
    "Date32",
    "DateTime",
    "UUID",
    "IPv4",
    "IPv6",
    "Nothing",
}

_PARAMETRIC = {
    "FixedString",
    "DateTime",
    "DateTime64",
    "Decimal",
    "Decimal32",
    "Decimal64",
    "Decimal128",
    "Decimal256",
    "Enum8",
    "Enum16",
}


def _split_args(text: str) -> list[str]:
    """Split top-level comma-separated type arguments, honoring quotes and parentheses"""
    args: list[str] = []
    depth = 0
    quoted = False
    current: list[str] = []

    i = 0
    while i < len(text):
        char = text[i]
        if quoted:
            current.append(char)
            if char == "\\" and i + 1 < len(text):
                current.append(text[i + 1])
                i += 1
            elif char == "'":
                quoted = False
        elif char == "'":
            quoted = True
            current.append(char)
        elif char == "(":
            depth += 1
            current.append(char)
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise InvalidArgument(f"Unbalanced parentheses in type arguments: {text}")
            current.append(char)
        elif char == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    if quoted or depth != 0:
        raise InvalidArgument(f"Unterminated type arguments: {text}")

    args.append("".join(current).strip())
    return args


@dataclass(frozen=True)
class ColumnType:
    """Parsed ClickHouse type name"""

    name: str
    base: str
    args: tuple[str, ...] = ()
    inner: "ColumnType | None" = None

    @property
    def nullable(self) -> bool:
        if self.base == "Nullable":
            return True
        if self.base == "LowCardinality" and self.inner is not None:
            return self.inner.nullable
        return False

    def accepts(self, value: Any) -> bool:
        """Whether `value` is assignable to this type"""
        base = self.base

        if base == "Nullable":
            return value is None or self.inner.accepts(value)
        if base == "LowCardinality":
            return self.inner.accepts(value)
        if value is None:
            return False
        if base == "Array":
            return isinstance(value, list | tuple) and all(self.inner.accepts(v) for v in value)

        if base in _INT_RANGES:
            if isinstance(value, bool) or not isinstance(value, int):
                return False
            low, high = _INT_RANGES[base]
            return low <= value <= high
        if base in ("Float32", "Float64"):
            return isinstance(value, int | float) and not isinstance(value, bool)
        if base == "Bool":
            return isinstance(value, bool)
        if base == "String":
            return isinstance(value, str | bytes)
        if base == "FixedString":
            if not isinstance(value, str | bytes):
                return False
            encoded = value.encode() if isinstance(value, str) else value
            return len(encoded) <= int(self.args[0])
        if base in ("Date", "Date32"):
            return isinstance(value, date)
        if base in ("DateTime", "DateTime64"):
            return isinstance(value, datetime)
        if base.startswith("Decimal"):
            return isinstance(value, Decimal | int | float) and not isinstance(value, bool)
        if base in ("Enum8", "Enum16"):
            return isinstance(value, str | int) and not isinstance(value, bool)
        if base == "UUID":
            if isinstance(value, uuid.UUID):
                return True
            if isinstance(value, str):
                try:
                    uuid.UUID(value)
                except ValueError:
                    return False
                return True
            return False
        if base == "IPv4":
            return _is_ip(value, ipaddress.IPv4Address)
        if base == "IPv6":
            return _is_ip(value, ipaddress.IPv6Address)
        return False


def _is_ip(value: Any, cls: type) -> bool:
    if isinstance(value, cls):
        return True
    if isinstance(value, str):
        try:
            cls(value)
        except ValueError:
            return False
        return True
    return False


def parse_type(name: str) -> ColumnType:
    """
    Parse a ClickHouse type name

    Args:
        name: Type name, e.g. "UInt8", "Nullable(UInt64)", "DateTime('UTC')"

    Returns:
        ColumnType

    Raises:
        InvalidArgument: If the type name is empty, malformed or unsupported

    Example:
        >>> parse_type("Nullable(UInt64)").nullable
        True
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgument("Type name must be a non-empty string")

    name = name.strip()
    open_paren = name.find("(")

    if open_paren == -1:
        if name in _INT_RANGES or name in _SIMPLE:
            return ColumnType(name=name, base=name)
        raise InvalidArgument(f"Unsupported ClickHouse type: {name}")

    if not name.endswith(")"):
        raise InvalidArgument(f"Malformed ClickHouse type: {name}")

    base = name[:open_paren].strip()
    args = tuple(_split_args(name[open_paren + 1 : -1]))

    if base in _WRAPPERS:
        if len(args) != 1:
            raise InvalidArgument(f"{base} takes exactly one type argument: {name}")
        inner = parse_type(args[0])
        if base == "Nullable" and inner.base in ("Nullable", "Array", "LowCardinality"):
            raise InvalidArgument(f"Nested type {inner.base} cannot be inside Nullable: {name}")
        return ColumnType(name=name, base=base, args=args, inner=inner)

    if base not in _PARAMETRIC or not all(args):
        raise InvalidArgument(f"Unsupported ClickHouse type: {name}")

    if base == "FixedString" and (len(args) != 1 or not args[0].isdigit() or int(args[0]) == 0):
        raise InvalidArgument(f"FixedString requires a positive length: {name}")

    return ColumnType(name=name, base=base, args=args)


# ============================================
# SCAN DESTINATIONS
# ============================================
@dataclass(frozen=True)
class Destination:
    """
    Typed scan target

    Integer destinations enforce their range so that an out-of-range server
    value is a TypeMismatch instead of a silent overflow.
    """

    name: str
    python_types: tuple[type, ...]
    int_range: tuple[int, int] | None = None
    nullable: bool = False

    def convert(self, value: Any, column: ColumnType | None = None) -> Any:
        """
        Check `value` read from `column` against this destination

        Raises:
            TypeMismatch: Nullable column into non-nullable destination, None into
                non-nullable destination, wrong value family or out-of-range integer
        """
        column_name = column.name if column is not None else "?"

        if column is not None and column.nullable and not self.nullable:
            raise TypeMismatch(
                f"converting {column_name} to {self.name} is unsupported: "
                f"use Nullable({self.name})"
            )

        if value is None:
            if self.nullable:
                return None
            raise TypeMismatch(f"cannot scan NULL from {column_name} into {self.name}")

        if not self.python_types:
            return value

        if isinstance(value, bool) and bool not in self.python_types:
            raise TypeMismatch(f"converting {column_name} (bool) to {self.name} is unsupported")

        if not isinstance(value, self.python_types):
            raise TypeMismatch(
                f"converting {column_name} ({type(value).__name__}) to {self.name} is unsupported"
            )

        if self.int_range is not None:
            low, high = self.int_range
            if not low <= value <= high:
                raise TypeMismatch(f"value {value} from {column_name} overflows {self.name}")

        return value


def _int_destination(name: str) -> Destination:
    return Destination(name=name, python_types=(int,), int_range=_INT_RANGES[name])


Int8 = _int_destination("Int8")
Int16 = _int_destination("Int16")
Int32 = _int_destination("Int32")
Int64 = _int_destination("Int64")
UInt8 = _int_destination("UInt8")
UInt16 = _int_destination("UInt16")
UInt32 = _int_destination("UInt32")
UInt64 = _int_destination("UInt64")
Float32 = Destination(name="Float32", python_types=(float,))
Float64 = Destination(name="Float64", python_types=(float,))
String = Destination(name="String", python_types=(str,))
Bytes = Destination(name="Bytes", python_types=(bytes, str))
Bool = Destination(name="Bool", python_types=(bool,))
Date = Destination(name="Date", python_types=(date,))
DateTime = Destination(name="DateTime", python_types=(datetime,))
UUID = Destination(name="UUID", python_types=(uuid.UUID,))
DecimalDest = Destination(name="Decimal", python_types=(Decimal,))
AnyValue = Destination(name="Any", python_types=(), nullable=True)


def Nullable(destination: "Destination | type") -> Destination:  # noqa: N802
    """Destination that also admits NULL"""
    destination = resolve_destination(destination)
    return replace(destination, name=f"Nullable({destination.name})", nullable=True)


# Python ints are unbounded; `int` as a destination takes any integer column
_PYTHON_DESTINATIONS: dict[Any, Destination] = {
    int: Destination(name="int", python_types=(int,)),
    float: Float64,
    str: String,
    bytes: Bytes,
    bool: Bool,
    date: Date,
    datetime: DateTime,
    uuid.UUID: UUID,
    Decimal: DecimalDest,
    Any: AnyValue,
    object: AnyValue,
}


def resolve_destination(destination: Any) -> Destination:
    """
    Normalize a scan destination

    Accepts Destination instances, plain Python types and Optional forms
    (`int | None`, `typing.Optional[int]`).

    Raises:
        InvalidArgument: If the destination is not recognized
    """
    if isinstance(destination, Destination):
        return destination

    origin = typing.get_origin(destination)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(destination) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(destination)) == 2:
            return Nullable(resolve_destination(args[0]))
        raise InvalidArgument(f"Unsupported scan destination: {destination}")

    try:
        return _PYTHON_DESTINATIONS[destination]
    except (KeyError, TypeError):
        raise InvalidArgument(f"Unsupported scan destination: {destination!r}") from None
