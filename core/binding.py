"""
Positional parameter binding

Rewrites `$N` placeholders (1-indexed) into the named pyformat markers that
clickhouse-driver substitutes client side. Every occurrence of the same
index binds to the same argument, so "$1::Int8, $1::UInt8" transmits one
literal twice and lets the server cast it.

Placeholders inside string literals, quoted identifiers ("x" and `x`) and
`--` or `/* */` comments are left alone.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from core.errors import BindError, TypeMismatch

_SCALARS = (bool, int, float, str, bytes, Decimal, date, datetime, uuid.UUID, Enum)
_QUOTES = ("'", '"', "`")


def param_name(index: int) -> str:
    """Name of the driver parameter for placeholder $index"""
    return f"p{index}"


def _check_literal(value: Any, position: int) -> None:
    if value is None or isinstance(value, _SCALARS):
        return
    if isinstance(value, list | tuple):
        for item in value:
            _check_literal(item, position)
        return
    raise TypeMismatch(
        f"argument ${position} of type {type(value).__name__} has no ClickHouse literal form"
    )


def bind(sql: str, args: tuple[Any, ...] | list[Any]) -> tuple[str, dict[str, Any] | None]:
    """
    Bind positional arguments to `$N` placeholders

    Args:
        sql: SQL text with $1, $2, ... placeholders
        args: Positional arguments

    Returns:
        (query, params) ready for clickhouse-driver; params is None when no
        arguments were given and the SQL has no placeholders

    Raises:
        BindError: If a placeholder has no matching argument ($0 or $N > len(args))
        TypeMismatch: If an argument has no literal representation

    Example:
        >>> bind("SELECT $1::Int8, $1::UInt8", (10,))
        ('SELECT %(p1)s::Int8, %(p1)s::UInt8', {'p1': 10})
    """
    for position, value in enumerate(args, start=1):
        _check_literal(value, position)

    out: list[str] = []
    used: set[int] = set()
    quote: str | None = None
    i = 0
    n = len(sql)

    while i < n:
        char = sql[i]

        if quote is not None:
            out.append(char)
            if char == "\\" and i + 1 < n:
                out.append(sql[i + 1])
                i += 1
            elif char == quote:
                # A doubled quote is escaped, not the end of the literal
                if i + 1 < n and sql[i + 1] == quote:
                    out.append(quote)
                    i += 1
                else:
                    quote = None
            i += 1
            continue

        if char in _QUOTES:
            quote = char
            out.append(char)
            i += 1
            continue

        if sql.startswith("--", i):
            end = sql.find("\n", i)
            end = n if end == -1 else end
            out.append(sql[i:end])
            i = end
            continue

        if sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(sql[i:end])
            i = end
            continue

        if char == "$" and i + 1 < n and sql[i + 1].isdigit():
            j = i + 1
            while j < n and sql[j].isdigit():
                j += 1
            index = int(sql[i + 1 : j])
            if index < 1 or index > len(args):
                raise BindError(
                    f"placeholder ${index} has no argument ({len(args)} argument(s) given)"
                )
            used.add(index)
            out.append(f"%({param_name(index)})s")
            i = j
            continue

        out.append(char)
        i += 1

    if not used and not args:
        return sql, None

    # clickhouse-driver applies `query % params`, so literal percent signs must be doubled
    query = "".join(part if part.startswith("%(") else part.replace("%", "%%") for part in out)
    params = {param_name(index): args[index - 1] for index in sorted(used)}
    return query, params
