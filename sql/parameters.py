"""
=====================================
Parameter binding and placeholder rewriting.
=====================================

Every grammar compiles with the canonical positional marker ``?``. Each
clause is compiled to a ``Fragment`` carrying its SQL text and its own
bindings, and fragments are concatenated in one place (``join_fragments``),
so the binding order always matches the left-to-right order of the markers.

Placeholder styles:
    QMARK: ?                (MySQL)
    DOLLAR: $1, $2, ...     (Postgres)
    AT_PARAM: @param0, ...  (MSSQL)
    COLON_NUMERIC: :1, ...  (Oracle)

The scanner skips quoted literals, quoted identifiers and comments, so a
``?`` inside ``'what?'`` is never treated as a marker.

Functions:
    join_fragments: Concatenate fragments and their bindings
    count_placeholders: Count markers of a style outside quotes/comments
    rewrite_placeholders: Canonical ``?`` -> dialect-native markers
    to_driver_paramstyle: Dialect-native markers -> DBAPI paramstyle

Example:
    >>> rewrite_placeholders('SELECT * FROM "t" WHERE "a" = ? AND "b" = ?', PlaceholderStyle.DOLLAR)
    'SELECT * FROM "t" WHERE "a" = $1 AND "b" = $2'
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union


class PlaceholderStyle(str, Enum):
    """Dialect-native positional placeholder styles."""

    QMARK = 'qmark'
    DOLLAR = 'dollar'
    AT_PARAM = 'at_param'
    COLON_NUMERIC = 'colon_numeric'


_MARKERS = {
    PlaceholderStyle.QMARK: r'\?',
    PlaceholderStyle.DOLLAR: r'\$(?P<number>\d+)',
    PlaceholderStyle.AT_PARAM: r'@param(?P<number>\d+)',
    PlaceholderStyle.COLON_NUMERIC: r'(?<![:\w]):(?P<number>\d+)',
}

_QUOTED = {
    '"': r'"(?:[^"]|"")*"',
    "'": r"'(?:[^']|'')*'",
    '`': r'`(?:[^`]|``)*`',
    '[': r'\[[^\]]*\]',
}

_COMMENTS = r'--[^\r\n]*|/\*[\s\S]*?\*/'


@dataclass(frozen=True)
class Fragment:
    """A compiled piece of SQL with the bindings for its own markers."""

    sql: str
    bindings: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class CompiledStatement:
    """SQL text plus ordered bindings, ready for rewriting or execution.

    Attributes:
        sql: SQL text (canonical ``?`` markers until prepared)
        bindings: Ordered input binding values
        out_params: Columns bound to trailing output markers (Oracle RETURNING INTO)
        out_types: Python type of each output marker, parallel to out_params
            (None lets the driver default to a numeric variable)
        style: Placeholder style the ``sql`` text currently uses
    """

    sql: str
    bindings: Tuple[Any, ...] = ()
    out_params: Tuple[str, ...] = ()
    out_types: Tuple[Any, ...] = ()
    style: PlaceholderStyle = PlaceholderStyle.QMARK

    @property
    def marker_count(self) -> int:
        """Number of markers the SQL must contain (inputs plus outputs)."""
        return len(self.bindings) + len(self.out_params)

    def with_sql(self, sql: str, style: Optional[PlaceholderStyle] = None) -> 'CompiledStatement':
        """Return a copy with new SQL text (and optionally a new style)."""
        return replace(self, sql=sql, style=style or self.style)

    def with_out_types(self, types: Mapping[str, Any]) -> 'CompiledStatement':
        """Return a copy typing each output marker from ``types`` (keyed by column)."""
        return replace(self, out_types=tuple(types.get(column) for column in self.out_params))


def fragment(sql: str, bindings: Iterable[Any] = ()) -> Fragment:
    """Build a Fragment from SQL text and any iterable of bindings."""
    return Fragment(sql, tuple(bindings))


def join_fragments(fragments: Iterable[Optional[Fragment]], separator: str = ' ') -> Fragment:
    """Concatenate fragments, skipping empty ones, keeping bindings aligned.

    Args:
        fragments: Fragments in output order (None or empty SQL are skipped)
        separator: Text placed between non-empty fragments

    Returns:
        Single Fragment whose bindings are the ordered concatenation
    """
    parts: List[str] = []
    bindings: List[Any] = []
    for part in fragments:
        if part is None or not part.sql:
            continue
        parts.append(part.sql)
        bindings.extend(part.bindings)
    return Fragment(separator.join(parts), tuple(bindings))


@lru_cache(maxsize=None)
def _scanner(style: PlaceholderStyle, quotes: str) -> 're.Pattern[str]':
    skips = [_QUOTED[q] for q in quotes] + [_COMMENTS]
    return re.compile(f"(?P<skip>{'|'.join(skips)})|(?P<marker>{_MARKERS[style]})")


def _tokens(sql: str, style: PlaceholderStyle, quotes: str) -> Iterator[Tuple[str, str, Optional[int]]]:
    """Yield ('text'|'marker', text, marker_number) tokens for ``sql``."""
    position = 0
    for match in _scanner(style, quotes).finditer(sql):
        if match.start() > position:
            yield 'text', sql[position:match.start()], None
        if match.group('skip') is not None:
            yield 'text', match.group(0), None
        else:
            number = match.groupdict().get('number')
            yield 'marker', match.group(0), int(number) if number is not None else None
        position = match.end()
    if position < len(sql):
        yield 'text', sql[position:], None


def count_placeholders(
    sql: str,
    style: PlaceholderStyle = PlaceholderStyle.QMARK,
    quotes: str = '"\''
) -> int:
    """Count markers of ``style`` outside quoted text and comments.

    Args:
        sql: SQL text
        style: Placeholder style to count
        quotes: Quote characters that delimit literals/identifiers

    Returns:
        Number of markers
    """
    return sum(1 for kind, _, _ in _tokens(sql, style, quotes) if kind == 'marker')


def native_marker(style: PlaceholderStyle, index: int) -> str:
    """Render the ``index``-th (0-based) marker in a dialect-native style."""
    if style is PlaceholderStyle.DOLLAR:
        return f"${index + 1}"
    if style is PlaceholderStyle.AT_PARAM:
        return f"@param{index}"
    if style is PlaceholderStyle.COLON_NUMERIC:
        return f":{index + 1}"
    return '?'


def rewrite_placeholders(
    sql: str,
    style: PlaceholderStyle,
    quotes: str = '"\''
) -> str:
    """Rewrite canonical ``?`` markers into dialect-native markers.

    Markers are numbered left to right; quoted text and comments are left
    untouched.

    Args:
        sql: SQL text with canonical markers
        style: Target placeholder style
        quotes: Quote characters of the target dialect

    Returns:
        SQL text with native markers
    """
    if style is PlaceholderStyle.QMARK:
        return sql

    parts: List[str] = []
    index = 0
    for kind, text, _ in _tokens(sql, PlaceholderStyle.QMARK, quotes):
        if kind == 'marker':
            parts.append(native_marker(style, index))
            index += 1
        else:
            parts.append(text)
    return ''.join(parts)


def _binding_index(style: PlaceholderStyle, number: Optional[int], ordinal: int) -> int:
    if style is PlaceholderStyle.QMARK or number is None:
        return ordinal
    if style is PlaceholderStyle.AT_PARAM:
        return number
    return number - 1


def to_driver_paramstyle(
    sql: str,
    style: PlaceholderStyle,
    bindings: Sequence[Any],
    paramstyle: str,
    quotes: str = '"\''
) -> Tuple[str, Union[Tuple[Any, ...], Dict[str, Any], None]]:
    """Convert dialect-native markers into the DBAPI driver's paramstyle.

    The native text is what callers see (debug log, QueryError); this
    conversion happens at the driver boundary only.

    Args:
        sql: SQL text with native markers
        style: Native placeholder style of ``sql``
        bindings: Ordered binding values
        paramstyle: PEP 249 paramstyle of the driver
            ('qmark', 'numeric', 'named', 'format', 'pyformat')
        quotes: Quote characters of the dialect

    Returns:
        Tuple of (driver SQL, driver parameters); parameters are None when
        there are no bindings, in which case the SQL is returned unchanged
    """
    if not bindings:
        return sql, None

    parts: List[str] = []
    ordered: List[Any] = []
    named: Dict[str, Any] = {}
    ordinal = 0

    for kind, text, number in _tokens(sql, style, quotes):
        if kind == 'text':
            parts.append(text.replace('%', '%%') if paramstyle in ('format', 'pyformat') else text)
            continue

        value = bindings[_binding_index(style, number, ordinal)]
        ordinal += 1
        if paramstyle == 'qmark':
            parts.append('?')
        elif paramstyle == 'numeric':
            parts.append(f":{ordinal}")
        elif paramstyle == 'named':
            parts.append(f":p{ordinal}")
            named[f"p{ordinal}"] = value
            continue
        else:
            parts.append('%s')
        ordered.append(value)

    if paramstyle == 'named':
        return ''.join(parts), named
    return ''.join(parts), tuple(ordered)

