"""Section-structured CSV reading: START_<name>, a header, rows, END_<name>."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Iterator, List, Tuple, Union

MARKER_START = "START_"
MARKER_END = "END_"

_MAX_LINE = 1024 * 1024


class SectionError(ValueError):
    """Raised when a sectioned stream is malformed."""


@dataclass(frozen=True)
class SectionEvent:
    """One data row of a named section, with the section's header."""

    name: str
    columns: Tuple[str, ...]
    row: Tuple[str, ...]


class _State(Enum):
    OUTSIDE = auto()
    HEADER = auto()
    BODY = auto()


def _decoded_lines(stream: Iterable[Union[str, bytes]]) -> Iterator[str]:
    for raw in stream:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
        if len(line) > _MAX_LINE:
            raise ValueError("line too long")
        yield line


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV record; raises ValueError on malformed quoting."""
    fields: List[str] = []
    pos = 0
    end = len(line)
    while True:
        if pos < end and line[pos] == '"':
            pos += 1
            parts = []
            while True:
                close = line.find('"', pos)
                if close < 0:
                    raise ValueError('extraneous or missing " in quoted-field')
                parts.append(line[pos:close])
                pos = close + 1
                if pos < end and line[pos] == '"':
                    parts.append('"')
                    pos += 1
                    continue
                break
            if pos < end and line[pos] != ",":
                raise ValueError('extraneous or missing " in quoted-field')
            fields.append("".join(parts))
        else:
            comma = line.find(",", pos)
            stop = end if comma < 0 else comma
            value = line[pos:stop]
            if '"' in value:
                raise ValueError('bare " in non-quoted-field')
            fields.append(value)
            pos = stop
        if pos >= end:
            return fields
        pos += 1


def iter_sections(stream: Iterable[Union[str, bytes]]) -> Iterator[SectionEvent]:
    """Yield a SectionEvent for every row of every section in the stream."""
    state = _State.OUTSIDE
    section = ""
    columns: Tuple[str, ...] = ()

    for raw_line in _decoded_lines(stream):
        line = raw_line.strip()
        if not line:
            continue

        if state is _State.OUTSIDE:
            if line.startswith(MARKER_START):
                section = line[len(MARKER_START):]
                state = _State.HEADER
        elif state is _State.HEADER:
            try:
                columns = tuple(parse_csv_line(line))
            except ValueError as err:
                raise SectionError(f"section {section}: header: {err}") from err
            state = _State.BODY
        else:
            if line == MARKER_END + section:
                state = _State.OUTSIDE
                section = ""
                columns = ()
                continue
            try:
                row = tuple(parse_csv_line(line))
            except ValueError as err:
                raise SectionError(f"section {section}: row: {err}") from err
            if len(row) != len(columns):
                raise SectionError(
                    f"section {section}: row column count mismatch: "
                    f"expected {len(columns)}, got {len(row)}"
                )
            yield SectionEvent(name=section, columns=columns, row=row)

    if state is not _State.OUTSIDE:
        raise SectionError(f"section {section}: unclosed at end of stream")