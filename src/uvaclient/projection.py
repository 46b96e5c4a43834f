"""Turn an ``AnalysisResult`` into the artifacts an editor host renders.

Everything is recomputed from scratch on each call; nothing is diffed
against a previous projection.

Editor hosts call ``styled_decorations`` with their own style handles and
``DocumentIndex`` to convert offsets; the ``uvac`` CLI uses the index and
``definition_range`` for its definition lookups.
"""

import bisect
import re
from dataclasses import dataclass, field
from typing import Any

from uvaclient.models import (
    SYMBOL_KIND,
    AnalysisResult,
    Declaration,
    LintError,
    LintWarning,
    Location,
    Position,
)

DECORATION_KINDS = ("class", "function", "variable", SYMBOL_KIND)

WARNING = "warning"
ERROR = "error"

_WORD = re.compile(r"\w+")


@dataclass(frozen=True)
class Span:
    """Half-open offset range ``[start, end)`` into the document text."""
    start: int
    end: int


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position


@dataclass(frozen=True)
class Diagnostic:
    file: str
    message: str
    severity: str  # WARNING or ERROR
    kind: str
    range: Range


@dataclass(frozen=True)
class SemanticToken:
    kind: str
    modifier: str | None
    range: Range


@dataclass
class Projection:
    """All view artifacts for one focused document."""
    decorations: dict[str, list[Span]]
    diagnostics: dict[str, list[Diagnostic]]
    tokens: list[SemanticToken]


class DocumentIndex:
    """Offset to line/column translation for one document snapshot."""

    def __init__(self, text: str):
        self.text = text
        self._line_starts = [0]
        for match in re.finditer("\n", text):
            self._line_starts.append(match.end())

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self.text)))
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return Position(line=line, column=offset - self._line_starts[line])

    def span_to_range(self, span: Span) -> Range:
        return Range(start=self.position_at(span.start), end=self.position_at(span.end))

    def word_at(self, offset: int) -> str | None:
        """The identifier touching ``offset``, if any."""
        for match in _WORD.finditer(self.text):
            if match.start() <= offset <= match.end():
                return match.group()
            if match.start() > offset:
                break
        return None


@dataclass
class DecorationStyles:
    """Host-owned style handles keyed by decoration kind.

    The host creates its decoration types once and passes them in; the
    projection never holds styles of its own.
    """
    handles: dict[str, Any] = field(default_factory=dict)

    def for_kind(self, kind: str) -> Any | None:
        if kind in self.handles:
            return self.handles[kind]
        return self.handles.get(SYMBOL_KIND)


def _bucket(kind: str | None) -> str:
    return kind if kind in DECORATION_KINDS else SYMBOL_KIND


def _name_span(location: Location, name: str) -> Span:
    return Span(start=location.offset, end=location.offset + len(name))


def decoration_spans(result: AnalysisResult, document_path: str) -> dict[str, list[Span]]:
    """Group declaration and reference spans of the focused file by kind.

    Entries located in other files are left out; they only matter for
    definition lookup. Declarations without a location are skipped.
    """
    spans: dict[str, list[Span]] = {kind: [] for kind in DECORATION_KINDS}

    for declaration in result.declarations:
        location = declaration.location
        if location is None or location.file != document_path:
            continue
        spans[_bucket(declaration.kind)].append(_name_span(location, declaration.name))

    for reference in result.references:
        if reference.location.file != document_path:
            continue
        spans[_bucket(reference.kind)].append(_name_span(reference.location, reference.name))

    return spans


def styled_decorations(
    spans: dict[str, list[Span]],
    styles: DecorationStyles
) -> list[tuple[Any, list[Span]]]:
    """Pair each style handle with the spans it should paint.

    Kinds without their own handle fall back to the ``symbol`` handle; kinds
    with no handle at all are dropped.
    """
    grouped: dict[int, tuple[Any, list[Span]]] = {}
    for kind in DECORATION_KINDS:
        handle = styles.for_kind(kind)
        if handle is None:
            continue
        _, ranges = grouped.setdefault(id(handle), (handle, []))
        ranges.extend(spans.get(kind, []))
    return list(grouped.values())


def _lint_range(location: Location) -> Range:
    # Spans crossing a line boundary are clipped to the first line
    return Range(
        start=Position(location.line, location.column),
        end=Position(location.line, location.column + location.length),
    )


def _diagnostic(entry: LintWarning | LintError, severity: str) -> Diagnostic:
    return Diagnostic(
        file=entry.location.file,
        message=entry.message,
        severity=severity,
        kind=entry.kind,
        range=_lint_range(entry.location),
    )


def diagnostics_by_file(result: AnalysisResult) -> dict[str, list[Diagnostic]]:
    """Merge lint warnings and errors into per-file diagnostic lists."""
    diagnostics: dict[str, list[Diagnostic]] = {}
    for warning in result.warnings:
        diagnostics.setdefault(warning.location.file, []).append(_diagnostic(warning, WARNING))
    for error in result.errors:
        diagnostics.setdefault(error.location.file, []).append(_diagnostic(error, ERROR))
    return diagnostics


def token_ranges(result: AnalysisResult, document_path: str) -> list[SemanticToken]:
    return [
        SemanticToken(
            kind=token.kind,
            modifier=token.modifier,
            range=Range(start=token.location.start, end=token.location.end),
        )
        for token in result.tokens
        if token.location.file == document_path
    ]


def find_declaration(result: AnalysisResult, name: str) -> Declaration | None:
    """First declaration called ``name`` that has a location."""
    for declaration in result.declarations:
        if declaration.name == name and declaration.location is not None:
            return declaration
    return None


def definition_range(declaration: Declaration) -> Range | None:
    location = declaration.location
    if location is None:
        return None
    return Range(
        start=Position(location.line, location.column),
        end=Position(location.line, location.column + len(declaration.name)),
    )


def project(result: AnalysisResult, document_path: str) -> Projection:
    return Projection(
        decorations=decoration_spans(result, document_path),
        diagnostics=diagnostics_by_file(result),
        tokens=token_ranges(result, document_path),
    )
