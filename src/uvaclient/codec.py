"""Wire codec for the analyzer protocol.

Requests are two newline-terminated paths. Responses are one JSON object,
delimited either by the stream itself (whatever the analyzer flushed), by an
8-character hexadecimal length header, or by process exit for one-shot runs.
All three decode into the same ``AnalysisResult``.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable

from uvaclient.errors import MalformedElement, ProtocolError, StreamClosed
from uvaclient.models import (
    SYMBOL_KIND,
    AnalysisResult,
    Declaration,
    LintError,
    LintWarning,
    Location,
    Position,
    Reference,
    Token,
    TokenLocation,
)

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
CHUNK_SIZE = 65536

_HEADER_PATTERN = re.compile(rb"[0-9a-fA-F]{8}")
_LITERALS = ("true", "false", "null", "NaN", "Infinity", "-Infinity")
# Longest token that can still be incomplete at the buffer end, e.g. `\u00e` or `1.5e-`
_PENDING_TOKEN_SIZE = 6


def encode_request(original_path: str, handoff_path: str) -> bytes:
    """Encode an analysis request for the persistent server."""
    return f"{original_path}\n{handoff_path}\n".encode("utf-8")


def _int_field(obj: dict, key: str, default: int | None = None) -> int:
    value = obj.get(key)
    if value is None and default is not None:
        return default
    # bool is an int subclass but never a valid position
    if not isinstance(value, int) or isinstance(value, bool):
        raise MalformedElement(f"field '{key}' must be an integer, got {value!r}")
    return value


def _str_field(obj: dict, key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise MalformedElement(f"field '{key}' must be a string, got {value!r}")
    return value


def _optional_str(obj: dict, *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise MalformedElement(f"{what} must be an object, got {type(value).__name__}")
    return value


def decode_location(obj: Any) -> Location:
    obj = _object(obj, "location")
    try:
        return Location(
            file=_str_field(obj, "file"),
            line=_int_field(obj, "line"),
            column=_int_field(obj, "column"),
            offset=_int_field(obj, "offset"),
            length=_int_field(obj, "length", default=0),
        )
    except ValueError as e:
        raise MalformedElement(str(e)) from e


def _decode_position(obj: Any) -> Position:
    obj = _object(obj, "position")
    return Position(line=_int_field(obj, "line"), column=_int_field(obj, "column"))


def decode_declaration(obj: Any) -> tuple[Declaration, list[Reference]]:
    """Convert a declaration entry.

    The earliest analyzer nested reference locations inside each
    declaration; those are flattened into ``Reference`` objects carrying the
    declaration's name and kind.
    """
    obj = _object(obj, "declaration")
    name = _str_field(obj, "name")
    raw_location = obj.get("location")
    location = decode_location(raw_location) if raw_location is not None else None
    kind = _optional_str(obj, "kind", "type")

    references = []
    for raw_reference in obj.get("references") or []:
        try:
            references.append(
                Reference(
                    name=name,
                    kind=kind or SYMBOL_KIND,
                    location=decode_location(raw_reference),
                )
            )
        except MalformedElement as e:
            logger.warning(f"Skipping malformed reference of '{name}': {e}")

    return Declaration(name=name, location=location, kind=kind), references


def _kind_or_symbol(obj: dict) -> str:
    kind = _optional_str(obj, "kind", "type")
    return SYMBOL_KIND if kind is None else kind


def decode_reference(obj: Any) -> Reference:
    obj = _object(obj, "reference")
    return Reference(
        name=_str_field(obj, "name"),
        kind=_kind_or_symbol(obj),
        location=decode_location(obj.get("location")),
    )


def _decode_lint(obj: Any, cls: type) -> LintWarning | LintError:
    obj = _object(obj, "linter entry")
    return cls(
        message=_str_field(obj, "message"),
        kind=_optional_str(obj, "type", "kind") or "",
        location=decode_location(obj.get("location")),
    )


def decode_token(obj: Any) -> Token:
    obj = _object(obj, "token")
    kind = _optional_str(obj, "type", "kind")
    if kind is None:
        raise MalformedElement("token has no type")
    location = _object(obj.get("location"), "token location")
    return Token(
        kind=kind,
        modifier=_optional_str(obj, "modifier"),
        location=TokenLocation(
            file=_str_field(location, "file"),
            start=_decode_position(location.get("start")),
            end=_decode_position(location.get("end")),
        ),
    )


def _convert_all(items: Any, converter: Callable[[Any], Any], label: str) -> list:
    """Convert each entry independently, skipping the ones that fail."""
    if items is None:
        return []
    if not isinstance(items, list):
        logger.warning(f"Ignoring '{label}': expected a list, got {type(items).__name__}")
        return []

    converted = []
    for index, item in enumerate(items):
        try:
            converted.append(converter(item))
        except MalformedElement as e:
            logger.warning(f"Skipping malformed {label} entry #{index}: {e}")
    return converted


def decode_payload(payload: Any) -> AnalysisResult:
    """Map a decoded JSON response onto an ``AnalysisResult``.

    Raises:
        ProtocolError: If the payload is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise ProtocolError(f"response must be a JSON object, got {type(payload).__name__}")

    declarations = []
    references = []
    for declaration, nested in _convert_all(
        payload.get("declarations"), decode_declaration, "declaration"
    ):
        declarations.append(declaration)
        references.extend(nested)
    references.extend(
        _convert_all(payload.get("references"), decode_reference, "reference")
    )

    elapsed = payload.get("elapsed")
    if not isinstance(elapsed, (int, float)) or isinstance(elapsed, bool):
        elapsed = None

    return AnalysisResult(
        declarations=tuple(declarations),
        references=tuple(references),
        tokens=tuple(_convert_all(payload.get("tokens"), decode_token, "token")),
        warnings=tuple(
            _convert_all(
                payload.get("linter"), lambda item: _decode_lint(item, LintWarning), "linter"
            )
        ),
        errors=tuple(
            _convert_all(
                payload.get("errors"), lambda item: _decode_lint(item, LintError), "error"
            )
        ),
        elapsed=elapsed,
    )


def _encode_location(location: Location) -> dict:
    return {
        "file": location.file,
        "line": location.line,
        "column": location.column,
        "offset": location.offset,
        "length": location.length,
    }


def _encode_lint(entry: LintWarning | LintError) -> dict:
    return {
        "message": entry.message,
        "type": entry.kind,
        "location": _encode_location(entry.location),
    }


def encode_payload(result: AnalysisResult) -> dict:
    """Inverse of ``decode_payload``, in the newest response shape."""
    payload = {
        "declarations": [
            {
                "name": d.name,
                "kind": d.kind,
                "location": _encode_location(d.location) if d.location else None,
            }
            for d in result.declarations
        ],
        "references": [
            {"name": r.name, "kind": r.kind, "location": _encode_location(r.location)}
            for r in result.references
        ],
        "linter": [_encode_lint(w) for w in result.warnings],
        "errors": [_encode_lint(e) for e in result.errors],
        "tokens": [
            {
                "type": t.kind,
                "modifier": t.modifier,
                "location": {
                    "file": t.location.file,
                    "start": {"line": t.location.start.line, "column": t.location.start.column},
                    "end": {"line": t.location.end.line, "column": t.location.end.column},
                },
            }
            for t in result.tokens
        ],
    }
    if result.elapsed is not None:
        payload["elapsed"] = result.elapsed
    return payload


def _loads(body: bytes) -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Error parsing JSON: {e}")
        logger.debug(f"Data: {body[:200]!r}")
        raise ProtocolError(f"invalid JSON in response: {e}") from e


def _is_truncated(text: str, error: json.JSONDecodeError) -> bool:
    """Tell whether a decode error is just the object not having arrived yet."""
    if len(text) - error.pos <= _PENDING_TOKEN_SIZE:
        return True
    if error.msg.startswith("Unterminated string"):
        return True
    # A literal cut off mid-word, e.g. `{"ok": tr`
    tail = text[error.pos:]
    return error.msg == "Expecting value" and any(
        literal.startswith(tail) for literal in _LITERALS
    )


class Framing(ABC):
    """How one response message is delimited on the analyzer's output."""

    name: str = ""

    @abstractmethod
    def read_response(self, stream: BinaryIO) -> Any:
        """Read one response from the stream and return the decoded JSON.

        Raises:
            ProtocolError: If the response cannot be framed or parsed.
            StreamClosed: If the stream ends before the response is complete.
        """

    @abstractmethod
    def encode_response(self, payload: dict) -> bytes:
        """Frame a JSON payload the way the analyzer writes it."""

    def decode(self, stream: BinaryIO) -> AnalysisResult:
        return decode_payload(self.read_response(stream))


class StreamFraming(Framing):
    """Framing A: a bare JSON object, bounded only by its own syntax.

    Chunks are accumulated until one complete object parses, so a response
    split across several pipe reads is still decoded.
    """

    name = "stream"

    def read_response(self, stream: BinaryIO) -> Any:
        read = getattr(stream, "read1", stream.read)
        decoder = json.JSONDecoder()
        buffer = b""

        while True:
            chunk = read(CHUNK_SIZE)
            if not chunk:
                raise StreamClosed(
                    f"analyzer output closed after {len(buffer)} bytes of response"
                )
            buffer += chunk

            try:
                text = buffer.decode("utf-8")
            except UnicodeDecodeError as e:
                if e.reason == "unexpected end of data":
                    continue
                logger.error(f"Error decoding response: {e}")
                raise ProtocolError(f"response is not valid UTF-8: {e}") from e

            text = text.lstrip()
            if not text:
                continue

            try:
                payload, end = decoder.raw_decode(text)
            except json.JSONDecodeError as e:
                if _is_truncated(text, e):
                    continue
                logger.error(f"Error parsing JSON: {e}")
                logger.debug(f"Data: {text[:200]}")
                raise ProtocolError(f"invalid JSON in response: {e}") from e

            trailing = text[end:].strip()
            if trailing:
                logger.warning(f"Discarding {len(trailing)} characters after response")
            return payload

    def encode_response(self, payload: dict) -> bytes:
        return json.dumps(payload).encode("utf-8")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes, looping over short reads."""
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise StreamClosed(f"expected {size} bytes, stream ended after {len(data)}")
        data += chunk
    return data


def parse_length_header(header: bytes) -> int:
    if not _HEADER_PATTERN.fullmatch(header):
        raise ProtocolError(f"invalid length header: {header!r}")
    return int(header, 16)


class LengthPrefixedFraming(Framing):
    """Framing B: ``<8 hex digits><exactly that many bytes of JSON>``."""

    name = "length-prefixed"

    def read_response(self, stream: BinaryIO) -> Any:
        try:
            header = _read_exact(stream, HEADER_SIZE)
        except StreamClosed as e:
            raise StreamClosed(f"missing length header: {e}") from e
        length = parse_length_header(header)
        return _loads(_read_exact(stream, length))

    def encode_response(self, payload: dict) -> bytes:
        body = json.dumps(payload).encode("utf-8")
        return f"{len(body):08x}".encode("ascii") + body


FRAMINGS: dict[str, type[Framing]] = {
    StreamFraming.name: StreamFraming,
    LengthPrefixedFraming.name: LengthPrefixedFraming,
}


def get_framing(name: str) -> Framing:
    """Get the framing registered under ``name``.

    Raises:
        ValueError: If no framing has that name.
    """
    try:
        return FRAMINGS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown framing: {name}. Expected one of {', '.join(FRAMINGS)}"
        ) from None


def decode_frame(data: bytes) -> AnalysisResult:
    """Decode one complete length-prefixed buffer.

    Raises:
        ProtocolError: If the header is missing or invalid, or its value does
            not match the number of bytes that follow it.
    """
    if len(data) < HEADER_SIZE:
        raise ProtocolError(f"missing length header: only {len(data)} bytes")
    length = parse_length_header(data[:HEADER_SIZE])
    body = data[HEADER_SIZE:]
    if len(body) != length:
        raise ProtocolError(
            f"length header announces {length} bytes but {len(body)} are available"
        )
    return decode_payload(_loads(body))


def decode_document(raw: bytes) -> AnalysisResult:
    """Decode the full output of a one-shot run; process exit delimits it."""
    if not raw.strip():
        return AnalysisResult.empty()
    return decode_payload(_loads(raw))
