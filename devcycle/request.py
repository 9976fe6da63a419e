"""Encoding and decoding of HTTP request and response bodies."""

from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Mapping
from typing import Any
from xml.etree import ElementTree

__all__ = ["decode", "encode_body", "detect_content_type"]

# These deliberately mirror a permissive check: a character class followed by
# the subtype, so both "application/json" and "text/json" match.
_JSON_CHECK = re.compile(r"[application|text]/json", re.IGNORECASE)
_XML_CHECK = re.compile(r"[application|text]/xml", re.IGNORECASE)

_JSON_TYPE = "application/json; charset=utf-8"
_TEXT_TYPE = "text/plain; charset=utf-8"
_OCTET_TYPE = "application/octet-stream"

_SNIFF_LENGTH = 512
_WHITESPACE = b"\t\n\x0c\r "
_HTML_TAGS = (
    b"<!DOCTYPE HTML",
    b"<HTML",
    b"<HEAD",
    b"<SCRIPT",
    b"<IFRAME",
    b"<H1",
    b"<DIV",
    b"<FONT",
    b"<TABLE",
    b"<A",
    b"<STYLE",
    b"<TITLE",
    b"<B",
    b"<BODY",
    b"<BR",
    b"<P",
    b"<!--",
)
_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", _TEXT_TYPE),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"OggS\x00", "application/ogg"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    (b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
    (b"\x00asm", "application/wasm"),
)
_BINARY_BYTES = frozenset([*range(0x00, 0x09), 0x0B, *range(0x0E, 0x1B), *range(0x1C, 0x20)])


def decode(body: bytes | str, content_type: str) -> Any:
    """Decode a response body as XML or, failing that content type, as JSON.

    Raises ValueError when the body cannot be parsed.
    """
    if "application/xml" in content_type:
        try:
            return ElementTree.fromstring(body)
        except ElementTree.ParseError as exc:
            raise ValueError(f"invalid XML body: {exc}") from exc
    return json.loads(body)


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def encode_body(body: Any, content_type: str) -> bytes:
    """Turn a request body into bytes suitable for the given content type.

    Raises ValueError when nothing could be produced for the body.
    """
    if hasattr(body, "read"):
        data = body.read()
        if isinstance(data, str):
            data = data.encode("utf-8")
    elif isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
    elif isinstance(body, str):
        data = body.encode("utf-8")
    elif _JSON_CHECK.search(content_type):
        data = (json.dumps(body, default=_json_default) + "\n").encode("utf-8")
    elif _XML_CHECK.search(content_type):
        if not isinstance(body, ElementTree.Element):
            raise TypeError(f"cannot encode {type(body).__name__} as XML")
        data = ElementTree.tostring(body)
    else:
        data = b""

    if not data:
        raise ValueError(f"Invalid body type {content_type}")
    return data


def _is_html(data: bytes) -> bool:
    upper = data.upper()
    for tag in _HTML_TAGS:
        if upper.startswith(tag) and upper[len(tag) : len(tag) + 1] in (b" ", b">"):
            return True
    return False


def _sniff(data: bytes) -> str:
    data = data[:_SNIFF_LENGTH]
    stripped = data.lstrip(_WHITESPACE)
    if _is_html(stripped):
        return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    for prefix, mime in _SIGNATURES:
        if data.startswith(prefix):
            return mime
    if data[:4] == b"RIFF" and data[8:14] == b"WEBPVP":
        return "image/webp"
    if any(byte in _BINARY_BYTES for byte in data):
        return _OCTET_TYPE
    return _TEXT_TYPE


def detect_content_type(body: Any) -> str:
    """Pick a Content-Type header value for a request body."""
    if isinstance(body, str):
        return _TEXT_TYPE
    if isinstance(body, (bytes, bytearray, memoryview)):
        return _sniff(bytes(body))
    if isinstance(body, (Mapping, list, tuple)):
        return _JSON_TYPE
    if dataclasses.is_dataclass(body) and not isinstance(body, type):
        return _JSON_TYPE
    return _TEXT_TYPE