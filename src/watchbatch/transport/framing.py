"""Watchman JSON protocol framing.

Watchman's JSON encoding sends one PDU per line:

    ["subscribe", "/root", "name", {...}]\n
    {"version": "2023.01.30.00", "subscribe": "name", "clock": "c:1:2"}\n

Requests are JSON arrays (command name first). Responses and unilateral
notifications are JSON objects. A unilateral PDU carries ``unilateral: true``
or a ``subscription``/``log`` key and is not a reply to any request.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from watchbatch.errors import FramingError

PDU_SEPARATOR = b"\n"
CONTENT_ENCODING = "utf-8"
DEFAULT_MAX_PDU_SIZE = 64 * 1024 * 1024


def encode_command(args: Sequence[Any]) -> bytes:
    """Serialize a command to one newline-terminated JSON line.

    Raises:
        FramingError: If the command is empty or not JSON-serializable.
    """
    if not args:
        raise FramingError("Cannot encode an empty command")
    try:
        body = json.dumps(list(args), separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise FramingError(f"Command cannot be serialized to JSON: {e}") from e
    return body.encode(CONTENT_ENCODING) + PDU_SEPARATOR


def decode_pdu(line: bytes) -> dict[str, Any]:
    """Parse one PDU line (with or without its trailing newline).

    Raises:
        FramingError: If the line is not a UTF-8 JSON object.
    """
    try:
        text = line.decode(CONTENT_ENCODING)
    except UnicodeDecodeError as e:
        raise FramingError(f"Invalid UTF-8 in PDU: {e}") from e

    try:
        pdu = json.loads(text)
    except json.JSONDecodeError as e:
        raise FramingError(f"Invalid JSON in PDU: {e}") from e

    if not isinstance(pdu, dict):
        raise FramingError(f"PDU must be an object, got {type(pdu).__name__}")
    return pdu


async def read_pdu(
    reader: asyncio.StreamReader,
    *,
    max_pdu_size: int = DEFAULT_MAX_PDU_SIZE,
) -> dict[str, Any] | None:
    """Read a single PDU from the stream.

    Returns:
        The parsed PDU, or None on a clean EOF between PDUs.

    Raises:
        FramingError: On a truncated, oversized, or malformed PDU.
    """
    try:
        line = await reader.readuntil(PDU_SEPARATOR)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise FramingError("Unexpected EOF in the middle of a PDU") from e
    except asyncio.LimitOverrunError as e:
        raise FramingError(f"PDU exceeds the stream buffer limit: {e}") from e

    if len(line) > max_pdu_size:
        raise FramingError(f"PDU size {len(line)} exceeds maximum {max_pdu_size}")

    return decode_pdu(line)


def is_unilateral(pdu: dict[str, Any]) -> bool:
    """Whether ``pdu`` is an unsolicited notification rather than a reply."""
    return bool(pdu.get("unilateral")) or "subscription" in pdu or "log" in pdu
