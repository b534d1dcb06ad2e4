"""Decoding of Clarity-serialized contract-call arguments.

Only the value types that appear in SIP-010 ``transfer`` calls are handled:
``uint`` amounts, principals (via their ``repr``), and the optional buffer
memo. Every serialized value starts with a one-byte type tag.
"""
from __future__ import annotations

from dataclasses import dataclass

TYPE_INT = "00"
TYPE_UINT = "01"
TYPE_BUFFER = "02"
TYPE_OPTIONAL_NONE = "09"
TYPE_OPTIONAL_SOME = "0a"
TYPE_STRING_ASCII = "0d"
TYPE_STRING_UTF8 = "0e"

# buffers and strings carry a 4-byte big-endian length after the tag
_LENGTH_PREFIXED = {TYPE_BUFFER, TYPE_STRING_ASCII, TYPE_STRING_UTF8}
_LENGTH_HEX_CHARS = 8


def _strip_hex(value: str) -> str:
    value = value.strip().lower()
    return value[2:] if value.startswith("0x") else value


def decode_uint(hex_value: str) -> int:
    """Decode a serialized ``uint`` (tag ``0x01`` + 16-byte big-endian value)."""
    body = _strip_hex(hex_value)
    if not body.startswith(TYPE_UINT) or len(body) <= 2:
        raise ValueError(f"Not a Clarity uint: {hex_value!r}")
    return int(body[2:], 16)


def decode_uint_repr(repr_value: str) -> int:
    """Decode the explorer's ``repr`` form of a uint (``u50000``)."""
    text = repr_value.strip()
    if not text.startswith("u") or not text[1:].isdigit():
        raise ValueError(f"Not a Clarity uint repr: {repr_value!r}")
    return int(text[1:])


def decode_principal_repr(repr_value: str) -> str:
    """Principal reprs come quoted (``'SP...``); return the bare address."""
    return repr_value.strip().lstrip("'").rstrip("'")


def decode_memo(hex_value: str | None) -> str | None:
    """Decode an ``(optional (buff N))`` memo into text.

    The optional wrapper and buffer type/length prefix are stripped before
    the bytes are decoded as UTF-8; null bytes are skipped. Returns None for
    ``none`` or an absent argument.
    """
    if not hex_value:
        return None
    body = _strip_hex(hex_value)
    if not body or body.startswith(TYPE_OPTIONAL_NONE):
        return None
    if body.startswith(TYPE_OPTIONAL_SOME):
        body = body[2:]
    if body[:2] in _LENGTH_PREFIXED:
        body = body[2 + _LENGTH_HEX_CHARS:]
    if len(body) % 2:
        body = body[:-1]
    raw = bytes.fromhex(body)
    return raw.replace(b"\x00", b"").decode("utf-8", errors="replace")


@dataclass(frozen=True)
class TransferCall:
    """A decoded SIP-010 ``transfer(amount, sender, recipient, memo)`` call."""

    tx_id: str
    amount: int
    sender: str
    recipient: str
    memo: str | None

    def memo_contains(self, needle: str) -> bool:
        return self.memo is not None and needle in self.memo
