"""32-byte word handling for ABI-less log decoding.

Every heuristic in this package operates on one flat sequence of words: the
log's topics followed by its data payload cut into 32-byte chunks.
"""

from __future__ import annotations

from collections.abc import Sequence

from beartype import beartype
from eth_abi import decode
from eth_abi.exceptions import DecodingError

from src.decoding.models import LogRecord
from src.utils.config import SAFE_INT_CEILING

WORD_HEX_CHARS = 64
_UINT256_MAX = 2**256 - 1


def _normalize_topic(topic: str) -> str:
    body = topic.lower()
    if body.startswith("0x"):
        body = body[2:]
    return "0x" + body.rjust(WORD_HEX_CHARS, "0")


@beartype
def split_data_words(data: str) -> list[str]:
    """
    Cut a hex data payload into 32-byte words.

    A trailing chunk shorter than 32 bytes is dropped rather than padded.

    Args:
        data: Hex string, with or without 0x prefix

    Returns:
        List of lowercase 0x-prefixed 64-hex-char words
    """
    body = data[2:] if data.startswith(("0x", "0X")) else data
    body = body.lower()
    return [
        "0x" + body[i : i + WORD_HEX_CHARS]
        for i in range(0, len(body) - WORD_HEX_CHARS + 1, WORD_HEX_CHARS)
    ]


@beartype
def extract_words(log: LogRecord) -> list[str]:
    """Flatten a log into topics (lowercased) followed by its data words."""
    return [_normalize_topic(topic) for topic in log.topics] + split_data_words(log.data)


@beartype
def identifier_word(identifier: int) -> str:
    """Encode an identifier as a left-padded big-endian uint256 word."""
    if identifier < 0 or identifier > _UINT256_MAX:
        raise ValueError(f"Identifier out of uint256 range: {identifier}")
    return "0x" + format(identifier, f"0{WORD_HEX_CHARS}x")


@beartype
def locate_identifier(words: Sequence[str], target_word: str) -> list[int]:
    """
    Find every position of a target word in a word sequence.

    Args:
        words: Word sequence from extract_words
        target_word: Canonical identifier word

    Returns:
        Positions in ascending order; empty when the identifier is absent
    """
    target = target_word.lower()
    return [index for index, word in enumerate(words) if word == target]


@beartype
def word_to_int(word: str) -> int:
    """Decode a word as an unsigned 256-bit integer."""
    return decode(["uint256"], bytes.fromhex(word[2:]))[0]


@beartype
def word_to_small_int(word: str, ceiling: int = SAFE_INT_CEILING) -> int | None:
    """
    Decode a word as a small non-negative integer.

    Returns:
        The value, or None when it exceeds the ceiling or the word is malformed
    """
    try:
        value = word_to_int(word)
    except (ValueError, DecodingError):
        return None
    return value if value <= ceiling else None


@beartype
def address_from_word(word: str) -> str:
    """Take the low 20 bytes of a word as a lowercase address."""
    return "0x" + word[-40:].lower()
