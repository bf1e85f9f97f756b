"""ERC-20 Transfer log decoding.

Transfer(address indexed from, address indexed to, uint256 value):
 - topics[0] is the event signature hash
 - topics[1] / topics[2] hold the left-padded sender / recipient
 - data holds the 32-byte big-endian value
"""
from __future__ import annotations
from typing import Optional

from stable_radar.core.custom_types import DecodedTransfer, RawLog

# Standard ERC-20 Transfer signature
ERC20_TRANSFER_SIG = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'

_WORD_HEX_LEN = 64


class DecodeError(ValueError):
    """A raw log that cannot be read as an ERC-20 Transfer."""

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message)
        self.transaction_id = transaction_id


def _word(value: Optional[str], what: str, tx: Optional[str]) -> str:
    if not isinstance(value, str) or not value.startswith('0x'):
        raise DecodeError(f"{what} is not a hex string: {value!r}", tx)
    body = value[2:]
    if len(body) != _WORD_HEX_LEN:
        raise DecodeError(f"{what} must be 32 bytes, got {len(body) // 2}", tx)
    try:
        int(body, 16)
    except ValueError as e:
        raise DecodeError(f"{what} is not valid hex", tx) from e
    return body.lower()


def _address_topic(topic: Optional[str], what: str, tx: Optional[str]) -> str:
    body = _word(topic, what, tx)
    if body[:24].strip('0'):
        raise DecodeError(f"{what} has non-zero padding", tx)
    return '0x' + body[-40:]


def decode(log: RawLog) -> DecodedTransfer:
    """Decode one Transfer log; raises DecodeError on anything malformed."""
    tx = log.transaction_id
    if not isinstance(log.topics, (tuple, list)):
        raise DecodeError(f"topics is not a list: {log.topics!r}", tx)
    topics = tuple(t for t in log.topics if t)
    if len(topics) != 3:
        raise DecodeError(f"expected 3 topics, got {len(topics)}", tx)
    if not isinstance(topics[0], str) or topics[0].lower() != ERC20_TRANSFER_SIG:
        raise DecodeError(f"unexpected event signature {topics[0]}", tx)
    sender = _address_topic(topics[1], 'from topic', tx)
    recipient = _address_topic(topics[2], 'to topic', tx)
    data = log.data or '0x'
    if not isinstance(data, str):
        raise DecodeError(f"data is not a hex string: {data!r}", tx)
    if not data.startswith('0x') or len(data) < 2 + _WORD_HEX_LEN:
        raise DecodeError("data too short for uint256 value", tx)
    value = int(_word('0x' + data[2:2 + _WORD_HEX_LEN], 'value', tx), 16)
    return DecodedTransfer(sender=sender, recipient=recipient, amount_raw=str(value))


__all__ = ['decode', 'DecodeError', 'ERC20_TRANSFER_SIG']
