"""
Decode the VestingEvent carried by a Contracts.ContractEmitted event.

event.data is [contract, raw]; raw is the SCALE `Bytes` value as emitted
(compact length prefix included). After the first 32 bytes:
  payload[2] -> 0 = Success::*, 1 = Error::*
  payload[3] -> index into the matching outcome table
"""

from typing import Any, Sequence, Tuple

from eth_utils import decode_hex, is_hex

from vested_uploader.errors import InvalidEventFormat, InvalidEventPayload
from vested_uploader.models import OutcomeKind, SubmissionOutcome
from vested_uploader.variables import (
    ERROR_DISCRIMINANT,
    ERROR_PREFIX,
    SUCCESS_DISCRIMINANT,
    SUCCESS_PREFIX,
    TOPIC_LENGTH,
    error_labels,
    success_labels,
)

OUTCOME_TABLES = {
    SUCCESS_DISCRIMINANT: (OutcomeKind.SUCCESS, SUCCESS_PREFIX, success_labels),
    ERROR_DISCRIMINANT: (OutcomeKind.CONTRACT_ERROR, ERROR_PREFIX, error_labels),
}


# ---------- Utils ----------
def to_raw_bytes(raw: Any) -> bytes:
    """Bytes-like, 0x-hex string or iterable of ints -> bytes."""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        if not is_hex(raw):
            raise InvalidEventPayload(f"Event payload is not hex: {raw!r}")
        return decode_hex(raw)
    if isinstance(raw, int):
        raise InvalidEventPayload("Event payload must be a byte sequence, got int")
    try:
        return bytes(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidEventPayload(f"Unsupported event payload type: {type(raw).__name__}") from exc


def _classify(event_data: Sequence[Any]) -> Tuple[OutcomeKind, str]:
    if not event_data or len(event_data) < 2:
        raise InvalidEventFormat("Invalid event data format")

    _subject, raw = event_data[0], event_data[1]
    payload = to_raw_bytes(raw)[TOPIC_LENGTH:]
    if len(payload) < 4:
        raise InvalidEventPayload(f"Event payload too short: {len(payload)} bytes after topic")

    discriminant, index = payload[2], payload[3]
    if discriminant not in OUTCOME_TABLES:
        raise InvalidEventPayload("Invalid event payload")

    kind, prefix, labels = OUTCOME_TABLES[discriminant]
    if index >= len(labels):
        raise InvalidEventPayload(f"Outcome index {index} out of range for {prefix}")
    return kind, f"{prefix}::{labels[index]}"


# ---------- Public API ----------
def decode(event_data: Sequence[Any]) -> str:
    """Return the outcome label, e.g. "Success::VestedBalanceAdded"."""
    return _classify(event_data)[1]


def decode_outcome(event_data: Sequence[Any]) -> SubmissionOutcome:
    kind, label = _classify(event_data)
    return SubmissionOutcome(kind=kind, label=label)
