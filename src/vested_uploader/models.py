from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence


@dataclass(frozen=True)
class VestingRow:
    """One CSV record to submit as an add_vested_balance call."""

    sequence_number: str
    address: str
    amount: str

    @classmethod
    def from_record(cls, number: Any, address: Any, balance: Any) -> "VestingRow":
        return cls(
            sequence_number=str(number).strip(),
            address=str(address if address is not None else "").strip(),
            amount=str(balance).replace('"', "").strip(),
        )


class OutcomeKind(enum.Enum):
    SUCCESS = "Success"
    CONTRACT_ERROR = "ContractError"
    TRANSPORT_OR_TIMEOUT_FAILURE = "TransportOrTimeoutFailure"


@dataclass(frozen=True)
class SubmissionOutcome:
    kind: OutcomeKind
    label: Optional[str] = None

    @classmethod
    def transport_failure(cls) -> "SubmissionOutcome":
        return cls(OutcomeKind.TRANSPORT_OR_TIMEOUT_FAILURE)

    def __str__(self) -> str:
        return self.label if self.label is not None else self.kind.value


@dataclass(frozen=True)
class ChainEvent:
    """A runtime event; `data` is `[emitting_contract, raw_bytes]` for ContractEmitted."""

    section: str
    method: str
    data: Sequence[Any] = ()


@dataclass(frozen=True)
class StatusUpdate:
    status: str
    events: List[ChainEvent] = field(default_factory=list)
    dispatch_error: Optional[Any] = None
