"""
Verdicts produced by the admission-control engine.

Callers branch on the verdict type:
    Admit            -> sanitize and broadcast the message
    Reject           -> notify the sender only (unless the rejection is silent)
    BanAndDisconnect -> install the ban, notify the sender, close the connection
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ReasonCode(str, Enum):
    """Stable reason codes surfaced to clients."""
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TEMP_BANNED = "TEMP_BANNED"
    TOO_LONG = "TOO_LONG"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    UNKNOWN_MESSAGE_TYPE = "UNKNOWN_MESSAGE_TYPE"


@dataclass(frozen=True)
class Admit:
    """The connection or message is accepted."""


@dataclass(frozen=True)
class Reject:
    """
    A refused connection attempt or message.

    Attributes:
        reason (ReasonCode): Why the request was refused.
        violation_count (Optional[int]): Client's violation count after a rate-limit rejection.
        retry_after (Optional[float]): Seconds until a ban lifts, for TEMP_BANNED.
        silent (bool): True when the sender should not be notified at all.
    """
    reason: ReasonCode
    violation_count: Optional[int] = None
    retry_after: Optional[float] = None
    silent: bool = False


@dataclass(frozen=True)
class BanAndDisconnect:
    """The client crossed the ban threshold; `address` must be banned for `duration` seconds."""
    address: str
    duration: float


ADMIT = Admit()

ConnectionVerdict = Union[Admit, Reject]
MessageVerdict = Union[Admit, Reject, BanAndDisconnect]
