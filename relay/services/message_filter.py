# services/message_filter.py
import html
from typing import Optional

from services.verdicts import ReasonCode, Reject

_INVALID = Reject(ReasonCode.INVALID_MESSAGE, silent=True)


def validate_message(text, max_length: int) -> Optional[Reject]:
    """
    Check the shape of a chat message before it reaches the rate limiter.

    Shape problems are never charged as violations.

    Args:
        text: The message payload as received; anything but a str is invalid.
        max_length (int): Longest message accepted, measured on the raw text.

    Returns:
        Optional[Reject]: None if the message is acceptable, a silent
        Reject(INVALID_MESSAGE) for non-text or blank messages, or
        Reject(TOO_LONG) for over-length messages.
    """
    if not isinstance(text, str) or not text.strip():
        return _INVALID
    if len(text) > max_length:
        return Reject(ReasonCode.TOO_LONG)
    return None


def sanitize_message(text: str) -> str:
    """
    Trim `text` and encode HTML special characters (including quotes) as entities.
    """
    return html.escape(text.strip(), quote=True)
