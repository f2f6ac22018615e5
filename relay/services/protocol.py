# services/protocol.py
"""
JSON envelopes exchanged with chat clients.

Inbound:
    {"msg_type": "chat_message", "payload": {"text": "hello"}}

Outbound:
    {"message_id": ..., "timestamp": ..., "msg_type": ..., "success": bool,
     "payload": {...}, "error_code": ..., "error_message": ...}
"""
import json
import math
import logging
import uuid
from datetime import datetime
from typing import Optional, Tuple

from websockets.exceptions import ConnectionClosed

from services.verdicts import ReasonCode, Reject

logger = logging.getLogger(__name__)

CHAT_MESSAGE = "chat_message"

ERROR_MESSAGES = {
    ReasonCode.RATE_LIMIT_EXCEEDED: "You are sending messages too fast. Please slow down.",
    ReasonCode.TEMP_BANNED: "You have been temporarily banned for sending too many messages.",
    ReasonCode.TOO_LONG: "Message too long.",
    ReasonCode.INVALID_MESSAGE: "Invalid message format.",
    ReasonCode.UNKNOWN_MESSAGE_TYPE: "Unknown message type.",
}


def parse_envelope(raw) -> Tuple[Optional[str], Optional[dict]]:
    """
    Decode an inbound frame into its message type and payload.

    Args:
        raw (str | bytes): Frame as received from the transport.

    Returns:
        tuple:
            - msg_type (str) or None if the frame is not a valid envelope
            - payload (dict) or None
    """
    if not isinstance(raw, str):
        return None, None
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        # JSONDecodeError, or nesting deep enough to exhaust the decoder
        return None, None
    if not isinstance(data, dict) or not isinstance(data.get("msg_type"), str):
        return None, None
    payload = data.get("payload")
    return data["msg_type"], payload if isinstance(payload, dict) else {}


def build_message(msg_type: str, success: bool = True, payload: dict = None,
                  error_code: str = None, error_message: str = None) -> str:
    """
    Build a structured server message.

    Args:
        msg_type (str): Message type identifier.
        success (bool, optional): Operation status. Defaults to True.
        payload (dict, optional): Message data. Defaults to {}.
        error_code (str, optional): Error code on failure.
        error_message (str, optional): Error description on failure.

    Returns:
        str: JSON text ready to be sent.
    """
    message = {
        "message_id": str(uuid.uuid4()),
        "timestamp": datetime.now().isoformat(),
        "msg_type": msg_type,
        "success": success,
        "payload": payload if payload is not None else {},
    }
    if not success:
        message["error_code"] = error_code if error_code else "UNKNOWN_ERROR"
        message["error_message"] = error_message if error_message else "An unknown error occurred."
    return json.dumps(message)


def build_chat_message(text: str) -> str:
    return build_message(CHAT_MESSAGE, payload={"text": text})


def build_error(msg_type: str, reason: ReasonCode, **details) -> str:
    """
    Build an error message for `reason`, carrying any non-None `details` in the payload.
    """
    payload = {k: v for k, v in details.items() if v is not None}
    return build_message(msg_type, success=False, payload=payload,
                         error_code=reason.value, error_message=ERROR_MESSAGES[reason])


def build_rejection(msg_type: str, verdict: Reject) -> str:
    retry_after = None if verdict.retry_after is None else math.ceil(verdict.retry_after)
    return build_error(msg_type, verdict.reason,
                       violation_count=verdict.violation_count, retry_after=retry_after)


async def send_message(websocket, message: str) -> bool:
    """
    Send `message`, logging instead of raising if the connection is gone.

    Returns:
        bool: True if the message was handed to the transport.
    """
    try:
        await websocket.send(message)
        return True
    except ConnectionClosed as e:
        logger.info(f"Dropped message to closed connection: {e}")
        return False
