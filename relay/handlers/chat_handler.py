# handlers/chat_handler.py
import logging
import math
from typing import Callable, Dict

from websockets import broadcast

from constants import BAN_CLOSE_CODE
from services.admission import AdmissionController
from services.message_filter import sanitize_message
from services.protocol import (
    CHAT_MESSAGE, build_chat_message, build_error, build_rejection, send_message
)
from services.verdicts import Admit, BanAndDisconnect, ReasonCode, Reject

logger = logging.getLogger(__name__)


class ChatHandler:
    """
    Turns admission verdicts for chat messages into user-visible behaviour:
    broadcast, error notice to the sender, or ban and disconnect.
    """

    def __init__(self, admission: AdmissionController, connections: Dict[str, object],
                 broadcaster: Callable = broadcast):
        """
        Args:
            admission (AdmissionController): Decides whether each message is admitted.
            connections (Dict[str, object]): Live connections by client id; broadcast targets.
            broadcaster (Callable): Fan-out function taking (connections, message).
        """
        self.admission = admission
        self.connections = connections
        self.broadcaster = broadcaster

    async def handle_chat_message(self, websocket, client_id: str, payload: dict):
        """
        Admit, reject, or punish one chat message from `client_id`.

        Args:
            websocket: Sender's connection.
            client_id (str): Sender's registered id.
            payload (dict): Envelope payload; the message is under 'text'.

        Returns:
            The verdict that was acted on.

        Raises:
            UnknownClientError: If `client_id` is not registered.
        """
        verdict = self.admission.check_message(client_id, payload.get("text"))

        if isinstance(verdict, Admit):
            text = sanitize_message(payload["text"])
            logger.debug(f"Message from {client_id}: text={text}")
            self.broadcaster(list(self.connections.values()), build_chat_message(text))
        elif isinstance(verdict, Reject):
            if not verdict.silent:
                await send_message(websocket, build_rejection(CHAT_MESSAGE, verdict))
        elif isinstance(verdict, BanAndDisconnect):
            await send_message(websocket, build_error(
                CHAT_MESSAGE, ReasonCode.TEMP_BANNED, retry_after=math.ceil(verdict.duration)))
            await websocket.close(code=BAN_CLOSE_CODE, reason=ReasonCode.TEMP_BANNED.value)
        return verdict
