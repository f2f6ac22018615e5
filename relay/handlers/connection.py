# handlers/connection.py

import logging
import math
from http import HTTPStatus
from typing import Callable, Dict, Optional

from websockets import broadcast
from websockets.exceptions import ConnectionClosedError

from handlers.chat_handler import ChatHandler
from services.admission import AdmissionController
from services.protocol import CHAT_MESSAGE, build_error, build_rejection, parse_envelope, send_message
from services.rate_limiter import UnknownClientError
from services.verdicts import ReasonCode, Reject

from constants import BAN_CLOSE_CODE, HEALTH_MESSAGE, HEALTH_PATH, TRUST_PROXY

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)

CONNECT = "connect"
INTERNAL_ERROR_CLOSE_CODE = 1011


def client_address(connection, headers=None, trust_proxy: bool = TRUST_PROXY) -> str:
    """
    Resolve the address used as the ban key for a connection.

    Parameters:
        connection: websockets connection (needs `remote_address`).
        headers: Handshake request headers, consulted only when `trust_proxy` is set.
        trust_proxy (bool): Use the first X-Forwarded-For hop when present.

    Returns:
        address (str): Client IP address, or "unknown" if the transport has none.
    """
    if trust_proxy and headers is not None:
        forwarded = headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    remote = connection.remote_address
    return remote[0] if remote else "unknown"


class ConnectionHandler:
    """
    Manages the WebSocket connections of the relay: handshake admission,
    receive/dispatch loop, and cleanup.
    """

    def __init__(self, admission: AdmissionController, broadcaster: Callable = broadcast,
                 trust_proxy: bool = TRUST_PROXY):
        """
        Parameters:
            admission (AdmissionController): Admission pipeline shared by all connections.
            broadcaster (Callable): Fan-out function, `websockets.broadcast` by default.
            trust_proxy (bool): Resolve client addresses from X-Forwarded-For.
        """
        self.admission = admission
        self.trust_proxy = trust_proxy
        self.connections: Dict[str, object] = {}
        self.chat_handler = ChatHandler(admission, self.connections, broadcaster)

        # Mapping of message types to handler coroutines
        self.handlers = {
            CHAT_MESSAGE: self.chat_handler.handle_chat_message,
        }

    def process_request(self, connection, request):
        """
        Handshake hook: answer health checks and refuse banned addresses.

        Parameters:
            connection: The websockets ServerConnection being opened.
            request: The HTTP upgrade request.

        Returns:
            Response or None: A response short-circuits the handshake; None lets it proceed.
        """
        if request.path == HEALTH_PATH and not request.headers.get("Upgrade"):
            return connection.respond(HTTPStatus.OK, HEALTH_MESSAGE + "\n")

        address = client_address(connection, request.headers, self.trust_proxy)
        verdict = self.admission.admit_connection(address)
        if isinstance(verdict, Reject):
            response = connection.respond(HTTPStatus.FORBIDDEN, build_rejection(CONNECT, verdict))
            if verdict.retry_after is not None:
                response.headers["Retry-After"] = str(math.ceil(verdict.retry_after))
            return response
        return None

    async def handle_connection(self, ws):
        """
        Main entry point for an accepted WebSocket connection.

        Registers the client with the admission pipeline, dispatches every
        frame until the connection ends, then discards the client's state.

        Parameters:
            ws (websockets.asyncio.server.ServerConnection): The WebSocket connection instance.

        Returns:
            None
        """
        client_id = str(ws.id)
        address = client_address(ws, ws.request.headers if ws.request else None, self.trust_proxy)

        # A ban may have landed between the handshake check and now
        verdict = self.admission.admit_connection(address)
        if isinstance(verdict, Reject):
            await send_message(ws, build_rejection(CONNECT, verdict))
            await ws.close(code=BAN_CLOSE_CODE, reason=ReasonCode.TEMP_BANNED.value)
            return

        self.admission.register(client_id, address)
        self.connections[client_id] = ws
        logger.info(f"User connected: {client_id} from ip={address}")

        try:
            async for raw in ws:
                await self._dispatch(ws, client_id, raw)
        except ConnectionClosedError:
            logger.info(f"Connection {client_id} closed abruptly")
        except UnknownClientError as e:
            logger.error(f"No admission state for {client_id}", exc_info=e)
            await ws.close(code=INTERNAL_ERROR_CLOSE_CODE, reason="Internal error")
        finally:
            self._cleanup(client_id)

    async def _dispatch(self, ws, client_id: str, raw) -> Optional[object]:
        """
        Dispatch one frame to the handler for its message type.

        Frames that are not valid envelopes are dropped silently; unknown
        message types get an error reply.

        Parameters:
            ws: The sender's connection.
            client_id (str): The sender's id.
            raw (str | bytes): The frame as received.

        Returns:
            result: The handler's return value, if any.
        """
        msg_type, payload = parse_envelope(raw)
        if msg_type is None:
            logger.debug(f"Dropped malformed frame from {client_id}")
            return None

        handler = self.handlers.get(msg_type)
        if handler:
            return await handler(ws, client_id, payload)

        logger.warning(f"Unknown msg_type from {client_id}: {msg_type}")
        await send_message(ws, build_error(msg_type, ReasonCode.UNKNOWN_MESSAGE_TYPE))
        return None

    def _cleanup(self, client_id: str) -> None:
        """
        Forget a client on disconnect, whatever the reason.
        """
        self.connections.pop(client_id, None)
        self.admission.unregister(client_id)
        logger.info(f"User disconnected: {client_id}")
