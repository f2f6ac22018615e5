# relay/app.py
# fmt: off
import logging

from services.logging_utils import setup_logging  # logging config must precede other imports
setup_logging()
logger = logging.getLogger(__name__)

import asyncio
import os
import ssl

from websockets import serve

from constants import (
    ALLOWED_ORIGINS, HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT, MAX_FRAME_BYTES,
    SSL_CERT_FILE, SSL_KEY_FILE, WEBSOCKET_HOST, WEBSOCKET_PORT
)
from handlers.connection import ConnectionHandler
from services.admission import AdmissionController
from services.config import AdmissionConfig
# fmt: on


def build_ssl_context():
    """
    Create a server TLS context if both certificate files exist.

    Returns:
        ssl.SSLContext or None: Context loaded with SSL_CERT_FILE / SSL_KEY_FILE,
        or None to serve plain ws://.
    """
    if not (os.path.exists(SSL_CERT_FILE) and os.path.exists(SSL_KEY_FILE)):
        logger.info("No TLS certificate found, serving without TLS")
        return None
    ssl_ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ssl_ctx.load_cert_chain(certfile=SSL_CERT_FILE, keyfile=SSL_KEY_FILE)
    return ssl_ctx


def main():
    """
    Entry point for starting the relay server.

    Reads host, port, and admission tunables from the environment and runs
    the asynchronous server until interrupted.
    """
    logger.info("Starting relay server...")
    config = AdmissionConfig.from_env()
    try:
        asyncio.run(start_server(WEBSOCKET_HOST, WEBSOCKET_PORT, config, build_ssl_context()))
    except KeyboardInterrupt:
        logger.info("Relay server stopped")


async def start_server(host, port, config, ssl_ctx=None):
    """
    Asynchronously run the relay server.

    Starts the ban sweep, serves WebSocket connections with handshake
    admission, and stops the sweep when the server shuts down.

    Parameters:
        host (str): The host IP address or hostname to bind the server.
        port (int): The port number to listen on.
        config (AdmissionConfig): Admission-control tunables.
        ssl_ctx (ssl.SSLContext, optional): TLS context, or None for plain ws://.

    Returns:
        None
    """
    admission = AdmissionController(config)
    handler = ConnectionHandler(admission)
    origins = ALLOWED_ORIGINS + [None] if ALLOWED_ORIGINS else None  # None: non-browser clients

    admission.start()
    try:
        async with serve(
                handler.handle_connection,
                host=host,
                port=port,
                ssl=ssl_ctx,
                origins=origins,
                process_request=handler.process_request,
                max_size=MAX_FRAME_BYTES,
                ping_interval=HEARTBEAT_INTERVAL,
                ping_timeout=HEARTBEAT_TIMEOUT,
        ):
            scheme = "wss" if ssl_ctx else "ws"
            logger.info(f"Relay server started on {scheme}://{host}:{port}")
            await asyncio.Future()  # Run forever
    finally:
        await admission.stop()


if __name__ == "__main__":
    main()
