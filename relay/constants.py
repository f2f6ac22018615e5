"""
Application-wide constants for the relay server, admission control, WebSocket transport, and logging.

Every value can be overridden through the environment (or a local ``.env`` file).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> list:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Server Binding ---
#: Interface the WebSocket server listens on.
WEBSOCKET_HOST: str = os.getenv("WEBSOCKET_HOST", "0.0.0.0")
#: Port the WebSocket server listens on.
WEBSOCKET_PORT: int = int(os.getenv("WEBSOCKET_PORT", "3000"))
#: Plain-HTTP path answered with a liveness message instead of an upgrade.
HEALTH_PATH: str = os.getenv("HEALTH_PATH", "/")
#: Body returned on the health path.
HEALTH_MESSAGE: str = "Chat server is running!"

# --- SSL Certificate Paths ---
#: Path to the server's SSL certificate file (PEM format). TLS is enabled only if both files exist.
SSL_CERT_FILE: str = os.getenv("SSL_CERT_FILE", "certs/cert.pem")
#: Path to the server's SSL private key file (PEM format).
SSL_KEY_FILE: str = os.getenv("SSL_KEY_FILE", "certs/key.pem")

# --- WebSocket Transport ---
#: Interval (in seconds) between protocol-level heartbeat pings to clients.
HEARTBEAT_INTERVAL: int = int(os.getenv("HEARTBEAT_INTERVAL", "10"))
#: Timeout (in seconds) to wait for a heartbeat pong before closing.
HEARTBEAT_TIMEOUT: int = int(os.getenv("HEARTBEAT_TIMEOUT", "15"))
#: Largest inbound frame accepted by the transport, in bytes (~10KB).
MAX_FRAME_BYTES: int = int(os.getenv("MAX_FRAME_BYTES", "10000"))
#: Browser origins allowed to open a connection. Empty means any origin.
ALLOWED_ORIGINS: list = _env_list(
    "ALLOWED_ORIGINS", "http://localhost:5500,http://127.0.0.1:5500")
#: Take the client address from the first X-Forwarded-For hop (only behind a trusted proxy).
TRUST_PROXY: bool = _env_flag("TRUST_PROXY")
#: Close code sent when a client is force-disconnected after a ban.
BAN_CLOSE_CODE: int = 4008

# --- Admission Control ---
#: Length of the sliding message window in seconds.
RATE_WINDOW_SECONDS: float = float(os.getenv("RATE_WINDOW_SECONDS", "5"))
#: Max messages admitted within one window.
RATE_MAX_MESSAGES: int = int(os.getenv("RATE_MAX_MESSAGES", "10"))
#: Number of violations that triggers a ban.
BAN_THRESHOLD: int = int(os.getenv("BAN_THRESHOLD", "6"))
#: Ban duration in seconds.
BAN_SECONDS: float = float(os.getenv("BAN_SECONDS", "120"))
#: Idle time since the last violation after which one violation is forgiven.
FORGIVENESS_SECONDS: float = float(os.getenv("FORGIVENESS_SECONDS", "20"))
#: Interval between sweeps of expired bans.
BAN_SWEEP_INTERVAL: float = float(os.getenv("BAN_SWEEP_INTERVAL", "60"))

# --- Message Constraints ---
#: Maximum length (in characters) of a chat message.
MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "500"))

# --- Logging ---
#: Mask client addresses in log output.
LOG_REDACT_ADDRESSES: bool = _env_flag("LOG_REDACT_ADDRESSES")
