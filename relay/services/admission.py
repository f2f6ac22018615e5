"""
Admission pipeline: ban check on connect, content check and rate check per message.

The controller owns the ban registry and the rate limiter and is the only
place that installs bans, so callers just act on the verdict they get back.
"""
import logging
import time
from typing import Callable

from services.ban_registry import BanRegistry
from services.config import AdmissionConfig
from services.message_filter import validate_message
from services.rate_limiter import RateLimiter
from services.verdicts import BanAndDisconnect, ConnectionVerdict, MessageVerdict

logger = logging.getLogger(__name__)


class AdmissionController:
    """
    Gatekeeper for connection attempts and chat messages.
    """

    def __init__(self, config: AdmissionConfig = None, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            config (AdmissionConfig, optional): Tunables. Defaults to `AdmissionConfig.from_env()`.
            clock (Callable[[], float]): Monotonic time source shared by both components.
        """
        self.config = config or AdmissionConfig.from_env()
        self.bans = BanRegistry(sweep_interval=self.config.sweep_interval, clock=clock)
        self.limiter = RateLimiter(self.config, self.bans, clock=clock)

    def admit_connection(self, address: str) -> ConnectionVerdict:
        return self.limiter.admit_connection(address)

    def register(self, client_id: str, address: str) -> None:
        self.limiter.register_client(client_id, address)

    def unregister(self, client_id: str) -> None:
        self.limiter.unregister_client(client_id)

    def check_message(self, client_id: str, text) -> MessageVerdict:
        """
        Run one chat message through content validation and rate limiting.

        Content problems are returned before the rate limiter sees the
        message, so they neither use window capacity nor count as
        violations. A BanAndDisconnect verdict has already been applied to
        the ban registry when it is returned.

        Args:
            client_id (str): Registered connection identifier.
            text: Message payload as received.

        Returns:
            Admit, Reject, or BanAndDisconnect.

        Raises:
            UnknownClientError: If the client is not registered.
        """
        rejected = validate_message(text, self.config.max_message_length)
        if rejected is not None:
            if not rejected.silent:
                logger.info(f"Rejected message from {client_id}: {rejected.reason.value}")
            return rejected

        verdict = self.limiter.evaluate_message(client_id)
        if isinstance(verdict, BanAndDisconnect):
            self.bans.ban(verdict.address, verdict.duration)
        return verdict

    def start(self) -> None:
        """Start the periodic ban sweep. Must be called from a running event loop."""
        self.bans.start()

    async def stop(self) -> None:
        await self.bans.stop()
