"""
Per-client sliding-window rate limiter with a decaying violation counter.

Every connected client gets its own window of recently admitted message
timestamps and a violation count. Going over the window cap is a violation;
enough violations escalate to a ban of the client's address. One violation
is forgiven for each idle period of `forgiveness_seconds` since the last one.

Usage:
    limiter = RateLimiter(config, bans)
    if isinstance(limiter.admit_connection(ip), Reject):
        # refuse the handshake
    limiter.register_client(client_id, ip)
    verdict = limiter.evaluate_message(client_id)
    limiter.unregister_client(client_id)  # on disconnect
"""
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from services.ban_registry import BanRegistry
from services.config import AdmissionConfig
from services.verdicts import (
    ADMIT, BanAndDisconnect, ConnectionVerdict, MessageVerdict, ReasonCode, Reject
)

logger = logging.getLogger(__name__)


class UnknownClientError(LookupError):
    """Raised when a message is evaluated for a client that was never registered (or already left)."""


class _ClientState:
    """
    Internal per-client accounting.

    Attributes:
        address (str): Client's network address, the ban key.
        hits (Deque[float]): Ascending timestamps of admitted messages within the window.
        violations (int): Current violation count, never negative.
        last_violation (Optional[float]): Time of the most recent violation or forgiveness.
        lock (threading.Lock): Serializes evaluations for this client.
    """
    __slots__ = ("address", "hits", "violations", "last_violation", "lock")

    def __init__(self, address: str) -> None:
        self.address = address
        self.hits: Deque[float] = deque()
        self.violations: int = 0
        self.last_violation: Optional[float] = None
        self.lock = threading.Lock()


class RateLimiter:
    """
    Admission decisions for connections and messages.

    The client map is guarded by its own lock; each client's state by a
    per-client lock, so evaluations for different clients never serialize
    on each other.
    """

    def __init__(self, config: AdmissionConfig, bans: BanRegistry,
                 clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the rate limiter.

        Args:
            config (AdmissionConfig): Window, threshold, and timing tunables.
            bans (BanRegistry): Registry consulted before a connection is admitted.
            clock (Callable[[], float]): Monotonic time source, injectable for tests.
        """
        self._config = config
        self._bans = bans
        self._clock = clock
        self._clients: Dict[str, _ClientState] = {}
        self._clients_lock = threading.Lock()

    def __contains__(self, client_id: str) -> bool:
        with self._clients_lock:
            return client_id in self._clients

    def __len__(self) -> int:
        with self._clients_lock:
            return len(self._clients)

    def admit_connection(self, address: str) -> ConnectionVerdict:
        """
        Decide whether a connection attempt from `address` may proceed.

        Args:
            address (str): Source address of the connection attempt.

        Returns:
            Admit, or Reject(TEMP_BANNED, retry_after=<seconds left>) if the address is banned.
        """
        remaining = self._bans.remaining(address)
        if remaining is not None:
            logger.info(f"Refusing connection from banned ip={address} ({remaining:.0f}s left)")
            return Reject(ReasonCode.TEMP_BANNED, retry_after=remaining)
        return ADMIT

    def register_client(self, client_id: str, address: str) -> None:
        """
        Allocate fresh state for a newly accepted connection.

        The transport is expected to hand out unique ids. Registering an id
        that is still live is a contract violation: it is logged and the
        existing state is replaced.

        Args:
            client_id (str): Connection identifier assigned by the transport.
            address (str): Client's network address.
        """
        with self._clients_lock:
            if client_id in self._clients:
                logger.warning(f"Client {client_id} registered twice; resetting its state")
            self._clients[client_id] = _ClientState(address)

    def unregister_client(self, client_id: str) -> None:
        """
        Discard all state for `client_id`. Unknown ids are ignored.
        """
        with self._clients_lock:
            self._clients.pop(client_id, None)

    def violation_count(self, client_id: str) -> int:
        """
        Current violation count for `client_id`.

        Raises:
            UnknownClientError: If the client is not registered.
        """
        state = self._get(client_id)
        with state.lock:
            return state.violations

    def evaluate_message(self, client_id: str, now: Optional[float] = None) -> MessageVerdict:
        """
        Decide whether one inbound message from `client_id` is admitted.

        Steps, in order: purge timestamps older than the window, forgive one
        violation if the client has been clean for longer than the
        forgiveness delay, then check the window cap. Rejected messages are
        never recorded in the window.

        Args:
            client_id (str): Registered connection identifier.
            now (Optional[float]): Evaluation time; defaults to the limiter's clock.

        Returns:
            Admit, Reject(RATE_LIMIT_EXCEEDED, violation_count), or
            BanAndDisconnect(address, ban_seconds) once the ban threshold is reached.

        Raises:
            UnknownClientError: If the client is not registered.
        """
        if now is None:
            now = self._clock()
        cfg = self._config
        state = self._get(client_id)

        with state.lock:
            hits = state.hits
            cutoff = now - cfg.window_seconds
            while hits and hits[0] < cutoff:
                hits.popleft()

            # At most one forgiveness per evaluation; each one restarts the decay clock
            if (state.violations > 0 and state.last_violation is not None
                    and now - state.last_violation > cfg.forgiveness_seconds):
                state.violations -= 1
                state.last_violation = now
                logger.debug(f"Forgave one violation for {client_id} (now {state.violations})")

            if len(hits) >= cfg.max_messages:
                state.violations += 1
                state.last_violation = now
                if state.violations >= cfg.ban_threshold:
                    logger.warning(
                        f"Client {client_id} reached {state.violations} violations, banning ip={state.address}")
                    return BanAndDisconnect(state.address, cfg.ban_seconds)
                logger.warning(
                    f"Rate limit exceeded by {client_id} (violation {state.violations}/{cfg.ban_threshold})")
                return Reject(ReasonCode.RATE_LIMIT_EXCEEDED, violation_count=state.violations)

            hits.append(now)
            return ADMIT

    def _get(self, client_id: str) -> _ClientState:
        with self._clients_lock:
            state = self._clients.get(client_id)
        if state is None:
            raise UnknownClientError(client_id)
        return state
