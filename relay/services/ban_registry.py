"""
In-memory registry of temporarily banned addresses.

A ban refuses new connections from an address until it expires. Expired
entries are evicted lazily on lookup, so answers are correct even if the
periodic sweep has not run yet; the sweep only bounds memory.

Usage:
    bans = BanRegistry(sweep_interval=60)
    bans.start()                   # inside a running event loop
    bans.ban("203.0.113.7", 120)
    if bans.is_banned(ip):
        # refuse the handshake
    await bans.stop()
"""
import asyncio
import logging
import threading
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class BanRegistry:
    """
    Tracks which addresses are banned and until when.

    At most one entry exists per address; banning an already banned address
    overwrites its expiry. All access to the map goes through `_lock`.
    """

    def __init__(self, sweep_interval: float = 60.0, clock: Clock = time.monotonic) -> None:
        """
        Initialize an empty registry.

        Args:
            sweep_interval (float): Seconds between background sweeps of expired bans.
            clock (Callable[[], float]): Monotonic time source, injectable for tests.
        """
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._expires_at: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._expires_at)

    def ban(self, address: str, duration: float) -> None:
        """
        Ban `address` for `duration` seconds from now, replacing any existing ban.

        Args:
            address (str): Network address to ban.
            duration (float): Length of the ban in seconds.
        """
        expires_at = self._clock() + duration
        with self._lock:
            self._expires_at[address] = expires_at
        logger.warning(f"Banned ip={address} for {duration:g}s")

    def remaining(self, address: str) -> Optional[float]:
        """
        Seconds left on the ban for `address`, or None if it is not banned.

        An expired entry is removed as part of the lookup.
        """
        now = self._clock()
        with self._lock:
            expires_at = self._expires_at.get(address)
            if expires_at is None:
                return None
            if expires_at <= now:
                del self._expires_at[address]
                logger.info(f"Ban expired for ip={address}")
                return None
            return expires_at - now

    def is_banned(self, address: str) -> bool:
        """
        Check whether `address` is currently banned.

        Args:
            address (str): Network address to check.

        Returns:
            bool: True if an unexpired ban exists for `address`.
        """
        return self.remaining(address) is not None

    def sweep(self) -> int:
        """
        Remove every expired ban.

        Returns:
            int: Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [addr for addr, until in self._expires_at.items() if until <= now]
            for addr in expired:
                del self._expires_at[addr]
        if expired:
            logger.debug(f"Swept {len(expired)} expired ban(s)")
        return len(expired)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Schedule the periodic sweep on the running event loop.

        Calling it again while the sweep is running has no effect.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Ban sweep failed", exc_info=e)

    async def __aenter__(self) -> "BanRegistry":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
