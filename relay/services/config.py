# services/config.py
from dataclasses import dataclass, fields

from constants import (
    BAN_SECONDS, BAN_SWEEP_INTERVAL, BAN_THRESHOLD, FORGIVENESS_SECONDS,
    MAX_MESSAGE_LENGTH, RATE_MAX_MESSAGES, RATE_WINDOW_SECONDS
)


@dataclass(frozen=True)
class AdmissionConfig:
    """
    Tunables for the admission-control engine.

    Attributes:
        window_seconds (float): Length of the sliding message window.
        max_messages (int): Messages admitted per window.
        ban_threshold (int): Violation count that triggers a ban.
        ban_seconds (float): How long a ban lasts.
        forgiveness_seconds (float): Idle time after a violation before one is forgiven.
        max_message_length (int): Longest chat message accepted, in characters.
        sweep_interval (float): Seconds between sweeps of expired bans.
    """
    window_seconds: float = 5.0
    max_messages: int = 10
    ban_threshold: int = 6
    ban_seconds: float = 120.0
    forgiveness_seconds: float = 20.0
    max_message_length: int = 500
    sweep_interval: float = 60.0

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value <= 0:
                raise ValueError(f"{f.name} must be positive, got {value!r}")

    @classmethod
    def from_env(cls) -> "AdmissionConfig":
        """
        Build a config from the values loaded in `constants`.

        Returns:
            AdmissionConfig: Config reflecting the environment (and .env file).

        Raises:
            ValueError: If any configured value is not positive.
        """
        return cls(
            window_seconds=RATE_WINDOW_SECONDS,
            max_messages=RATE_MAX_MESSAGES,
            ban_threshold=BAN_THRESHOLD,
            ban_seconds=BAN_SECONDS,
            forgiveness_seconds=FORGIVENESS_SECONDS,
            max_message_length=MAX_MESSAGE_LENGTH,
            sweep_interval=BAN_SWEEP_INTERVAL,
        )
