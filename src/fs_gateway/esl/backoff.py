# src/fs_gateway/esl/backoff.py
"""
Reconnect backoff for the switch connection.
Exponential delay capped at a maximum, with unlimited attempts.
"""

import random
from typing import Optional

class ReconnectBackoff:
    """
    Configurable reconnect strategy with exponential backoff.

    Delays never decrease between consecutive failures until ``reset`` is
    called after a successful ready transition.
    """
    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None
    ):
        if initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if max_delay < initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        # Fraction of the delay added at random; 0 disables
        self.jitter = jitter
        self._rng = rng or random.Random()
        self.attempt = 0
        self._last_delay = 0.0

    @property
    def last_delay(self) -> float:
        return self._last_delay

    def get_next_delay(self) -> float:
        """
        Register one more failed attempt and return the delay before the next one.
        """
        self.attempt += 1
        delay = min(
            self.initial_delay * (self.backoff_factor ** (self.attempt - 1)),
            self.max_delay
        )
        if self.jitter:
            delay = min(delay * (1 + self._rng.uniform(0, self.jitter)), self.max_delay)
        # Jitter must not make the sequence go backwards
        delay = max(delay, self._last_delay)
        self._last_delay = delay
        return delay

    def reset(self) -> None:
        """Start over from the initial delay."""
        self.attempt = 0
        self._last_delay = 0.0
