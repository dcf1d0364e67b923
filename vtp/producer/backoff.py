import random
from typing import Optional


class BackoffSchedule:
    """Exponential backoff with bounded jitter for consecutive backpressure replies.

    The first delay is the initial value; every following one doubles the base
    up to the ceiling and adds a random jitter in [0, jitter_ms). Delays never
    decrease and never exceed max_ms + jitter_ms.
    """

    def __init__(self, initial_ms: int, max_ms: int, jitter_ms: int = 0, rng: Optional[random.Random] = None):
        if initial_ms <= 0:
            raise ValueError("initial_ms must be > 0")
        if max_ms < initial_ms:
            raise ValueError("max_ms must be >= initial_ms")
        if jitter_ms < 0:
            raise ValueError("jitter_ms must be >= 0")
        self.initial_ms = initial_ms
        self.max_ms = max_ms
        self.jitter_ms = jitter_ms
        self.rng = rng or random.Random()
        self.reset()

    def reset(self):
        self.attempts = 0
        self._base_ms = self.initial_ms
        self._last_ms = 0

    @property
    def ceiling_ms(self) -> int:
        return self.max_ms + self.jitter_ms

    def next_delay_ms(self) -> int:
        if self.attempts == 0:
            delay = self._base_ms
        else:
            self._base_ms = min(self._base_ms * 2, self.max_ms)
            jitter = int(self.rng.random() * self.jitter_ms) if self.jitter_ms else 0
            delay = self._base_ms + jitter
        delay = min(max(delay, self._last_ms), self.ceiling_ms)
        self._last_ms = delay
        self.attempts += 1
        return delay
