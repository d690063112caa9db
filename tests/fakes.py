import random
from typing import Iterable, List


class ScriptedRandom(random.Random):
    """random.Random whose randrange() replays queued values; everything else stays seeded."""

    def __init__(self, values: Iterable[int] = (), seed: int = 1234):
        super().__init__(seed)
        self.queue: List[int] = list(values)

    def push(self, *values: int) -> None:
        self.queue.extend(values)

    def randrange(self, start, stop=None, step=1):
        if not self.queue:
            raise AssertionError("ScriptedRandom ran out of values")
        n = start if stop is None else stop - start
        v = self.queue.pop(0)
        if not 0 <= v < n:
            raise AssertionError(f"scripted value {v} outside range({n})")
        return v if stop is None else start + v


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# blackjack card values drawn as randrange(13) + 1
ACE, TEN, KING = 0, 9, 12


def card(value: int) -> int:
    """Scripted randrange value for a card face value (1 = ace, 13 = king)."""
    return value - 1
