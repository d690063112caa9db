from __future__ import annotations
from typing import Any, Dict
import random

# (label, numerator, denominator); BUST pays nothing
SEGMENTS = [
    ("2x", 2, 1),
    ("1.5x", 3, 2),
    ("3x", 3, 1),
    ("BUST", 0, 1),
    ("5x", 5, 1),
    ("1.5x", 3, 2),
    ("BUST", 0, 1),
    ("2x", 2, 1),
]


def play_wheel(bet: int, rng: random.Random) -> Dict[str, Any]:
    index = rng.randrange(len(SEGMENTS))
    label, num, den = SEGMENTS[index]
    payout = bet * num // den
    return {
        "result_code": "WHEEL_BUST" if num == 0 else "WHEEL_WIN",
        "payout": payout,
        "push": False,
        "outcome": label,
        "details": {"segment": index, "label": label},
    }
