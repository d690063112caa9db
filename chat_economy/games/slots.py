from __future__ import annotations
from typing import Any, Dict, List
import random

# 7 equally likely symbols per reel
SYMBOLS = ["🍒", "🍋", "🍊", "🍇", "🍉", "⭐", "💎"]

RULES = {
    "SLOTS_TRIPLE": {"mult": 10, "tier": "jackpot"},
    "SLOTS_DOUBLE": {"mult": 2, "tier": "win"},
    "SLOTS_LOSS":   {"mult": 0, "tier": "loss"},
}


def spin(rng: random.Random) -> List[str]:
    return [SYMBOLS[rng.randrange(len(SYMBOLS))] for _ in range(3)]


def classify(reels: List[str]) -> str:
    a, b, c = reels
    if a == b == c:
        return "SLOTS_TRIPLE"
    if a == b or b == c or a == c:
        return "SLOTS_DOUBLE"
    return "SLOTS_LOSS"


def play_slots(bet: int, rng: random.Random) -> Dict[str, Any]:
    reels = spin(rng)
    code = classify(reels)
    rule = RULES[code]
    return {
        "result_code": code,
        "payout": bet * rule["mult"],
        "push": False,
        "outcome": " ".join(reels),
        "details": {"reels": reels, "tier": rule["tier"]},
    }
