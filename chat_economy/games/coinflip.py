from __future__ import annotations
from typing import Any, Dict, Optional
import random

SIDES = ("heads", "tails")
_ALIASES = {"h": "heads", "heads": "heads", "head": "heads", "t": "tails", "tails": "tails", "tail": "tails"}

PAYOUT_MULT = 2


def normalize_choice(choice: Any) -> Optional[str]:
    return _ALIASES.get(str(choice or "").strip().lower())


def play_coinflip(bet: int, choice: str, rng: random.Random) -> Dict[str, Any]:
    side = SIDES[rng.randrange(len(SIDES))]
    won = side == choice
    return {
        "result_code": "COINFLIP_WIN" if won else "COINFLIP_LOSS",
        "payout": bet * PAYOUT_MULT if won else 0,
        "push": False,
        "outcome": f"{choice} vs {side}",
        "details": {"choice": choice, "result": side},
    }
