from __future__ import annotations
from typing import Any, Dict, Optional
import random

CHOICES = ("rock", "paper", "scissors")
_ALIASES = {"r": "rock", "p": "paper", "s": "scissors"}

PAYOUT_MULT = 2


def normalize_choice(choice: Any) -> Optional[str]:
    c = str(choice or "").strip().lower()
    c = _ALIASES.get(c, c)
    return c if c in CHOICES else None


def play_rps(bet: int, choice: str, rng: random.Random) -> Dict[str, Any]:
    house = CHOICES[rng.randrange(len(CHOICES))]
    ui = CHOICES.index(choice)
    hi = CHOICES.index(house)
    details = {"choice": choice, "house": house}
    outcome = f"{choice} vs {house}"

    if ui == hi:
        return {"result_code": "RPS_TIE", "payout": bet, "push": True, "outcome": outcome, "details": details}
    # each choice loses to the next one in the cycle
    if (ui + 1) % 3 == hi:
        return {"result_code": "RPS_LOSS", "payout": 0, "push": False, "outcome": outcome, "details": details}
    return {
        "result_code": "RPS_WIN",
        "payout": bet * PAYOUT_MULT,
        "push": False,
        "outcome": outcome,
        "details": details,
    }
