from __future__ import annotations
from typing import Any, Dict
import random

# 1.5x as an exact integer ratio
WIN_NUM, WIN_DEN = 3, 2


def roll(rng: random.Random) -> int:
    return rng.randrange(6) + 1


def play_dice(bet: int, rng: random.Random) -> Dict[str, Any]:
    user_roll = roll(rng)
    house_roll = roll(rng)
    details = {"user_roll": user_roll, "house_roll": house_roll}
    outcome = f"{user_roll} vs {house_roll}"

    if user_roll == house_roll:
        return {"result_code": "DICE_TIE", "payout": bet, "push": True, "outcome": outcome, "details": details}
    if user_roll > house_roll:
        return {
            "result_code": "DICE_WIN",
            "payout": bet * WIN_NUM // WIN_DEN,
            "push": False,
            "outcome": outcome,
            "details": details,
        }
    return {"result_code": "DICE_LOSS", "payout": 0, "push": False, "outcome": outcome, "details": details}
