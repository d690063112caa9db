from __future__ import annotations
from typing import Any, Dict, Optional
import random

RED_NUMBERS = frozenset([1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36])
EVEN_MONEY = ("red", "black", "even", "odd")
EVEN_MONEY_MULT = 2
SINGLE_MULT = 35


def normalize_choice(choice: Any) -> Optional[str]:
    c = str(choice or "").strip().lower()
    if c in EVEN_MONEY or c == "green":
        return c
    try:
        n = int(c)
    except ValueError:
        return None
    if 0 <= n <= 36:
        return str(n)
    return None


def colour_of(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMBERS else "black"


def wins(choice: str, number: int) -> bool:
    colour = colour_of(number)
    if choice in ("red", "black", "green"):
        return choice == colour
    if choice == "even":
        return number != 0 and number % 2 == 0
    if choice == "odd":
        return number % 2 == 1
    return int(choice) == number


def play_roulette(bet: int, choice: str, rng: random.Random) -> Dict[str, Any]:
    number = rng.randrange(37)
    colour = colour_of(number)
    won = wins(choice, number)
    mult = EVEN_MONEY_MULT if choice in EVEN_MONEY else SINGLE_MULT
    return {
        "result_code": "ROULETTE_WIN" if won else "ROULETTE_LOSS",
        "payout": bet * mult if won else 0,
        "push": False,
        "outcome": f"{choice} on {number} ({colour.upper()})",
        "details": {"choice": choice, "number": number, "colour": colour},
    }
