from typing import Any, Optional

ALL_IN_WORDS = ("all", "allin", "all-in", "max")


def clean_username(raw: Any) -> str:
    return str(raw or "").replace("@", "").strip()


def is_all_in_word(raw: Any) -> bool:
    return str(raw or "").strip().lower() in ALL_IN_WORDS


def parse_amount(raw: Any) -> Optional[int]:
    """Parse "1,500" / "1500" into an int; None when it is not a number."""
    s = str(raw or "").strip().replace(",", "").replace("_", "")
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def parse_bet(raw: Any, balance: int) -> Optional[int]:
    """Resolve a wager argument against the caller's balance ("all" -> whole balance)."""
    if is_all_in_word(raw):
        return int(balance)
    return parse_amount(raw)
