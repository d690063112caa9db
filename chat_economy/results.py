from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


# Deterministic error codes so the rendering layer can pick its wording.
# None of these are fatal: every operation returns them in a failed result.
INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
BELOW_MINIMUM_BET = "BELOW_MINIMUM_BET"
INVALID_BET = "INVALID_BET"
INVALID_CHOICE = "INVALID_CHOICE"
INVALID_AMOUNT = "INVALID_AMOUNT"
INVALID_TARGET = "INVALID_TARGET"
NO_ACCOUNT = "NO_ACCOUNT"
NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
SESSION_ALREADY_ACTIVE = "SESSION_ALREADY_ACTIVE"
SESSION_EXPIRED = "SESSION_EXPIRED"
UNKNOWN_GAME = "UNKNOWN_GAME"
UNKNOWN_ACTION = "UNKNOWN_ACTION"
UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
SELF_CHALLENGE_NOT_ALLOWED = "SELF_CHALLENGE_NOT_ALLOWED"
NO_PENDING_DUEL = "NO_PENDING_DUEL"
DUEL_EXPIRED = "DUEL_EXPIRED"
DUEL_ALREADY_PENDING = "DUEL_ALREADY_PENDING"
NOT_PERMITTED = "NOT_PERMITTED"
NO_RECIPIENTS = "NO_RECIPIENTS"
USAGE = "USAGE"


@dataclass
class GameResult:
    """Outcome of a single-shot game round."""

    success: bool
    game: str
    bet: int = 0
    outcome: str = ""
    winnings: Optional[int] = None
    new_balance: Optional[int] = None
    is_all_in: bool = False
    push: bool = False
    details: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BlackjackResult:
    """Snapshot of a blackjack hand after start / hit / stand."""

    success: bool
    state: str = ""
    bet: int = 0
    user_cards: List[int] = field(default_factory=list)
    dealer_cards: List[int] = field(default_factory=list)
    user_total: int = 0
    dealer_total: int = 0
    winnings: Optional[int] = None
    new_balance: Optional[int] = None
    is_all_in: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DuelResult:
    """Result of a duel challenge / accept / decline."""

    success: bool
    status: str = ""
    challenger: str = ""
    target: str = ""
    bet: int = 0
    pot: int = 0
    sponsored: bool = False
    winner: Optional[str] = None
    loser: Optional[str] = None
    new_balance: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OperationResult:
    """Generic result type for ledger-facing commands (balance, buy, give, rain, ...)."""

    success: bool
    kind: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    new_balance: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def game_failure(game: str, bet: int, code: str, message: str, balance: Optional[int] = None) -> GameResult:
    return GameResult(
        success=False,
        game=game,
        bet=bet,
        new_balance=balance,
        error_code=code,
        error_message=message,
    )
