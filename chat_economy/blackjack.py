from __future__ import annotations

import dataclasses
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import results
from .config import PriceTable
from .ledger import Ledger, user_key
from .results import BlackjackResult


GAME_ID = "blackjack"
DEALER_STANDS_ON = 17
NATURAL_NUM, NATURAL_DEN = 5, 2  # natural pays 2.5x the bet

# hand states reported back to the renderer
IN_PROGRESS = "IN_PROGRESS"
BUST = "BUST"
WIN = "WIN"
LOSE = "LOSE"
PUSH = "PUSH"
NATURAL = "BLACKJACK"
DEALER_NATURAL = "DEALER_BLACKJACK"
EXPIRED = "EXPIRED"


def draw_card(rng: random.Random) -> int:
    # 1 = ace, 11-13 = J/Q/K
    return rng.randrange(13) + 1


def hand_total(cards: List[int]) -> int:
    total = 0
    aces = 0
    for card in cards:
        if card == 1:
            aces += 1
            total += 11
        elif card >= 11:
            total += 10
        else:
            total += card
    while total > 21 and aces > 0:
        total -= 10
        aces -= 1
    return total


def format_cards(cards: List[int]) -> str:
    names = {1: "A", 11: "J", 12: "Q", 13: "K"}
    return "-".join(names.get(c, str(c)) for c in cards)


@dataclass
class BlackjackSession:
    username: str
    bet: int
    user_cards: List[int] = field(default_factory=list)
    dealer_cards: List[int] = field(default_factory=list)
    is_all_in: bool = False
    started_at: float = 0.0
    last_action_at: float = 0.0


class BlackjackManager:
    """
    Multi-turn blackjack, one live hand per user.

    The bet leaves the balance (as a loss-typed stake) when a hand without a
    natural is dealt; `stand` credits back the full payout on a win or the bet
    on a push. Bust, lost stands and expired hands leave the stake forfeited and
    log a zero-amount loss so every finished hand has an explicit ledger record.
    """

    def __init__(
        self,
        ledger: Ledger,
        prices: Optional[PriceTable] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        idle_seconds: int = 120,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.prices = prices or PriceTable()
        self.rng = rng or random.Random()
        self.clock = clock
        self.idle_seconds = int(idle_seconds)
        self.log = log or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._sessions: Dict[str, BlackjackSession] = {}

    # ---------- session store ----------
    def get_session(self, username: str) -> Optional[BlackjackSession]:
        with self._lock:
            s = self._sessions.get(user_key(username))
            return dataclasses.replace(s, user_cards=list(s.user_cards), dealer_cards=list(s.dealer_cards)) if s else None

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _is_idle(self, session: BlackjackSession, now: float) -> bool:
        return now - session.last_action_at > self.idle_seconds

    def _snapshot(self, session: BlackjackSession, state: str, **kw) -> BlackjackResult:
        return BlackjackResult(
            success=True,
            state=state,
            bet=session.bet,
            user_cards=list(session.user_cards),
            dealer_cards=list(session.dealer_cards),
            user_total=hand_total(session.user_cards),
            dealer_total=hand_total(session.dealer_cards),
            is_all_in=session.is_all_in,
            new_balance=self.ledger.balance_of(session.username),
            **kw,
        )

    def _forfeit(self, session: BlackjackSession, reason: str) -> None:
        # stake already debited at deal time; this only records the resolution
        self.ledger.add_loss(
            session.username,
            0,
            f"Blackjack: {reason} (lost {session.bet})",
            session.is_all_in,
        )

    def _expire(self, session: BlackjackSession) -> None:
        self._sessions.pop(session.username, None)
        self._forfeit(session, "hand abandoned")
        self.log.info("Expired idle blackjack hand for %s (bet=%d forfeited)", session.username, session.bet)

    # ---------- operations ----------
    def start(self, username: str, bet: int, now: Optional[float] = None) -> BlackjackResult:
        now = self.clock() if now is None else now
        key = user_key(username)
        bet = int(bet)

        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None:
                if not self._is_idle(existing, now):
                    r = self._snapshot(existing, IN_PROGRESS)
                    r.success = False
                    r.error_code = results.SESSION_ALREADY_ACTIVE
                    r.error_message = "You have an active game! Use hit or stand."
                    return r
                self._expire(existing)

            if bet <= 0:
                return BlackjackResult(
                    success=False, bet=bet, error_code=results.INVALID_BET, error_message="Invalid bet amount."
                )
            min_bet = self.prices.get_game_min_bet(GAME_ID)
            if bet < min_bet:
                return BlackjackResult(
                    success=False,
                    bet=bet,
                    error_code=results.BELOW_MINIMUM_BET,
                    error_message=f"Minimum bet for blackjack is {min_bet:,} points.",
                )

            with self.ledger.lock:
                acct = self.ledger.get_balance(key)
                if acct is None or acct.balance < bet:
                    balance = acct.balance if acct else 0
                    return BlackjackResult(
                        success=False,
                        bet=bet,
                        new_balance=balance,
                        error_code=results.INSUFFICIENT_FUNDS,
                        error_message=f"Not enough points. Balance: {balance:,}",
                    )

                is_all_in = acct.balance == bet
                session = BlackjackSession(
                    username=key,
                    bet=bet,
                    user_cards=[draw_card(self.rng), draw_card(self.rng)],
                    dealer_cards=[draw_card(self.rng), draw_card(self.rng)],
                    is_all_in=is_all_in,
                    started_at=now,
                    last_action_at=now,
                )
                user_total = hand_total(session.user_cards)
                dealer_total = hand_total(session.dealer_cards)

                if user_total == 21 and dealer_total == 21:
                    return self._snapshot(session, PUSH)

                if user_total == 21:
                    winnings = bet * NATURAL_NUM // NATURAL_DEN
                    self.ledger.add_win(key, winnings, f"Blackjack: Natural 21 (won {winnings})", is_all_in)
                    self.log.info("%s natural blackjack, bet=%d won=%d", key, bet, winnings)
                    return self._snapshot(session, NATURAL, winnings=winnings)

                if dealer_total == 21:
                    self.ledger.add_loss(key, bet, f"Blackjack: Dealer blackjack (lost {bet})", is_all_in)
                    return self._snapshot(session, DEALER_NATURAL)

                if not self.ledger.stake(key, bet, f"Blackjack: Started game (bet {bet})"):
                    return BlackjackResult(
                        success=False, bet=bet, error_code=results.INSUFFICIENT_FUNDS, error_message="Not enough points."
                    )
                self._sessions[key] = session

            self.log.debug("%s started blackjack hand bet=%d cards=%s", key, bet, format_cards(session.user_cards))
            return self._snapshot(session, IN_PROGRESS)

    def _require_session(self, key: str, now: float):
        session = self._sessions.get(key)
        if session is None:
            return None, BlackjackResult(
                success=False,
                error_code=results.NO_ACTIVE_SESSION,
                error_message="You don't have an active blackjack game.",
            )
        if self._is_idle(session, now):
            self._expire(session)
            r = self._snapshot(session, EXPIRED)
            r.success = False
            r.error_code = results.SESSION_EXPIRED
            r.error_message = "Your blackjack game expired."
            return None, r
        return session, None

    def hit(self, username: str, now: Optional[float] = None) -> BlackjackResult:
        now = self.clock() if now is None else now
        key = user_key(username)
        with self._lock:
            session, failure = self._require_session(key, now)
            if failure is not None:
                return failure

            session.user_cards.append(draw_card(self.rng))
            session.last_action_at = now
            total = hand_total(session.user_cards)
            if total > 21:
                del self._sessions[key]
                self._forfeit(session, f"Bust with {total}")
                return self._snapshot(session, BUST)
            return self._snapshot(session, IN_PROGRESS)

    def stand(self, username: str, now: Optional[float] = None) -> BlackjackResult:
        now = self.clock() if now is None else now
        key = user_key(username)
        with self._lock:
            session, failure = self._require_session(key, now)
            if failure is not None:
                return failure
            del self._sessions[key]

            while hand_total(session.dealer_cards) < DEALER_STANDS_ON:
                session.dealer_cards.append(draw_card(self.rng))

            user_total = hand_total(session.user_cards)
            dealer_total = hand_total(session.dealer_cards)
            bet = session.bet

            if dealer_total > 21 or user_total > dealer_total:
                winnings = bet * 2
                reason = "Dealer bust" if dealer_total > 21 else f"{user_total} vs {dealer_total}"
                self.ledger.add_win(key, winnings, f"Blackjack: {reason} (won {winnings})", session.is_all_in)
                return self._snapshot(session, WIN, winnings=winnings)

            if user_total < dealer_total:
                self._forfeit(session, f"{user_total} vs {dealer_total}")
                return self._snapshot(session, LOSE)

            self.ledger.refund(
                key, bet, f"Blackjack: Push ({user_total} vs {dealer_total}), bet returned", reverses_loss=True
            )
            return self._snapshot(session, PUSH)

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Resolve every hand idle for longer than `idle_seconds`. Returns the expired usernames."""
        now = self.clock() if now is None else now
        expired: List[str] = []
        with self._lock:
            for session in list(self._sessions.values()):
                if self._is_idle(session, now):
                    self._expire(session)
                    expired.append(session.username)
        return expired
