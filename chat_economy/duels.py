from __future__ import annotations

import dataclasses
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import results
from .config import PriceTable
from .ledger import Ledger, user_key
from .results import DuelResult
from .shared.parsing import clean_username, is_all_in_word, parse_amount


ISSUED = "ISSUED"
RESOLVED = "RESOLVED"
DECLINED = "DECLINED"
EXPIRED = "EXPIRED"

# duels reuse the coin flip's minimum wager
MIN_BET_GAME = "coinflip"
SPONSOR_ACTION = "challenge"
SPONSOR_POT_MULT = 2

DuelKey = Tuple[str, str]


@dataclass
class PendingDuel:
    challenger: str
    target: str
    bet: int
    challenger_stake: int = 0
    target_stake: int = 0
    sponsored_pot: int = 0
    created_at: float = 0.0

    @property
    def key(self) -> DuelKey:
        return (self.challenger, self.target)

    @property
    def pot(self) -> int:
        return self.challenger_stake + self.target_stake + self.sponsored_pot


class DuelManager:
    """
    Two-party coin-flip wagers with escrow held across chat turns.

    Organic duels withdraw the challenger's stake at challenge time and the
    target's at accept time; sponsored duels (bought through the marketplace)
    carry a house-funded pot and debit nobody. Stakes that never reach a
    resolution are refunded to the challenger on decline, failed accept, or
    expiry (lazily on touch, or through `sweep`).
    """

    def __init__(
        self,
        ledger: Ledger,
        prices: Optional[PriceTable] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        ttl_seconds: int = 120,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.prices = prices or PriceTable()
        self.rng = rng or random.Random()
        self.clock = clock
        self.ttl_seconds = int(ttl_seconds)
        self.log = log or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._pending: Dict[DuelKey, PendingDuel] = {}

    # ---------- store ----------
    def get(self, challenger: str, target: str) -> Optional[PendingDuel]:
        with self._lock:
            d = self._pending.get((user_key(challenger), user_key(target)))
            return dataclasses.replace(d) if d else None

    def pending_for(self, target: str) -> List[PendingDuel]:
        key = user_key(target)
        with self._lock:
            return [dataclasses.replace(d) for d in self._pending.values() if d.target == key]

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _is_expired(self, duel: PendingDuel, now: float) -> bool:
        return now - duel.created_at > self.ttl_seconds

    def _close(self, duel: PendingDuel) -> None:
        """Refund the challenger's escrow and drop the duel; stakes stay on the record for reporting."""
        del self._pending[duel.key]
        if duel.challenger_stake > 0:
            self.ledger.refund(duel.challenger, duel.challenger_stake, "Duel refund")
            self.log.info("Refunded %d to %s (duel vs %s)", duel.challenger_stake, duel.challenger, duel.target)

    def _find(self, target: str, challenger: Optional[str]) -> Optional[PendingDuel]:
        if challenger:
            return self._pending.get((user_key(challenger), user_key(target)))
        latest = None
        for d in self._pending.values():
            if d.target == user_key(target) and (latest is None or d.created_at > latest.created_at):
                latest = d
        return latest

    def _result(self, duel: PendingDuel, status: str, success: bool = True, **kw: Any) -> DuelResult:
        return DuelResult(
            success=success,
            status=status,
            challenger=duel.challenger,
            target=duel.target,
            bet=duel.bet,
            pot=duel.pot,
            sponsored=duel.sponsored_pot > 0,
            **kw,
        )

    # ---------- operations ----------
    def challenge(
        self,
        challenger: str,
        target: str,
        stake: Any = None,
        sponsored: bool = False,
        now: Optional[float] = None,
    ) -> DuelResult:
        """Issue a challenge. `stake` is an amount, an all-in word, or None for the minimum."""
        now = self.clock() if now is None else now
        c_key = user_key(challenger)
        t_key = user_key(clean_username(target))

        if not t_key:
            return DuelResult(
                success=False,
                challenger=c_key,
                error_code=results.INVALID_TARGET,
                error_message="Please specify who you want to challenge.",
            )
        if t_key == c_key:
            return DuelResult(
                success=False,
                challenger=c_key,
                target=t_key,
                error_code=results.SELF_CHALLENGE_NOT_ALLOWED,
                error_message="You can't challenge yourself!",
            )

        with self._lock:
            self._sweep_locked(now)

            existing = self._pending.get((c_key, t_key))
            if existing is not None:
                return self._result(
                    existing,
                    ISSUED,
                    success=False,
                    error_code=results.DUEL_ALREADY_PENDING,
                    error_message="You already have a pending duel with this user.",
                )

            duel = PendingDuel(challenger=c_key, target=t_key, bet=0, created_at=now)

            if sponsored:
                duel.sponsored_pot = self.prices.get_action_price(SPONSOR_ACTION) * SPONSOR_POT_MULT
                duel.bet = duel.sponsored_pot // 2
            else:
                min_bet = self.prices.get_game_min_bet(MIN_BET_GAME)
                with self.ledger.lock:
                    balance = self.ledger.balance_of(c_key)
                    if balance <= 0:
                        return DuelResult(
                            success=False,
                            challenger=c_key,
                            target=t_key,
                            new_balance=balance,
                            error_code=results.INSUFFICIENT_FUNDS,
                            error_message="You don't have any points to wager!",
                        )

                    if stake is None or stake == "":
                        bet = min_bet
                    elif is_all_in_word(stake):
                        bet = balance
                    else:
                        bet = parse_amount(stake)
                        if bet is None:
                            return DuelResult(
                                success=False,
                                challenger=c_key,
                                target=t_key,
                                error_code=results.INVALID_BET,
                                error_message="Invalid duel wager.",
                            )
                    if bet < min_bet:
                        return DuelResult(
                            success=False,
                            challenger=c_key,
                            target=t_key,
                            bet=bet,
                            error_code=results.BELOW_MINIMUM_BET,
                            error_message=f"Minimum duel wager is {min_bet:,} points.",
                        )

                    bet = min(bet, balance)
                    if bet < min_bet or not self.ledger.withdraw(c_key, bet, f"Duel stake vs {t_key}"):
                        return DuelResult(
                            success=False,
                            challenger=c_key,
                            target=t_key,
                            bet=bet,
                            new_balance=balance,
                            error_code=results.INSUFFICIENT_FUNDS,
                            error_message=f"You need {min_bet:,} points to issue a duel.",
                        )
                duel.bet = bet
                duel.challenger_stake = bet

            self._pending[duel.key] = duel

        self.log.info(
            "Duel issued %s -> %s bet=%d sponsored_pot=%d", c_key, t_key, duel.bet, duel.sponsored_pot
        )
        return self._result(duel, ISSUED, new_balance=self.ledger.balance_of(c_key))

    def accept(self, target: str, challenger: Optional[str] = None, now: Optional[float] = None) -> DuelResult:
        now = self.clock() if now is None else now
        t_key = user_key(target)
        with self._lock:
            duel = self._find(t_key, clean_username(challenger) if challenger else None)
            if duel is None:
                return DuelResult(
                    success=False,
                    challenger=user_key(clean_username(challenger)) if challenger else "",
                    target=t_key,
                    error_code=results.NO_PENDING_DUEL,
                    error_message="You don't have a pending challenge.",
                )

            if self._is_expired(duel, now):
                self._close(duel)
                self._sweep_locked(now)
                return self._result(
                    duel,
                    EXPIRED,
                    success=False,
                    error_code=results.DUEL_EXPIRED,
                    error_message=f"The challenge from {duel.challenger} expired.",
                )

            with self.ledger.lock:
                if not duel.sponsored_pot:
                    if not self.ledger.withdraw(t_key, duel.bet, f"Duel stake vs {duel.challenger}"):
                        self._close(duel)
                        return self._result(
                            duel,
                            DECLINED,
                            success=False,
                            new_balance=self.ledger.balance_of(t_key),
                            error_code=results.INSUFFICIENT_FUNDS,
                            error_message=f"You need {duel.bet:,} points to accept this duel.",
                        )
                    duel.target_stake = duel.bet

                pot = duel.pot
                challenger_wins = self.rng.randrange(2) == 0
                winner = duel.challenger if challenger_wins else duel.target
                loser = duel.target if challenger_wins else duel.challenger
                self.ledger.add_win(winner, pot, f"Duel vs {loser} (won {pot} points)")
                del self._pending[duel.key]
                winner_balance = self.ledger.balance_of(winner)

            self._sweep_locked(now)

        self.log.info("Duel resolved %s beat %s pot=%d", winner, loser, pot)
        return self._result(duel, RESOLVED, winner=winner, loser=loser, new_balance=winner_balance)

    def decline(self, target: str, challenger: Optional[str] = None, now: Optional[float] = None) -> DuelResult:
        now = self.clock() if now is None else now
        t_key = user_key(target)
        with self._lock:
            duel = self._find(t_key, clean_username(challenger) if challenger else None)
            if duel is None:
                return DuelResult(
                    success=False,
                    challenger=user_key(clean_username(challenger)) if challenger else "",
                    target=t_key,
                    error_code=results.NO_PENDING_DUEL,
                    error_message="You don't have a pending challenge.",
                )
            expired = self._is_expired(duel, now)
            self._close(duel)
            self._sweep_locked(now)

        if expired:
            return self._result(
                duel,
                EXPIRED,
                success=False,
                error_code=results.DUEL_EXPIRED,
                error_message=f"The challenge from {duel.challenger} expired.",
            )
        return self._result(duel, DECLINED)

    def _sweep_locked(self, now: float) -> List[DuelKey]:
        expired = [d for d in self._pending.values() if self._is_expired(d, now)]
        for d in expired:
            self._close(d)
            self.log.info("Duel %s -> %s expired", d.challenger, d.target)
        return [d.key for d in expired]

    def sweep(self, now: Optional[float] = None) -> List[DuelKey]:
        """Refund and drop every duel older than `ttl_seconds`."""
        now = self.clock() if now is None else now
        with self._lock:
            return self._sweep_locked(now)
