from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, Optional

from . import results
from .config import PriceTable
from .games import coinflip, roulette, rps
from .games import play_coinflip, play_dice, play_roulette, play_rps, play_slots, play_wheel
from .ledger import Ledger
from .results import GameResult, game_failure


GAME_LABELS = {
    "coinflip": "Coin flip",
    "dice": "Dice roll",
    "slots": "Slots",
    "roulette": "Roulette",
    "wheel": "Wheel of Fortune",
    "rps": "RPS",
}

GAME_ALIASES = {
    "cf": "coinflip",
    "flip": "coinflip",
    "wheeloffortune": "wheel",
    "rockpaperscissors": "rps",
}


def canonical_game(name: str) -> str:
    n = str(name or "").strip().lower()
    return GAME_ALIASES.get(n, n)


class GameEngine:
    """
    Single-shot wagering games.

    The stake is never withdrawn up front: a round is settled with exactly one
    ledger call, `add_win(payout - bet)` or `add_loss(bet)`. Pushes touch nothing.
    """

    def __init__(
        self,
        ledger: Ledger,
        prices: Optional[PriceTable] = None,
        rng: Optional[random.Random] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.prices = prices or PriceTable()
        self.rng = rng or random.Random()
        self.log = log or logging.getLogger(__name__)

    # ---------- shared round flow ----------
    def _play(self, game: str, username: str, bet: int, round_fn: Callable[[], Dict[str, Any]]) -> GameResult:
        bet = int(bet)
        if bet <= 0:
            return game_failure(game, bet, results.INVALID_BET, "Bet must be a positive number.")

        min_bet = self.prices.get_game_min_bet(game)
        if bet < min_bet:
            return game_failure(
                game, bet, results.BELOW_MINIMUM_BET, f"Minimum bet for {game} is {min_bet:,} points."
            )

        with self.ledger.lock:
            acct = self.ledger.get_balance(username)
            if acct is None or acct.balance < bet:
                balance = acct.balance if acct else 0
                return game_failure(
                    game, bet, results.INSUFFICIENT_FUNDS, f"Not enough points. Balance: {balance:,}", balance
                )

            is_all_in = acct.balance == bet
            r = round_fn()
            label = GAME_LABELS.get(game, game)

            if r["push"]:
                self.log.debug("%s push for %s (bet=%d)", game, acct.username, bet)
                return GameResult(
                    success=True,
                    game=game,
                    bet=bet,
                    outcome=r["outcome"],
                    new_balance=acct.balance,
                    is_all_in=is_all_in,
                    push=True,
                    details=r["details"],
                )

            payout = int(r["payout"])
            if payout > 0:
                self.ledger.add_win(
                    username, payout - bet, f"{label}: {r['outcome']} (won {payout})", is_all_in
                )
                winnings: Optional[int] = payout
            else:
                self.ledger.add_loss(username, bet, f"{label}: {r['outcome']} (lost {bet})", is_all_in)
                winnings = None

            new_balance = self.ledger.balance_of(username)

        self.log.info(
            "%s %s bet=%d code=%s payout=%d all_in=%s balance=%d",
            game, acct.username, bet, r["result_code"], payout, is_all_in, new_balance,
        )
        return GameResult(
            success=True,
            game=game,
            bet=bet,
            outcome=r["outcome"],
            winnings=winnings,
            new_balance=new_balance,
            is_all_in=is_all_in,
            details=dict(r["details"], result_code=r["result_code"]),
        )

    # ---------- games ----------
    def coinflip(self, username: str, bet: int, choice: str) -> GameResult:
        side = coinflip.normalize_choice(choice)
        if side is None:
            return game_failure("coinflip", bet, results.INVALID_CHOICE, "Choose heads or tails.")
        return self._play("coinflip", username, bet, lambda: play_coinflip(bet, side, self.rng))

    def dice(self, username: str, bet: int) -> GameResult:
        return self._play("dice", username, bet, lambda: play_dice(bet, self.rng))

    def slots(self, username: str, bet: int) -> GameResult:
        return self._play("slots", username, bet, lambda: play_slots(bet, self.rng))

    def roulette(self, username: str, bet: int, choice: str) -> GameResult:
        pick = roulette.normalize_choice(choice)
        if pick is None:
            return game_failure(
                "roulette", bet, results.INVALID_CHOICE, "Bet on red, black, even, odd, green or a number 0-36."
            )
        return self._play("roulette", username, bet, lambda: play_roulette(bet, pick, self.rng))

    def wheel(self, username: str, bet: int) -> GameResult:
        return self._play("wheel", username, bet, lambda: play_wheel(bet, self.rng))

    def rps(self, username: str, bet: int, choice: str) -> GameResult:
        pick = rps.normalize_choice(choice)
        if pick is None:
            return game_failure("rps", bet, results.INVALID_CHOICE, "Use: rock, paper, or scissors.")
        return self._play("rps", username, bet, lambda: play_rps(bet, pick, self.rng))

    # ---------- dispatcher ----------
    def run_game(self, game: str, username: str, bet: int, choice: Optional[str] = None) -> GameResult:
        """Host every single-shot game behind one entry point."""
        name = canonical_game(game)

        if name == "coinflip":
            if choice is None:
                choice = coinflip.SIDES[self.rng.randrange(2)]
            return self.coinflip(username, bet, choice)
        if name == "dice":
            return self.dice(username, bet)
        if name == "slots":
            return self.slots(username, bet)
        if name == "roulette":
            return self.roulette(username, bet, choice if choice is not None else "red")
        if name == "wheel":
            return self.wheel(username, bet)
        if name == "rps":
            return self.rps(username, bet, choice or "")

        return game_failure(name or "unknown", int(bet), results.UNKNOWN_GAME, f"Unknown game: {game}")
