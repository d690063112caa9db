from __future__ import annotations

import logging
import math
import random
from typing import Any, Dict, List, Optional

from . import results
from .config import PriceTable
from .duels import SPONSOR_ACTION, DuelManager
from .ledger import Ledger, user_key
from .results import OperationResult
from .shared.parsing import clean_username


class Marketplace:
    """Point sinks and transfers that are not games: action purchases, gifts and rain."""

    def __init__(
        self,
        ledger: Ledger,
        duels: DuelManager,
        prices: Optional[PriceTable] = None,
        rng: Optional[random.Random] = None,
        fee_rate: float = 0.1,
        min_fee: int = 100,
        max_rain_people: int = 50,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.duels = duels
        self.prices = prices or PriceTable()
        self.rng = rng or random.Random()
        self.fee_rate = float(fee_rate)
        self.min_fee = int(min_fee)
        self.max_rain_people = int(max_rain_people)
        self.log = log or logging.getLogger(__name__)

    def list_actions(self) -> OperationResult:
        return OperationResult(success=True, kind="actions", data={"actions": dict(self.prices.actions)})

    def purchase_action(self, username: str, action_id: str, params: Optional[Dict[str, Any]] = None) -> OperationResult:
        """
        Charge the action price and hand the action back for an external
        collaborator to perform. A purchased `challenge` also opens a sponsored duel.
        """
        action = str(action_id or "").strip().lower()
        params = dict(params or {})
        key = user_key(username)

        if not self.prices.has_action(action):
            return OperationResult(
                success=False, kind="purchase", error_code=results.UNKNOWN_ACTION, error_message=f"Unknown action: {action_id}"
            )

        cost = self.prices.get_action_price(action)

        target = ""
        if action == SPONSOR_ACTION:
            target = user_key(clean_username(params.get("target")))
            if not target:
                return OperationResult(
                    success=False,
                    kind="purchase",
                    error_code=results.INVALID_TARGET,
                    error_message="Usage: buy challenge @user",
                )
            if target == key:
                return OperationResult(
                    success=False,
                    kind="purchase",
                    error_code=results.SELF_CHALLENGE_NOT_ALLOWED,
                    error_message="You can't challenge yourself!",
                )
            if self.duels.get(key, target) is not None:
                return OperationResult(
                    success=False,
                    kind="purchase",
                    error_code=results.DUEL_ALREADY_PENDING,
                    error_message="You already have a pending duel with this user.",
                )

        # lock order is duel manager -> ledger; never hold the ledger lock here
        if not self.ledger.purchase(key, cost, f"Action: {action}"):
            balance = self.ledger.balance_of(key)
            return OperationResult(
                success=False,
                kind="purchase",
                new_balance=balance,
                error_code=results.INSUFFICIENT_FUNDS,
                error_message=f"{action} costs {cost:,} points. Your balance: {balance:,}",
            )

        data: Dict[str, Any] = {"action": action, "cost": cost, "params": params}
        if action == SPONSOR_ACTION:
            duel = self.duels.challenge(key, target, sponsored=True)
            if not duel.success:
                self.ledger.refund(key, cost, f"Refund: {action} ({duel.error_code})")
                return OperationResult(
                    success=False,
                    kind="purchase",
                    new_balance=self.ledger.balance_of(key),
                    error_code=duel.error_code,
                    error_message=duel.error_message,
                )
            data["duel"] = duel.to_dict()

        new_balance = self.ledger.balance_of(key)

        self.log.info("%s bought %s for %d", key, action, cost)
        return OperationResult(success=True, kind="purchase", data=data, new_balance=new_balance)

    def gift_fee(self, amount: int, is_streamer: bool) -> int:
        if is_streamer:
            return 0
        return max(int(math.ceil(amount * self.fee_rate)), self.min_fee)

    def give(self, giver: str, recipient: str, amount: int, is_streamer: bool = False) -> OperationResult:
        g_key = user_key(giver)
        r_key = user_key(clean_username(recipient))
        amount = int(amount)

        if not r_key:
            return OperationResult(success=False, kind="give", error_code=results.INVALID_TARGET, error_message="Who should get the points?")
        if amount <= 0:
            return OperationResult(success=False, kind="give", error_code=results.INVALID_AMOUNT, error_message="Invalid amount. Use a positive number.")
        if r_key == g_key:
            return OperationResult(success=False, kind="give", error_code=results.INVALID_TARGET, error_message="You can't give points to yourself.")

        fee = self.gift_fee(amount, is_streamer)
        total = amount + fee

        with self.ledger.lock:
            balance = self.ledger.balance_of(g_key)
            if balance < total:
                return OperationResult(
                    success=False,
                    kind="give",
                    new_balance=balance,
                    data={"amount": amount, "fee": fee},
                    error_code=results.INSUFFICIENT_FUNDS,
                    error_message=f"You need {total:,} points to give that amount (includes fee of {fee:,} pts).",
                )
            note = " (incl. fee)" if fee > 0 else ""
            self.ledger.add_loss(g_key, total, f"Gifted {amount} pts to {r_key}{note}")
            self.ledger.add_win(r_key, amount, f"Gifted by {g_key}")
            recipient_balance = self.ledger.balance_of(r_key)
            new_balance = self.ledger.balance_of(g_key)

        return OperationResult(
            success=True,
            kind="give",
            new_balance=new_balance,
            data={"recipient": r_key, "amount": amount, "fee": fee, "recipient_balance": recipient_balance},
        )

    def rain(self, username: str, total_amount: int, count: Any, active_chatters: List[str]) -> OperationResult:
        """Split `total_amount` evenly over up to `count` (or "max") active chatters."""
        key = user_key(username)
        total_amount = int(total_amount)
        if total_amount <= 0:
            return OperationResult(success=False, kind="rain", error_code=results.INVALID_AMOUNT, error_message="Invalid amount.")

        eligible = sorted({user_key(c) for c in active_chatters if user_key(c) and user_key(c) != key})
        if not eligible:
            return OperationResult(
                success=False, kind="rain", error_code=results.NO_RECIPIENTS, error_message="No active chatters to rain on!"
            )

        if str(count).strip().lower() == "max":
            n = len(eligible)
        else:
            try:
                n = int(count)
            except (TypeError, ValueError):
                n = 0
            if n <= 0 or n > self.max_rain_people:
                return OperationResult(
                    success=False,
                    kind="rain",
                    error_code=results.INVALID_AMOUNT,
                    error_message=f"Use a number 1-{self.max_rain_people} or \"max\".",
                )
            n = min(n, len(eligible))

        chosen = self.rng.sample(eligible, n)
        per_person = total_amount // n
        remainder = total_amount - per_person * n
        if per_person <= 0:
            return OperationResult(
                success=False,
                kind="rain",
                error_code=results.INVALID_AMOUNT,
                error_message=f"Need at least {n} points to rain on {n} people.",
            )

        with self.ledger.lock:
            if not self.ledger.withdraw(key, total_amount, f"Rain on {n} chatters"):
                return OperationResult(
                    success=False,
                    kind="rain",
                    new_balance=self.ledger.balance_of(key),
                    error_code=results.INSUFFICIENT_FUNDS,
                    error_message="Not enough points to make it rain.",
                )
            payouts: Dict[str, int] = {}
            for i, chatter in enumerate(chosen):
                # first recipient takes the remainder
                amount = per_person + (remainder if i == 0 else 0)
                self.ledger.add_win(chatter, amount, f"Rain from {key}")
                payouts[chatter] = amount
            new_balance = self.ledger.balance_of(key)

        self.log.info("%s rained %d on %d chatters", key, total_amount, n)
        return OperationResult(
            success=True,
            kind="rain",
            new_balance=new_balance,
            data={"total": total_amount, "per_person": per_person, "remainder": remainder, "payouts": payouts},
        )
