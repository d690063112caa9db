from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .shared.json_store import atomic_write_json, load_json


SYSTEM_ACCOUNT = "system"

TX_DEPOSIT = "deposit"
TX_WITHDRAW = "withdraw"
TX_WIN = "win"
TX_LOSS = "loss"
TX_PURCHASE = "purchase"
TX_RESET = "reset"
TX_TYPES = (TX_DEPOSIT, TX_WITHDRAW, TX_WIN, TX_LOSS, TX_PURCHASE, TX_RESET)


def user_key(username: str) -> str:
    return str(username or "").strip().lstrip("@").lower()


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Account:
    username: str
    balance: int = 0
    total_deposited: int = 0
    total_won: int = 0
    total_lost: int = 0
    all_in_wins: int = 0
    all_in_losses: int = 0
    last_updated: str = ""

    @classmethod
    def from_dict(cls, key: str, d: Dict[str, Any]) -> "Account":
        # accepts both our snake_case snapshot and the old camelCase JSON database
        def pick(*names: str) -> int:
            for n in names:
                if d.get(n) is not None:
                    return int(d[n])
            return 0

        return cls(
            username=user_key(d.get("username") or key),
            balance=max(0, pick("balance")),
            total_deposited=pick("total_deposited", "totalDeposited"),
            total_won=pick("total_won", "totalWon"),
            total_lost=pick("total_lost", "totalLost"),
            all_in_wins=pick("all_in_wins", "allInWins"),
            all_in_losses=pick("all_in_losses", "allInLosses"),
            last_updated=str(d.get("last_updated") or d.get("lastUpdated") or ""),
        )


@dataclass(frozen=True)
class Transaction:
    id: int
    username: str
    type: str
    amount: int
    description: str
    timestamp: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Transaction":
        return cls(
            id=int(d["id"]),
            username=user_key(d.get("username", "")),
            type=str(d.get("type", "")),
            amount=int(d.get("amount", 0) or 0),
            description=str(d.get("description", "") or ""),
            timestamp=str(d.get("timestamp", "") or ""),
        )


class Ledger:
    """
    Owns every account balance and the append-only transaction log.

    This is the only component allowed to mutate money. All mutations run under
    `self.lock` (re-entrant), and callers that need check-then-settle atomicity
    (games, blackjack, duels) hold the same lock across both steps.

    Persistence is write-through: each mutating call commits an atomic JSON
    snapshot before it returns. With `path=None` the ledger is memory-only.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        log: Optional[logging.Logger] = None,
        max_transactions: Optional[int] = None,
    ) -> None:
        self.path = path
        self.log = log or logging.getLogger(__name__)
        self.lock = threading.RLock()
        self.max_transactions = max_transactions
        self.last_commit_ok = True
        self._clock = clock

        self._accounts: Dict[str, Account] = {}
        self._transactions: List[Transaction] = []
        self._next_tx_id = 1

        if self.path is not None:
            self._load()

    # ---------- persistence ----------
    def _load(self) -> None:
        data = load_json(self.path, None)
        if not isinstance(data, dict):
            if self.path.exists():
                self.log.warning("Ledger snapshot unreadable, starting empty: %s", str(self.path))
            else:
                self._commit()
            return

        accounts = data.get("accounts", data.get("userBalances")) or {}
        for key, rec in accounts.items():
            if isinstance(rec, dict):
                acct = Account.from_dict(key, rec)
                self._accounts[acct.username] = acct

        for rec in data.get("transactions") or []:
            try:
                self._transactions.append(Transaction.from_dict(rec))
            except (KeyError, TypeError, ValueError):
                self.log.warning("Skipping malformed transaction record: %r", rec)

        highest = max((t.id for t in self._transactions), default=0)
        stored = int(data.get("next_transaction_id", data.get("nextTransactionId", 1)) or 1)
        self._next_tx_id = max(stored, highest + 1)

        self.log.info(
            "Ledger loaded: accounts=%d transactions=%d next_id=%d",
            len(self._accounts),
            len(self._transactions),
            self._next_tx_id,
        )

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "accounts": {k: asdict(a) for k, a in self._accounts.items()},
                "transactions": [asdict(t) for t in self._transactions],
                "next_transaction_id": self._next_tx_id,
            }

    def _commit(self) -> None:
        if self.max_transactions and len(self._transactions) > self.max_transactions:
            self._transactions = self._transactions[-self.max_transactions:]
        if self.path is None:
            return
        try:
            atomic_write_json(self.path, self.snapshot())
            self.last_commit_ok = True
        except OSError:
            # in-memory state stays authoritative; the next commit retries the full snapshot
            self.last_commit_ok = False
            self.log.exception("Failed to commit ledger snapshot to %s", str(self.path))

    # ---------- internals ----------
    def _now_iso(self) -> str:
        return _iso(self._clock())

    def _account(self, username: str) -> Optional[Account]:
        return self._accounts.get(user_key(username))

    def _create(self, username: str) -> Account:
        acct = Account(username=user_key(username), last_updated=self._now_iso())
        self._accounts[acct.username] = acct
        return acct

    def _append(self, username: str, tx_type: str, amount: int, description: str) -> Transaction:
        tx = Transaction(
            id=self._next_tx_id,
            username=user_key(username),
            type=tx_type,
            amount=int(amount),
            description=description,
            timestamp=self._now_iso(),
        )
        self._next_tx_id += 1
        self._transactions.append(tx)
        self.log.debug("tx #%d %s %s %d (%s)", tx.id, tx.username, tx_type, tx.amount, description)
        return tx

    # ---------- reads ----------
    def get_balance(self, username: str) -> Optional[Account]:
        """Return a copy of the account, or None when it does not exist."""
        with self.lock:
            acct = self._account(username)
            return dataclasses.replace(acct) if acct else None

    def balance_of(self, username: str) -> int:
        with self.lock:
            acct = self._account(username)
            return acct.balance if acct else 0

    def get_transactions(self, username: str, limit: int = 10) -> List[Transaction]:
        key = user_key(username)
        with self.lock:
            txs = [t for t in self._transactions if t.username == key]
        # ids increase in append order; loaded timestamps are not comparable strings
        txs.sort(key=lambda t: t.id, reverse=True)
        return txs[:max(0, int(limit))]

    def get_leaderboard(self, limit: int = 10) -> List[Account]:
        with self.lock:
            accts = [dataclasses.replace(a) for a in self._accounts.values()]
        accts.sort(key=lambda a: a.balance, reverse=True)
        return accts[:max(0, int(limit))]

    def transaction_count(self) -> int:
        with self.lock:
            return len(self._transactions)

    # ---------- mutations ----------
    def deposit(self, username: str, amount: int) -> None:
        amount = int(amount)
        if amount <= 0:
            raise ValueError(f"deposit amount must be positive, got {amount}")
        with self.lock:
            acct = self._account(username) or self._create(username)
            acct.balance += amount
            acct.total_deposited += amount
            acct.last_updated = self._now_iso()
            self._append(username, TX_DEPOSIT, amount, f"Deposited {amount} channel points")
            self._commit()

    def withdraw(self, username: str, amount: int, description: Optional[str] = None) -> bool:
        """Debit `amount` if the account can cover it. The only gate against overspending."""
        amount = int(amount)
        if amount <= 0:
            return False
        with self.lock:
            acct = self._account(username)
            if acct is None or acct.balance < amount:
                return False
            acct.balance -= amount
            acct.last_updated = self._now_iso()
            self._append(username, TX_WITHDRAW, amount, description or f"Withdrew {amount} points")
            self._commit()
            return True

    def add_win(self, username: str, amount: int, description: str, is_all_in: bool = False) -> None:
        amount = int(amount)
        if amount < 0:
            raise ValueError(f"win amount must be >= 0, got {amount}")
        with self.lock:
            acct = self._account(username) or self._create(username)
            acct.balance += amount
            acct.total_won += amount
            if is_all_in:
                acct.all_in_wins += 1
            acct.last_updated = self._now_iso()
            self._append(username, TX_WIN, amount, description)
            self._commit()

    def add_loss(self, username: str, amount: int, description: str, is_all_in: bool = False) -> None:
        amount = int(amount)
        if amount < 0:
            raise ValueError(f"loss amount must be >= 0, got {amount}")
        with self.lock:
            acct = self._account(username)
            if acct is None:
                return
            acct.balance = max(0, acct.balance - amount)
            acct.total_lost += amount
            if is_all_in:
                acct.all_in_losses += 1
            acct.last_updated = self._now_iso()
            self._append(username, TX_LOSS, amount, description)
            self._commit()

    def stake(self, username: str, amount: int, description: str) -> bool:
        """Atomically check and debit a wager as a loss-typed entry.

        Used where the funds leave the balance before the outcome is known
        (a blackjack hand in progress). Fails without mutation like `withdraw`.
        """
        amount = int(amount)
        if amount <= 0:
            return False
        with self.lock:
            acct = self._account(username)
            if acct is None or acct.balance < amount:
                return False
            self.add_loss(username, amount, description)
            return True

    def refund(self, username: str, amount: int, description: str, reverses_loss: bool = False) -> None:
        """Return a stake that never reached an outcome.

        Logged as a `win` entry but not counted in `total_won`. With
        `reverses_loss` the stake was debited through `stake`, so `total_lost`
        is walked back by the same amount.
        """
        amount = int(amount)
        if amount <= 0:
            return
        with self.lock:
            acct = self._account(username) or self._create(username)
            acct.balance += amount
            if reverses_loss:
                acct.total_lost = max(0, acct.total_lost - amount)
            acct.last_updated = self._now_iso()
            self._append(username, TX_WIN, amount, description)
            self._commit()

    def purchase(self, username: str, cost: int, description: str) -> bool:
        with self.lock:
            if not self.withdraw(username, cost, f"Purchase: {description}"):
                return False
            self._append(username, TX_PURCHASE, int(cost), description)
            self._commit()
            return True

    def reset_economy(self) -> None:
        with self.lock:
            now = self._now_iso()
            for acct in self._accounts.values():
                acct.balance = 0
                acct.total_won = 0
                acct.total_lost = 0
                acct.all_in_wins = 0
                acct.all_in_losses = 0
                acct.last_updated = now
            self._append(SYSTEM_ACCOUNT, TX_RESET, 0, "Economy reset")
            self._commit()
            self.log.warning("Economy reset: %d accounts zeroed", len(self._accounts))
