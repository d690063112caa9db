from __future__ import annotations

import json
import logging
import os
import random
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil

from .. import results
from ..blackjack import BlackjackManager
from ..config import PriceTable, load_config, resolve_path
from ..duels import DuelManager
from ..games_core import GameEngine, canonical_game
from ..ledger import Ledger, user_key
from ..marketplace import Marketplace
from ..results import OperationResult
from ..shared.json_store import atomic_write_json, load_json
from ..shared.jsonl_bus import append_jsonl, ensure_file, read_jsonl_since
from ..shared.logging_setup import setup_logging
from ..shared.parsing import clean_username, is_all_in_word, parse_amount, parse_bet


HISTORY_LIMIT = 5
LEADERBOARD_LIMIT = 10
TARGETED_ACTIONS = ("timeout", "shoutout", "roast", "compliment", "raid", "challenge")

USAGE = {
    "gamble": "gamble <game> <bet|all> [options]. Games: coinflip, dice, slots, roulette, blackjack, wheel, rps",
    "coinflip": "coinflip <bet|all> <heads|tails>",
    "dice": "dice <bet|all>",
    "slots": "slots <bet|all>",
    "roulette": "roulette <bet|all> <red|black|even|odd|green|number>",
    "wheel": "wheel <bet|all>",
    "rps": "rps <bet|all> <rock|paper|scissors>",
    "blackjack": "blackjack <bet|all>, then hit or stand",
    "duel": "duel @user <bet|all>; target replies accept [@challenger] or decline [@challenger]",
    "buy": "buy <action> [params]; see actions",
    "give": "give @user <amount>",
    "rain": "rain <amount> <count|max>",
    "deposit": "deposit [@user] <amount>",
}


def _usage(cmd: str) -> OperationResult:
    return OperationResult(success=False, kind="usage", error_code=results.USAGE, error_message="Usage: " + USAGE[cmd])


class EconomyRouter:
    """
    Routes `(username, command, args)` to the ledger, games, blackjack and duels.

    Every call returns a result record (GameResult / BlackjackResult /
    DuelResult / OperationResult); wording is left to the rendering layer.
    """

    def __init__(
        self,
        ledger: Ledger,
        engine: GameEngine,
        blackjack: BlackjackManager,
        duels: DuelManager,
        market: Marketplace,
        clock: Callable[[], float] = time.time,
        active_window_seconds: int = 300,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.engine = engine
        self.blackjack = blackjack
        self.duels = duels
        self.market = market
        self.clock = clock
        self.active_window_seconds = int(active_window_seconds)
        self.log = log or logging.getLogger(__name__)
        self._last_seen: Dict[str, float] = {}

        self._handlers: Dict[str, Callable[..., Any]] = {}
        for names, fn in (
            (("balance", "bal", "points"), self.cmd_balance),
            (("deposit",), self.cmd_deposit),
            (("manualdeposit", "mdeposit"), self.cmd_manual_deposit),
            (("ecoreset", "reseteco"), self.cmd_eco_reset),
            (("gamble", "bet"), self.cmd_gamble),
            (("coinflip", "cf", "dice", "slots", "roulette", "wheel", "wheeloffortune", "rps", "rockpaperscissors"), self.cmd_game),
            (("blackjack", "bj"), self.cmd_blackjack),
            (("hit",), self.cmd_hit),
            (("stand",), self.cmd_stand),
            (("leaderboard", "lb", "top"), self.cmd_leaderboard),
            (("allin", "allins", "allinstats"), self.cmd_all_in_stats),
            (("history", "transactions"), self.cmd_history),
            (("buy", "purchase"), self.cmd_buy),
            (("actions",), self.cmd_actions),
            (("duel",), self.cmd_duel),
            (("accept", "acceptduel"), self.cmd_accept),
            (("decline", "deny", "denyduel"), self.cmd_decline),
            (("give", "givepts", "givepoints"), self.cmd_give),
            (("rain",), self.cmd_rain),
        ):
            for n in names:
                self._handlers[n] = fn

    # ---------- activity ----------
    def note_activity(self, username: str, now: Optional[float] = None) -> None:
        key = user_key(username)
        if key:
            self._last_seen[key] = self.clock() if now is None else now

    def active_chatters(self, now: Optional[float] = None) -> List[str]:
        now = self.clock() if now is None else now
        cut = now - self.active_window_seconds
        for k, t0 in list(self._last_seen.items()):
            if t0 < cut:
                self._last_seen.pop(k, None)
        return sorted(self._last_seen)

    # ---------- commands ----------
    @staticmethod
    def parse_command(text: Any) -> Optional[Tuple[str, List[str]]]:
        if not isinstance(text, str) or not text.startswith("!"):
            return None
        parts = text[1:].split()
        if not parts:
            return None
        return parts[0].strip().lower(), parts[1:]

    def handle_command(
        self,
        username: str,
        command: str,
        args: Optional[List[str]] = None,
        is_broadcaster: bool = False,
        is_mod: bool = False,
    ) -> Any:
        cmd = str(command or "").strip().lower().lstrip("!")
        args = [str(a) for a in (args or [])]
        self.note_activity(username)

        fn = self._handlers.get(cmd)
        if fn is None:
            return OperationResult(
                success=False, kind="command", error_code=results.UNKNOWN_COMMAND, error_message=f"Unknown command: {cmd}"
            )
        return fn(
            username=username,
            cmd=cmd,
            args=args,
            is_broadcaster=is_broadcaster,
            is_mod=is_mod,
        )

    def _resolve_bet(self, username: str, raw: str) -> Tuple[Optional[int], Optional[OperationResult]]:
        balance = self.ledger.balance_of(username)
        if is_all_in_word(raw) and balance <= 0:
            return None, OperationResult(
                success=False,
                kind="bet",
                new_balance=balance,
                error_code=results.INSUFFICIENT_FUNDS,
                error_message="You don't have any points to go all-in with!",
            )
        bet = parse_bet(raw, balance)
        if bet is None or bet <= 0:
            return None, OperationResult(
                success=False, kind="bet", error_code=results.INVALID_BET, error_message="Invalid bet amount."
            )
        return bet, None

    def cmd_balance(self, username: str, **_: Any) -> OperationResult:
        acct = self.ledger.get_balance(username)
        if acct is None:
            return OperationResult(
                success=False,
                kind="balance",
                error_code=results.NO_ACCOUNT,
                error_message="You don't have an account yet. Deposit channel points to get started!",
            )
        return OperationResult(success=True, kind="balance", data=asdict(acct), new_balance=acct.balance)

    def _deposit(self, username: str, args: List[str]) -> OperationResult:
        # deposit <amount> credits the caller; deposit @user <amount> credits someone else
        if not args:
            return _usage("deposit")
        target = user_key(clean_username(args[0])) if len(args) > 1 else user_key(username)
        amount = parse_amount(args[-1])
        if amount is None or amount <= 0 or not target:
            return OperationResult(
                success=False, kind="deposit", error_code=results.INVALID_AMOUNT, error_message="Invalid amount."
            )
        self.ledger.deposit(target, amount)
        return OperationResult(
            success=True,
            kind="deposit",
            data={"username": target, "amount": amount},
            new_balance=self.ledger.balance_of(target),
        )

    def cmd_deposit(self, username: str, args: List[str], is_broadcaster: bool, **_: Any) -> OperationResult:
        if not is_broadcaster:
            return OperationResult(
                success=False,
                kind="deposit_instructions",
                error_code=results.NOT_PERMITTED,
                error_message='Redeem channel points "DEPOSIT: <amount>", then the streamer confirms with deposit <amount>.',
            )
        return self._deposit(username, args)

    def cmd_manual_deposit(self, username: str, args: List[str], is_broadcaster: bool, is_mod: bool, **_: Any) -> OperationResult:
        if not (is_broadcaster or is_mod):
            return OperationResult(success=False, kind="deposit", error_code=results.NOT_PERMITTED, error_message="Mods only.")
        return self._deposit(username, args)

    def cmd_eco_reset(self, username: str, is_broadcaster: bool, is_mod: bool, **_: Any) -> OperationResult:
        if not (is_broadcaster or is_mod):
            return OperationResult(success=False, kind="reset", error_code=results.NOT_PERMITTED, error_message="Mods only.")
        self.ledger.reset_economy()
        self.log.warning("Economy reset requested by %s", user_key(username))
        return OperationResult(success=True, kind="reset")

    def _play(self, username: str, game: str, bet_arg: str, choice: Optional[str]) -> Any:
        bet, failure = self._resolve_bet(username, bet_arg)
        if failure is not None:
            return failure
        if game == "blackjack":
            return self.blackjack.start(username, bet)
        return self.engine.run_game(game, username, bet, choice)

    def cmd_gamble(self, username: str, args: List[str], **_: Any) -> Any:
        if len(args) < 2:
            return _usage("gamble")
        game = canonical_game(args[0])
        if game == "bj":
            game = "blackjack"
        return self._play(username, game, args[1], args[2] if len(args) > 2 else None)

    def cmd_game(self, username: str, cmd: str, args: List[str], **_: Any) -> Any:
        game = canonical_game(cmd)
        needs_choice = game in ("coinflip", "roulette", "rps")
        if not args or (needs_choice and len(args) < 2):
            return _usage(game)
        return self._play(username, game, args[0], args[1] if len(args) > 1 else None)

    def cmd_blackjack(self, username: str, args: List[str], **_: Any) -> Any:
        if args:
            # start() reports a live hand as SESSION_ALREADY_ACTIVE and replaces an idle one
            return self._play(username, "blackjack", args[0], None)
        if self.blackjack.get_session(username) is not None:
            return self.blackjack.start(username, 0)
        return _usage("blackjack")

    def cmd_hit(self, username: str, **_: Any) -> Any:
        return self.blackjack.hit(username)

    def cmd_stand(self, username: str, **_: Any) -> Any:
        return self.blackjack.stand(username)

    def cmd_leaderboard(self, **_: Any) -> OperationResult:
        top = self.ledger.get_leaderboard(LEADERBOARD_LIMIT)
        return OperationResult(
            success=True,
            kind="leaderboard",
            data={"entries": [{"username": a.username, "balance": a.balance} for a in top]},
        )

    def cmd_all_in_stats(self, username: str, **_: Any) -> OperationResult:
        acct = self.ledger.get_balance(username)
        if acct is None:
            return OperationResult(
                success=False, kind="allin", error_code=results.NO_ACCOUNT, error_message="You don't have an account yet."
            )
        total = acct.all_in_wins + acct.all_in_losses
        win_rate = round(acct.all_in_wins / total * 100) if total else 0
        return OperationResult(
            success=True,
            kind="allin",
            new_balance=acct.balance,
            data={"wins": acct.all_in_wins, "losses": acct.all_in_losses, "total": total, "win_rate": win_rate},
        )

    def cmd_history(self, username: str, **_: Any) -> OperationResult:
        txs = self.ledger.get_transactions(username, HISTORY_LIMIT)
        return OperationResult(success=True, kind="history", data={"transactions": [asdict(t) for t in txs]})

    def cmd_actions(self, **_: Any) -> OperationResult:
        return self.market.list_actions()

    def cmd_buy(self, username: str, args: List[str], **_: Any) -> OperationResult:
        if not args:
            return _usage("buy")
        action = args[0].lower()
        params: Dict[str, Any] = {}
        if action in TARGETED_ACTIONS and len(args) > 1:
            params = {"target": clean_username(args[1])}
        elif len(args) > 1:
            params = {"message": " ".join(args[1:])}
        return self.market.purchase_action(username, action, params)

    def cmd_duel(self, username: str, args: List[str], **_: Any) -> Any:
        if not args:
            return _usage("duel")
        sub = args[0].lower()
        if sub == "accept":
            return self.duels.accept(username, args[1] if len(args) > 1 else None)
        if sub in ("decline", "deny"):
            return self.duels.decline(username, args[1] if len(args) > 1 else None)
        return self.duels.challenge(username, args[0], args[1] if len(args) > 1 else None)

    def cmd_accept(self, username: str, args: List[str], **_: Any) -> Any:
        return self.duels.accept(username, args[0] if args else None)

    def cmd_decline(self, username: str, args: List[str], **_: Any) -> Any:
        return self.duels.decline(username, args[0] if args else None)

    def cmd_give(self, username: str, args: List[str], is_broadcaster: bool, **_: Any) -> OperationResult:
        if len(args) < 2:
            return _usage("give")
        amount = parse_amount(args[1])
        if amount is None:
            return OperationResult(
                success=False, kind="give", error_code=results.INVALID_AMOUNT, error_message="Invalid amount."
            )
        return self.market.give(username, args[0], amount, is_streamer=is_broadcaster)

    def cmd_rain(self, username: str, args: List[str], **_: Any) -> OperationResult:
        if len(args) < 2:
            return _usage("rain")
        amount = parse_amount(args[0])
        if amount is None:
            return OperationResult(
                success=False, kind="rain", error_code=results.INVALID_AMOUNT, error_message="Invalid amount."
            )
        return self.market.rain(username, amount, args[1], self.active_chatters())

    # ---------- sweeps ----------
    def sweep(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self.clock() if now is None else now
        expired_hands = self.blackjack.sweep(now)
        expired_duels = self.duels.sweep(now)
        if expired_hands or expired_duels:
            self.log.info("Sweep: blackjack=%d duels=%d", len(expired_hands), len(expired_duels))
        return {"blackjack": expired_hands, "duels": [list(k) for k in expired_duels]}


# ---------------- wiring ----------------
def build_router(
    cfg: Dict[str, Any],
    base_dir: Path,
    rng: Optional[random.Random] = None,
    clock: Callable[[], float] = time.time,
    log: Optional[logging.Logger] = None,
) -> EconomyRouter:
    log = log or logging.getLogger("chat_economy")
    rng = rng or random.Random()
    prices = PriceTable.from_config(cfg)
    timings = cfg.get("timings") or {}

    ledger = Ledger(
        resolve_path(base_dir, cfg["state"]["ledger_file"]),
        clock=clock,
        log=log.getChild("ledger"),
        max_transactions=cfg["state"].get("max_transactions") or None,
    )
    engine = GameEngine(ledger, prices, rng, log=log.getChild("games"))
    blackjack = BlackjackManager(
        ledger, prices, rng, clock=clock, idle_seconds=timings.get("blackjack_idle_seconds", 120), log=log.getChild("blackjack")
    )
    duels = DuelManager(
        ledger, prices, rng, clock=clock, ttl_seconds=timings.get("duel_ttl_seconds", 120), log=log.getChild("duels")
    )
    gifting = cfg.get("gifting") or {}
    market = Marketplace(
        ledger,
        duels,
        prices,
        rng,
        fee_rate=gifting.get("fee_rate", 0.1),
        min_fee=gifting.get("min_fee", 100),
        max_rain_people=(cfg.get("rain") or {}).get("max_people", 50),
        log=log.getChild("market"),
    )
    return EconomyRouter(
        ledger,
        engine,
        blackjack,
        duels,
        market,
        clock=clock,
        active_window_seconds=cfg.get("active_window_seconds", 300),
        log=log.getChild("router"),
    )


# ---------------- single writer lock ----------------
def _pid_alive(pid: int) -> bool:
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


def acquire_writer_lock(lock_path: Path, log: logging.Logger) -> Optional[int]:
    """Take the ledger's single-writer lock (PID file). Returns an fd, or None if held."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    if lock_path.exists():
        try:
            info = json.loads(lock_path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError):
            info = {}
        pid = int(info.get("pid", 0) or 0)
        if pid and _pid_alive(pid):
            log.error("Ledger lock held by pid=%d; another economy service is running", pid)
            return None
        # stale lock
        lock_path.unlink(missing_ok=True)

    try:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_RDWR)
    except FileExistsError:
        log.error("Ledger lock appeared while starting: %s", str(lock_path))
        return None
    os.write(fd, json.dumps({"pid": os.getpid(), "started_ts": int(time.time())}).encode("utf-8"))
    return fd


def release_writer_lock(fd: int, lock_path: Path) -> None:
    os.close(fd)
    lock_path.unlink(missing_ok=True)


# ---------------- bus loop ----------------
class EconomyService:
    """Polls the command inbox, feeds the router, appends results to the outbox."""

    def __init__(self, base_dir: Path, cfg: Dict[str, Any], router: EconomyRouter, log: logging.Logger):
        self.base_dir = base_dir
        self.cfg = cfg
        self.router = router
        self.log = log
        self.poll_ms = int(cfg.get("poll_ms", 350) or 350)
        self.sweep_every = int((cfg.get("timings") or {}).get("blackjack_sweep_seconds", 300))

        bus = cfg.get("bus") or {}
        self.inbox = resolve_path(base_dir, bus["commands_in"])
        self.outbox = resolve_path(base_dir, bus["results_out"])
        self.offsets_path = resolve_path(base_dir, bus["offsets_file"])
        ensure_file(self.inbox)
        ensure_file(self.outbox)
        self.offsets = load_json(self.offsets_path, {"inbox_offset_bytes": 0})
        self._last_sweep = time.time()

    def process_record(self, rec: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        username = str(rec.get("user") or rec.get("username") or "").strip()
        if not username:
            return None

        rtype = str(rec.get("type", "command") or "command").lower()
        if rtype == "chat":
            self.router.note_activity(username)
            parsed = self.router.parse_command(rec.get("text", ""))
            if not parsed:
                return None
            cmd, args = parsed
        else:
            cmd = str(rec.get("command", "") or "")
            args = rec.get("args") or []
            if isinstance(args, str):
                args = args.split()

        result = self.router.handle_command(
            username,
            cmd,
            args,
            is_broadcaster=bool(rec.get("is_broadcaster") or rec.get("isBroadcaster")),
            is_mod=bool(rec.get("is_mod") or rec.get("isMod")),
        )
        return {
            "type": "economy_result",
            "ts": int(time.time()),
            "request_id": rec.get("id") or rec.get("request_id"),
            "user": user_key(username),
            "command": cmd,
            "result": result.to_dict(),
        }

    def poll_once(self) -> int:
        off = int(self.offsets.get("inbox_offset_bytes", 0) or 0)
        recs, off2 = read_jsonl_since(self.inbox, off)
        for rec in recs:
            try:
                out = self.process_record(rec)
            except Exception:
                self.log.exception("Failed to handle record: %r", rec)
                continue
            if out is not None:
                append_jsonl(self.outbox, out)
        if off2 != off:
            self.offsets["inbox_offset_bytes"] = off2
            atomic_write_json(self.offsets_path, self.offsets)
        return len(recs)

    def maybe_sweep(self) -> None:
        now = time.time()
        if now - self._last_sweep < self.sweep_every:
            return
        self._last_sweep = now
        self.router.sweep(now)

    def run(self) -> None:
        self.log.info("Started")
        self.log.info("commands_in=%s", str(self.inbox))
        self.log.info("results_out=%s", str(self.outbox))

        while True:
            try:
                self.poll_once()
                self.maybe_sweep()
                time.sleep(max(0.05, self.poll_ms / 1000.0))
            except Exception:
                self.log.exception("Loop error")
                time.sleep(0.5)


def main() -> None:
    base_dir = Path(os.getenv("ECONOMY_HOME") or Path.cwd()).resolve()
    cfg = load_config(base_dir)
    log = setup_logging("chat_economy", cfg, base_dir)

    lock_path = resolve_path(base_dir, cfg["state"]["lock_file"])
    fd = acquire_writer_lock(lock_path, log)
    if fd is None:
        raise SystemExit(1)

    try:
        router = build_router(cfg, base_dir, log=log)
        EconomyService(base_dir, cfg, router, log).run()
    except KeyboardInterrupt:
        log.info("Stopped")
    finally:
        release_writer_lock(fd, lock_path)


if __name__ == "__main__":
    main()
