from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .shared.json_store import expand_env, load_json


# ---------------- prices ----------------
# Customize by editing config/economy.json ("games" / "actions" blocks).
# Channel points are easy to farm, so actions are priced for active viewers.
DEFAULT_GAME_MIN_BETS = {
    "coinflip": 100,
    "dice": 100,
    "slots": 200,
    "roulette": 150,
    "blackjack": 200,
    "wheel": 200,
    "rps": 100,
}

DEFAULT_ACTION_PRICES = {
    "alert": 500,
    "highlight": 300,
    "sound": 1000,
    "timeout": 2000,
    "shoutout": 1500,
    "emote": 800,
    "streak": 3000,
    "poll": 2000,
    "prediction": 10000,
    "countdown": 1000,
    "quote": 400,
    "roast": 1500,
    "compliment": 800,
    "raid": 3000,
    "challenge": 2000,
}

FALLBACK_MIN_BET = 100
FALLBACK_ACTION_PRICE = 1000

DEFAULT_CONFIG: Dict[str, Any] = {
    "games": DEFAULT_GAME_MIN_BETS,
    "actions": DEFAULT_ACTION_PRICES,
    "timings": {
        "blackjack_idle_seconds": 120,
        "blackjack_sweep_seconds": 300,
        "duel_ttl_seconds": 120,
    },
    "gifting": {"fee_rate": 0.1, "min_fee": 100},
    "rain": {"max_people": 50},
    "active_window_seconds": 300,
    "poll_ms": 350,
    # max_transactions: keep only the newest N log entries (0 keeps everything)
    "state": {"ledger_file": "state/ledger.json", "lock_file": "state/economy.lock", "max_transactions": 0},
    "bus": {
        "commands_in": "bus/economy.inbox.jsonl",
        "results_out": "bus/economy.outbox.jsonl",
        "offsets_file": "state/offsets.economy.json",
    },
    "logging": {"dir": "logs", "level": "INFO"},
}


class PriceTable:
    """Static `{game -> minBet, action -> cost}` lookup shared by every component."""

    def __init__(self, games: Optional[Dict[str, int]] = None, actions: Optional[Dict[str, int]] = None):
        self.games = dict(DEFAULT_GAME_MIN_BETS if games is None else games)
        self.actions = dict(DEFAULT_ACTION_PRICES if actions is None else actions)

    def get_game_min_bet(self, game_id: str) -> int:
        return int(self.games.get(str(game_id).lower(), 0) or FALLBACK_MIN_BET)

    def get_action_price(self, action_id: str) -> int:
        return int(self.actions.get(str(action_id).lower(), 0) or FALLBACK_ACTION_PRICE)

    def has_action(self, action_id: str) -> bool:
        return str(action_id).lower() in self.actions

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "PriceTable":
        return cls(games=cfg.get("games"), actions=cfg.get("actions"))


def _int_map(raw: Any, defaults: Dict[str, int]) -> Dict[str, int]:
    out = dict(defaults)
    if not isinstance(raw, dict):
        return out
    for k, v in raw.items():
        # allow both {"coinflip": 100} and {"coinflip": {"minBet": 100}}
        if isinstance(v, dict):
            v = v.get("minBet", v.get("min_bet", v.get("cost")))
        try:
            iv = int(v)
        except (TypeError, ValueError):
            continue
        if iv > 0:
            out[str(k).strip().lower()] = iv
    return out


def normalize_config(raw: Any) -> Dict[str, Any]:
    """Merge a user config document onto DEFAULT_CONFIG and normalize types."""
    out = copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(raw, dict):
        return out

    out["games"] = _int_map(raw.get("games"), DEFAULT_GAME_MIN_BETS)
    out["actions"] = _int_map(raw.get("actions"), DEFAULT_ACTION_PRICES)

    for block in ("timings", "gifting", "rain", "state", "bus", "logging"):
        section = raw.get(block)
        if isinstance(section, dict):
            out[block].update(section)

    for k in ("active_window_seconds", "poll_ms"):
        try:
            out[k] = int(raw.get(k, out[k]))
        except (TypeError, ValueError):
            pass

    for block in ("timings", "rain"):
        for k, v in list(out[block].items()):
            try:
                out[block][k] = int(v)
            except (TypeError, ValueError):
                out[block][k] = DEFAULT_CONFIG[block][k]

    try:
        out["gifting"]["fee_rate"] = float(out["gifting"]["fee_rate"])
        out["gifting"]["min_fee"] = int(out["gifting"]["min_fee"])
    except (TypeError, ValueError):
        out["gifting"] = dict(DEFAULT_CONFIG["gifting"])

    for block in ("state", "bus"):
        out[block] = {k: expand_env(v) for k, v in out[block].items()}

    try:
        out["state"]["max_transactions"] = max(0, int(out["state"]["max_transactions"] or 0))
    except (TypeError, ValueError):
        out["state"]["max_transactions"] = 0

    return out


def load_config(base_dir: Path, path: Optional[Path] = None) -> Dict[str, Any]:
    """Load `.env`, then the JSON config document, then env-var overrides."""
    load_dotenv(base_dir / ".env")

    if path is None:
        env_path = (os.getenv("ECONOMY_CONFIG") or "").strip()
        path = Path(env_path) if env_path else base_dir / "config" / "economy.json"
    if not path.is_absolute():
        path = (base_dir / path).resolve()

    cfg = normalize_config(load_json(path, {}))

    ledger_file = (os.getenv("ECONOMY_LEDGER_FILE") or "").strip()
    if ledger_file:
        cfg["state"]["ledger_file"] = ledger_file

    return cfg


def resolve_path(base_dir: Path, p: Any) -> Path:
    path = Path(str(p or "")).expanduser()
    if path.is_absolute():
        return path
    return (base_dir / path).resolve()
