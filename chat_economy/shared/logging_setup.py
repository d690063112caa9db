import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _log_cfg(cfg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (cfg or {}).get("logging") or {}


def resolve_log_dir(base_dir: Path, cfg: Optional[Dict[str, Any]]) -> Path:
    d = str(_log_cfg(cfg).get("dir") or "logs").strip() or "logs"
    p = Path(os.path.expanduser(d))
    if not p.is_absolute():
        p = (base_dir / p).resolve()
    return p


def level_from_cfg(cfg: Optional[Dict[str, Any]]) -> int:
    # ECONOMY_LOG_LEVEL wins over the config document
    lvl = os.getenv("ECONOMY_LOG_LEVEL") or _log_cfg(cfg).get("level") or "INFO"
    return _LEVEL_MAP.get(str(lvl).strip().upper(), logging.INFO)


def setup_logging(service_name: str, cfg: Optional[Dict[str, Any]] = None, base_dir: Optional[Path] = None) -> logging.Logger:
    """Configure logging for the economy service.

    - Console output
    - Per-service rotating log: <service>.<YYYY-MM-DD>.log
    - Shared rotating log: latest.log

    Controlled by the "logging" block of the economy config:

      "logging": { "dir": "logs", "level": "DEBUG", "to_file": true }

    The returned logger is the parent of every `chat_economy.*` logger, so
    module-level loggers in the ledger, games and managers inherit its handlers.
    """

    if base_dir is None:
        base_dir = Path.cwd()

    level = level_from_cfg(cfg)
    log_cfg = _log_cfg(cfg)

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    logger.propagate = False

    # Idempotent: clear old handlers
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    sh = logging.StreamHandler(stream=sys.stdout)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    logs_dir = None
    if log_cfg.get("to_file", True):
        logs_dir = resolve_log_dir(base_dir, cfg)
        logs_dir.mkdir(parents=True, exist_ok=True)

        max_bytes = int(log_cfg.get("max_bytes") or 5 * 1024 * 1024)
        backup_count = int(log_cfg.get("backup_count") or 5)
        date_str = time.strftime("%Y-%m-%d")

        for path in (logs_dir / f"{service_name}.{date_str}.log", logs_dir / "latest.log"):
            fh = RotatingFileHandler(
                path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            fh.setLevel(level)
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    _install_excepthook(logger)

    logger.debug(
        "Logging initialized: level=%s logs_dir=%s",
        logging.getLevelName(level),
        str(logs_dir) if logs_dir else "(console only)",
    )

    return logger


def _install_excepthook(logger: logging.Logger) -> None:
    def _excepthook(exctype, value, tb):
        logger.critical("Unhandled exception", exc_info=(exctype, value, tb))
        sys.__excepthook__(exctype, value, tb)

    sys.excepthook = _excepthook
