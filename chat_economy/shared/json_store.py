import json
import os
import re
from pathlib import Path
from typing import Any


_ENV_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_env(s: Any) -> Any:
    """Expand ${VARS} inside strings using os.environ (missing vars -> "")."""
    if not isinstance(s, str):
        return s
    return _ENV_RE.sub(lambda m: os.getenv(m.group(1), ""), s)


def load_json(p: Path, default: Any) -> Any:
    """Read a JSON document, returning `default` when missing or unreadable."""
    try:
        if p.exists():
            return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        pass
    return default


def atomic_write_json(p: Path, obj: Any) -> None:
    """Write `obj` next to `p` and rename it into place.

    The temp file is fsynced before the rename so a crash leaves either the old
    snapshot or the new one, never a truncated file.
    """
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False, indent=2))
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(p)
