import json
from pathlib import Path
from typing import Any, Dict, List, Tuple


def ensure_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.write_text("", encoding="utf-8")


def append_jsonl(path: Path, obj: Dict[str, Any]) -> None:
    ensure_file(path)
    with path.open("a", encoding="utf-8", newline="\n") as f:
        f.write(json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n")


def read_jsonl_since(path: Path, offset: int) -> Tuple[List[Dict[str, Any]], int]:
    """
    Read JSONL records since byte offset. Returns (records, new_offset).
    Safe for append-only logs; a trailing partial line is left for the next read.
    """
    if not path.exists():
        return [], offset

    recs: List[Dict[str, Any]] = []
    with path.open("rb") as f:
        f.seek(offset)
        while True:
            line = f.readline()
            if not line:
                break
            if not line.endswith(b"\n"):
                break
            offset += len(line)
            s = line.decode("utf-8", errors="replace").strip()
            if not s:
                continue
            try:
                rec = json.loads(s)
            except ValueError:
                # ignore malformed lines
                continue
            if isinstance(rec, dict):
                recs.append(rec)
    return recs, offset
