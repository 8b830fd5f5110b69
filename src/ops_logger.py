from __future__ import annotations

import json
import platform
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil


OPS_KEY = "sdc_ops"


def resource_snapshot() -> Dict[str, Optional[float]]:
    """CPU percent and RSS of the current process (None when unavailable)."""
    cpu_pct = None
    rss_mb = None
    try:
        p = psutil.Process()
        with p.oneshot():
            rss_mb = round(p.memory_info().rss / (1024 * 1024), 1)
            cpu_pct = round(p.cpu_percent(interval=None), 1)
    except Exception:
        pass
    return {"cpu_pct": cpu_pct, "rss_mb": rss_mb}


def host_info() -> Dict[str, str]:
    return {
        "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "platform": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
    }


class OpsLogger:
    """Append-only JSONL logger for operational records.

    - Writes one JSON object per line to a file (UTF-8, newline-delimited)
    - Every record carries ``sdc_ops: 1`` and an ISO timestamp
    - Thread-safe (coarse lock)
    - Best-effort: never raises to caller
    """

    def __init__(self, file_path: Path, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path)
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        self._started = time.perf_counter()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except Exception:
            pass

    def emit(self, record: Dict[str, Any]) -> None:
        record = {OPS_KEY: 1, "ts": datetime.now(timezone.utc).isoformat(), **record}
        try:
            line = json.dumps(record, ensure_ascii=False, default=str)
        except Exception:
            try:
                line = json.dumps({OPS_KEY: 1, "_serialization_error": True, "record_str": str(record)})
            except Exception:
                return
        try:
            with self._lock:
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
        except Exception:
            pass
        if self.also_stdout:
            try:
                print(line)
            except Exception:
                pass

    def event(self, kind: str, **fields: Any) -> None:
        self.emit({"event": kind, **fields})

    def summary(self, **fields: Any) -> None:
        """Final run record with wall time, process resources and host details."""
        self.emit({
            "event": "summary",
            **fields,
            "durations": {"wall_s": round(max(0.0, time.perf_counter() - self._started), 2)},
            "resources": resource_snapshot(),
            "host": host_info(),
        })
