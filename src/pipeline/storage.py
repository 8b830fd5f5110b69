from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from src.schemas import EntityLink, SchoolRecord


OUTPUT_FILENAME = "schools_data_complete.json"
LINKS_FILENAME = "schools_data_links.json"
REVIEW_FILENAME = "schools_data_review.json"
BATCH_PREFIX = "schools_data_batch_"
BACKUP_PREFIX = "schools_data_emergency_backup_"

_BATCH_RE = re.compile(rf"^{BATCH_PREFIX}(\d+)\.json$")

_records_adapter = TypeAdapter(List[SchoolRecord])
_links_adapter = TypeAdapter(List[EntityLink])


class SourceFileError(Exception):
    """Discovery list missing, unreadable or empty."""


def write_json_atomic(path: Path, payload: str) -> Path:
    """Write via a sibling temp file and ``os.replace`` so readers never see partial JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
    return path


def _dump_records(records: Iterable[SchoolRecord]) -> str:
    return _records_adapter.dump_json(list(records), indent=2).decode("utf-8")


def load_links(path: Path) -> List[EntityLink]:
    """Read a discovery list; raise ``SourceFileError`` when unusable."""
    path = Path(path)
    if not path.exists() or not path.is_file():
        raise SourceFileError(f"source file not found: {path}")
    try:
        links = _links_adapter.validate_json(path.read_bytes())
    except (ValidationError, ValueError, OSError) as e:
        raise SourceFileError(f"invalid source file {path}: {e}") from e
    if not links:
        raise SourceFileError(f"source file is empty: {path}")
    return links


def save_links(path: Path, links: Iterable[EntityLink]) -> Path:
    payload = _links_adapter.dump_json(list(links), indent=2).decode("utf-8")
    return write_json_atomic(Path(path), payload)


class CheckpointStore:
    """File layout for batch checkpoints, the consolidated output and backups.

    All files live in ``data_dir``:
    - ``schools_data_batch_<N>.json``: one processed batch
    - ``schools_data_complete.json``: every record processed so far
    - ``schools_data_emergency_backup_<ms>.json``: dump after a fatal error
    """

    def __init__(self, data_dir: Path, output_filename: str = OUTPUT_FILENAME) -> None:
        self.data_dir = Path(data_dir)
        self.output_path = self.data_dir / output_filename
        self.review_path = self.data_dir / REVIEW_FILENAME

    def batch_path(self, number: int) -> Path:
        return self.data_dir / f"{BATCH_PREFIX}{number}.json"

    def list_batches(self) -> List[Tuple[int, Path]]:
        """Existing batch checkpoints in ascending batch number."""
        if not self.data_dir.exists():
            return []
        found: List[Tuple[int, Path]] = []
        for p in self.data_dir.iterdir():
            m = _BATCH_RE.match(p.name)
            if m and p.is_file():
                found.append((int(m.group(1)), p))
        return sorted(found)

    def _read_records(self, path: Path) -> List[SchoolRecord]:
        try:
            return _records_adapter.validate_json(path.read_bytes())
        except Exception as e:
            print(f"⚠️  Ignoring unreadable checkpoint {path.name}: {e}")
            return []

    def load_output(self) -> List[SchoolRecord]:
        if not self.output_path.exists():
            return []
        return self._read_records(self.output_path)

    def load_merged(self) -> List[SchoolRecord]:
        """Main output, then batch checkpoints in order; first record per URL wins."""
        merged: List[SchoolRecord] = []
        seen = set()
        sources = [self.load_output()] + [self._read_records(p) for _, p in self.list_batches()]
        for records in sources:
            for r in records:
                if r.url not in seen:
                    seen.add(r.url)
                    merged.append(r)
        return merged

    def save_batch(self, number: int, records: Iterable[SchoolRecord]) -> Path:
        return write_json_atomic(self.batch_path(number), _dump_records(records))

    def save_output(self, records: Iterable[SchoolRecord]) -> Path:
        return write_json_atomic(self.output_path, _dump_records(records))

    def save_review(self, records: Iterable[SchoolRecord]) -> Optional[Path]:
        flagged = [r for r in records if r.needs_review]
        if not flagged and not self.review_path.exists():
            return None
        return write_json_atomic(self.review_path, _dump_records(flagged))

    def emergency_backup(self, records: Iterable[SchoolRecord]) -> Path:
        path = self.data_dir / f"{BACKUP_PREFIX}{int(time.time() * 1000)}.json"
        return write_json_atomic(path, _dump_records(records))
