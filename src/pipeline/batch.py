from __future__ import annotations

"""
Resumable batch processing of discovered schools.

The discovery list is cut into fixed-size batches numbered from 1 by position,
so a batch number names the same slice on every run. Records already present
in the consolidated output or in any batch checkpoint are skipped, which makes
an interrupted run restartable without repeating work.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Iterable, List, Optional, Sequence, Tuple

from src.pipeline.details import DetailExtractor
from src.pipeline.normalize import normalize_record
from src.pipeline.storage import CheckpointStore
from src.schemas import EntityLink, SchoolRecord


SessionFactory = Callable[[], ContextManager[Any]]


@dataclass
class BatchConfig:
    batch_size: int = 50
    item_delay_s: float = 1.5
    item_jitter_s: float = 1.0
    batch_pause_s: float = 5.0
    error_delay_s: float = 3.0
    resume_from_batch: int = 1
    batch_limit: Optional[int] = None


class RecordAccumulator:
    """Processed records keyed by URL, insertion ordered; first record per URL wins."""

    def __init__(self, records: Optional[Iterable[SchoolRecord]] = None) -> None:
        self._by_url: Dict[str, SchoolRecord] = {}
        for r in records or []:
            self.add(r)

    def add(self, record: SchoolRecord) -> bool:
        if record.url in self._by_url:
            return False
        self._by_url[record.url] = record
        return True

    def get(self, url: str) -> Optional[SchoolRecord]:
        return self._by_url.get(url)

    def __contains__(self, url: object) -> bool:
        return url in self._by_url

    def __len__(self) -> int:
        return len(self._by_url)

    def records(self) -> List[SchoolRecord]:
        return list(self._by_url.values())


@dataclass
class RunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    with_email: int = 0
    needs_review: int = 0
    batches: List[int] = field(default_factory=list)
    total_records: int = 0


def plan_batches(links: Sequence[EntityLink], batch_size: int) -> List[Tuple[int, List[EntityLink]]]:
    size = max(1, int(batch_size))
    return [(i // size + 1, list(links[i:i + size])) for i in range(0, len(links), size)]


class BatchOrchestrator:
    """Drive ``DetailExtractor`` over the discovery list with checkpoints.

    - One browser session for the whole run, opened only when work is pending
    - A failing item becomes an error record; the batch continues
    - After each batch: batch checkpoint, then the consolidated output
    - KeyboardInterrupt flushes the output; other fatal errors write an
      emergency backup. Both re-raise.
    """

    def __init__(
        self,
        extractor: DetailExtractor,
        store: CheckpointStore,
        config: Optional[BatchConfig] = None,
        *,
        normalize: Callable[[SchoolRecord], SchoolRecord] = normalize_record,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
        ops_logger: Any = None,
    ) -> None:
        self.extractor = extractor
        self.store = store
        self.config = config or BatchConfig()
        self.normalize = normalize
        self.sleep = sleep
        self.rng = rng
        self.ops_logger = ops_logger
        self.summary = RunSummary()

    def _emit(self, kind: str, **fields: Any) -> None:
        if self.ops_logger is not None:
            self.ops_logger.event(kind, **fields)

    def pending(self, links: Sequence[EntityLink], done: RecordAccumulator) -> List[EntityLink]:
        return [link for link in links if link.url not in done]

    def schedule(self, links: Sequence[EntityLink], done: RecordAccumulator) -> List[Tuple[int, List[EntityLink]]]:
        """Batches to process this run: (number, full batch) with pending work."""
        cfg = self.config
        todo: List[Tuple[int, List[EntityLink]]] = []
        for number, batch in plan_batches(links, cfg.batch_size):
            if number < cfg.resume_from_batch:
                continue
            if not self.pending(batch, done):
                continue
            todo.append((number, batch))
        if cfg.batch_limit is not None and cfg.batch_limit >= 0:
            todo = todo[: cfg.batch_limit]
        return todo

    def _process_item(self, page: Any, link: EntityLink) -> Tuple[SchoolRecord, bool]:
        started = time.perf_counter()
        try:
            record = self.normalize(self.extractor.extract(page, link))
            ok = True
        except Exception as e:
            record = SchoolRecord.from_error(link, str(e) or e.__class__.__name__)
            ok = False
        self._emit(
            "item",
            url=link.url,
            ok=ok,
            found=record.found_count,
            duration_s=round(time.perf_counter() - started, 2),
        )
        return record, ok

    def _process_batch(self, page: Any, number: int, batch: List[EntityLink], done: RecordAccumulator) -> None:
        cfg = self.config
        items = self.pending(batch, done)
        print(f"📦 Batch {number}: {len(items)} pending of {len(batch)}")
        ok_count = 0
        for i, link in enumerate(items, start=1):
            print(f"  ➡️  [{i}/{len(items)}] {link.name}")
            record, ok = self._process_item(page, link)
            done.add(record)
            self.summary.processed += 1
            if ok:
                ok_count += 1
                self.summary.succeeded += 1
                if record.email_found:
                    self.summary.with_email += 1
                if record.needs_review:
                    self.summary.needs_review += 1
                print(f"     ✅ email={record.email} phone={record.phone} website={record.website}")
            else:
                self.summary.failed += 1
                print(f"     ⚠️  Failed: {record.error}")
            if i < len(items):
                delay = cfg.item_delay_s + self.rng() * cfg.item_jitter_s
                if not ok:
                    delay += cfg.error_delay_s
                self.sleep(delay)
        checkpoint = [done.get(link.url) for link in batch if link.url in done]
        self.store.save_batch(number, checkpoint)
        self.store.save_output(done.records())
        self.summary.batches.append(number)
        print(f"  💾 Batch {number} saved ({ok_count}/{len(items)} ok, {len(done)} total)")
        self._emit("batch", batch=number, items=len(items), ok=ok_count, total=len(done))

    def run(self, links: Sequence[EntityLink], session_factory: SessionFactory) -> List[SchoolRecord]:
        """Process every pending link; return the consolidated records."""
        self.summary = RunSummary()
        done = RecordAccumulator(self.store.load_merged())
        if len(done):
            print(f"🔁 Resuming: {len(done)} records already processed")
        todo = self.schedule(links, done)
        if not todo:
            print("✅ Nothing left to process")
            self.store.save_output(done.records())
            self.summary.total_records = len(done)
            return done.records()

        try:
            with session_factory() as page:
                for idx, (number, batch) in enumerate(todo):
                    self._process_batch(page, number, batch, done)
                    if idx < len(todo) - 1:
                        print(f"  ⏸️  Pausing {self.config.batch_pause_s}s before next batch")
                        self.sleep(self.config.batch_pause_s)
        except KeyboardInterrupt:
            path = self.store.save_output(done.records())
            print(f"🛑 Interrupted, progress saved to {path}")
            raise
        except Exception as e:
            path = self.store.emergency_backup(done.records())
            print(f"💥 Fatal error: {e}. Emergency backup: {path}")
            raise

        self.store.save_review(done.records())
        self.summary.total_records = len(done)
        return done.records()
