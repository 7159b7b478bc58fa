"""Import pipeline: reader thread, normalize workers, batcher.

    source --> [reader] --fragments--> [normalize x N] --records--> [batcher] --batches--> caller

Every hand-off is a bounded `Channel`, so a caller that is slow to write
batches holds back the whole pipeline. The caller consumes `batches()` on its
own thread and is the single writer.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Callable, Iterable, Iterator

import structlog

from orgdata.schemas.organisation import OrganisationRecord
from orgdata.services.channel import Channel, ChannelStopped
from orgdata.services.normalizer import normalize
from orgdata.services.reader import SUPPORTED_FORMAT_VERSION, Source, read_organisations

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 10000


def batch_records(
    records: Iterable[OrganisationRecord], batch_size: int = DEFAULT_BATCH_SIZE
) -> Iterator[list[OrganisationRecord]]:
    """Group records into lists of `batch_size`; the last may be shorter."""
    if not 1 <= batch_size <= MAX_BATCH_SIZE:
        raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}")
    batch: list[OrganisationRecord] = []
    for record in records:
        batch.append(record)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


class ImportPipeline:
    """Stream batches of normalized organisations out of a source document.

    Usage::

        pipeline = ImportPipeline(source, nthreads=4, batch_size=500)
        for batch in pipeline.batches():
            store.write_batch(batch)

    `nthreads` defaults to the number of CPUs.
    A failure in any stage stops every other stage and is re-raised from
    `batches()` once the threads have been joined.
    """

    def __init__(
        self,
        source: Source,
        *,
        nthreads: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        supported_version: str = SUPPORTED_FORMAT_VERSION,
    ) -> None:
        if nthreads is None:
            nthreads = os.cpu_count() or 1
        if nthreads < 1:
            raise ValueError(f"nthreads must be at least 1, got {nthreads}")
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}")
        self.source = source
        self.nthreads = nthreads
        self.batch_size = batch_size
        self.supported_version = supported_version

        self._stop = threading.Event()
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()
        self._fragments = Channel(nthreads * 4, producers=1, stop=self._stop)
        self._records = Channel(nthreads * 4, producers=nthreads, stop=self._stop)
        self._batches = Channel(2, producers=1, stop=self._stop)
        self._threads: list[threading.Thread] = []

    # ─── Stages ──────────────────────────────────────────────────────────

    def _read(self) -> None:
        read_organisations(self.source, self._fragments, self.supported_version)

    def _normalize(self) -> None:
        try:
            for fragment in self._fragments:
                record = normalize(fragment)
                if record is not None:
                    self._records.put(record)
        finally:
            self._records.close()

    def _batch(self) -> None:
        try:
            for batch in batch_records(self._records, self.batch_size):
                self._batches.put(batch)
        finally:
            self._batches.close()

    def _run(self, name: str, target: Callable[[], Any]) -> None:
        try:
            target()
        except ChannelStopped:
            pass
        except Exception as exc:
            logger.error("pipeline_stage_failed", stage=name, error=str(exc))
            with self._errors_lock:
                self._errors.append(exc)
            self._stop.set()

    def _start(self) -> None:
        stages: list[tuple[str, Callable[[], Any]]] = [("reader", self._read)]
        stages += [(f"normalize-{i}", self._normalize) for i in range(self.nthreads)]
        stages.append(("batcher", self._batch))
        for name, target in stages:
            thread = threading.Thread(
                target=self._run, args=(name, target), name=f"orgdata-{name}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        """Ask every stage to stop; blocked puts and gets return promptly."""
        self._stop.set()

    def batches(self) -> Iterator[list[OrganisationRecord]]:
        """Yield batches until the source is exhausted.

        Raises the first stage failure, if any, after the stages have ended.
        """
        if self._threads:
            raise RuntimeError("ImportPipeline.batches() may only be consumed once")
        self._start()
        logger.info("pipeline_started", workers=self.nthreads, batch_size=self.batch_size)
        completed = False
        try:
            for batch in self._batches:
                yield batch
            completed = True
        finally:
            if not completed:
                self._stop.set()
            for thread in self._threads:
                thread.join()

        if self._errors:
            raise self._errors[0]


def stream_organisations(
    source: Source,
    *,
    nthreads: int | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    supported_version: str = SUPPORTED_FORMAT_VERSION,
) -> Iterator[list[OrganisationRecord]]:
    """Shorthand for `ImportPipeline(...).batches()`."""
    pipeline = ImportPipeline(
        source, nthreads=nthreads, batch_size=batch_size, supported_version=supported_version
    )
    return pipeline.batches()
