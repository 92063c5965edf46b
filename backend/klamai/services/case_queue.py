"""
In-process job queue for case analysis.

Request handlers call dispatch() and return at once; a fixed pool of worker
tasks started with the app consumes the jobs. Every dispatch bumps the case's
``version_procesamiento`` so that a run started earlier can recognise it has
been superseded and leave the record alone.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from klamai.core.config import settings
from klamai.db.models import Case, ProcessingStatus
from klamai.services.case_pipeline import CasePipeline, ProcessingJob, case_pipeline
from klamai.utils.exceptions import ProcessingQueueFullError, ProcessingQueueUnavailableError

logger = logging.getLogger(__name__)


class CaseProcessingQueue:
    def __init__(
        self,
        pipeline: Optional[CasePipeline] = None,
        concurrency: Optional[int] = None,
        maxsize: Optional[int] = None,
    ):
        self.pipeline = pipeline or case_pipeline
        self.concurrency = max(1, concurrency or settings.CASE_WORKER_CONCURRENCY)
        self.maxsize = maxsize if maxsize is not None else settings.CASE_QUEUE_MAXSIZE
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"case-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info("Case processing queue started with %d workers", self.concurrency)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Case processing queue stopped")

    async def join(self) -> None:
        """Wait until every job dispatched so far has been processed."""
        if self._queue is not None:
            await self._queue.join()

    def ensure_accepting(self) -> None:
        """Raise unless a job could be queued right now."""
        if not self.running or self._queue is None:
            raise ProcessingQueueUnavailableError()
        if self._queue.full():
            logger.warning("Case queue full, rejecting new job")
            raise ProcessingQueueFullError()

    def dispatch(self, db: Session, case: Case, **context) -> ProcessingJob:
        """
        Register a new processing run for *case* and enqueue it.

        The version bump and the ``pending`` status are committed before the
        job is queued, so the job always carries the latest version. Nothing is
        written when the queue cannot take the job.
        """
        self.ensure_accepting()

        case.version_procesamiento = (case.version_procesamiento or 0) + 1
        case.estado_procesamiento = ProcessingStatus.pending
        db.commit()
        db.refresh(case)

        job = ProcessingJob(caso_id=str(case.id), version=case.version_procesamiento, **context)
        self._queue.put_nowait(job)
        logger.info(
            "Case %s queued for processing (v%s, %d waiting)",
            job.caso_id, job.version, self._queue.qsize(),
        )
        return job

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.pipeline.process(job)
            except Exception:
                logger.exception("Worker %d: job for case %s failed", n, job.caso_id)
            finally:
                self._queue.task_done()


# Singleton
case_queue = CaseProcessingQueue()
