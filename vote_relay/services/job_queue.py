from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from uuid import uuid4

from opentelemetry import trace

from vote_relay.core.config import get_settings
from vote_relay.core.errors import QueueClosedError
from vote_relay.core.telemetry import current_job_id
from vote_relay.schemas.votes import JobStatus, SubmissionJob, VoteEntry
from vote_relay.services.aggregator import VoteDelta, aggregate_votes
from vote_relay.services.job_store import JobStore, get_job_store
from vote_relay.services.vote_updater import VoteUpdater, get_vote_updater

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class QueuedVoteJob:
    record: SubmissionJob
    deltas: list[VoteDelta]


class VoteJobQueue:
    """In-process FIFO of vote submissions with a durable record per job.

    ``submit`` persists the job as queued and returns at once. Up to
    ``concurrency`` jobs run at a time; each is moved through
    queued -> processing -> completed | failed and re-saved on every step.
    Pending jobs live only in memory and are lost when the process exits.
    """

    def __init__(self, store: JobStore, updater: VoteUpdater, *, concurrency: int = 1) -> None:
        self.store = store
        self.updater = updater
        self.concurrency = max(1, concurrency)
        self._pending: deque[QueuedVoteJob] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = True

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def active(self) -> int:
        return self._active

    async def submit(self, key_id: str | None, votes: list[VoteEntry], results: Any) -> str:
        if not self._accepting:
            raise QueueClosedError("vote queue is shutting down")
        record = SubmissionJob(
            job_id=uuid4().hex,
            received_at=_now(),
            status=JobStatus.QUEUED,
            key_id=key_id or None,
            votes=votes,
            results=results,
        )
        await self.store.save(record)
        self._pending.append(QueuedVoteJob(record=record, deltas=aggregate_votes(votes)))
        self._idle.clear()
        logger.info("vote job queued job_id=%s targets=%s", record.job_id, len(self._pending[-1].deltas))
        self._drain()
        return record.job_id

    async def join(self) -> None:
        await self._idle.wait()

    async def shutdown(self) -> None:
        self._accepting = False
        if self._pending:
            logger.warning("dropping %s queued vote jobs on shutdown", len(self._pending))
            self._pending.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._idle.set()

    def _drain(self) -> None:
        while self._accepting and self._active < self.concurrency and self._pending:
            job = self._pending.popleft()
            self._active += 1
            task = asyncio.create_task(self._run(job), name=f"vote-job-{job.record.job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._active -= 1
        if not task.cancelled() and task.exception() is not None:
            logger.error("vote job task crashed: %s", task.exception())
        self._drain()
        if self._active == 0 and not self._pending:
            self._idle.set()

    async def _run(self, job: QueuedVoteJob) -> None:
        record = job.record
        current_job_id.set(record.job_id)
        with tracer.start_as_current_span("vote_job.process") as span:
            span.set_attribute("job.id", record.job_id)
            record = record.model_copy(update={"status": JobStatus.PROCESSING, "started_at": _now()})
            await self._persist(record)

            try:
                outcome = await self.updater.apply(record.key_id, job.deltas, record.results)
            except Exception as exc:
                record = record.model_copy(
                    update={"status": JobStatus.FAILED, "failed_at": _now(), "error": str(exc)}
                )
                span.set_attribute("job.status", record.status.value)
                logger.error("vote update failed for job_id=%s: %s", record.job_id, exc)
                await self._persist(record)
                return

            record = record.model_copy(
                update={"status": JobStatus.COMPLETED, "completed_at": _now(), "update_result": outcome}
            )
            span.set_attribute("job.status", record.status.value)
            logger.info(
                "vote job completed job_id=%s updated=%s results_saved=%s",
                record.job_id,
                outcome.updated,
                outcome.results_saved,
            )
            await self._persist(record)

    async def _persist(self, record: SubmissionJob) -> None:
        try:
            await self.store.save(record)
        except Exception as exc:
            logger.error("vote record update error job_id=%s status=%s: %s", record.job_id, record.status.value, exc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache
def get_job_queue() -> VoteJobQueue:
    settings = get_settings()
    return VoteJobQueue(get_job_store(), get_vote_updater(), concurrency=settings.vote_job_concurrency)
