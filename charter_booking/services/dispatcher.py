"""
Side-effect dispatcher.

Drains the side_effect_jobs outbox written by lifecycle transitions:
render the document (once), notify the client, log every delivery
attempt. Delivery is at-least-once; both external calls carry the job's
dedupe key as an Idempotency-Key so the collaborators can drop repeats.
Nothing here ever touches the quote's status.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import (
    DISPATCHER_BASE_DELAY_SECONDS,
    DISPATCHER_CONCURRENCY,
    DISPATCHER_MAX_DELAY_SECONDS,
    DISPATCHER_POLL_SECONDS,
    DISPATCHER_VISIBILITY_TIMEOUT_SECONDS,
)
from ..errors import ExternalServiceError, NotFoundError, StateConflict
from ..integrations.documents import DocumentGeneratorClient
from ..integrations.notifier import NotifierClient
from ..models import (
    JobStatus, MessageChannel, MessageLog, MessageStatus, SideEffectJob, utcnow
)
from .messages import EFFECTS, render_message

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    claimed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    errors: int = 0
    job_ids: List[str] = field(default_factory=list)


def backoff_delay(attempts: int, base: float, maximum: float) -> float:
    """min(base * 2^(attempts - 1), maximum)"""
    return min(base * (2 ** max(attempts - 1, 0)), maximum)


class SideEffectDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        documents: Optional[DocumentGeneratorClient] = None,
        notifier: Optional[NotifierClient] = None,
        clock: Callable[[], datetime] = utcnow,
        base_delay: float = DISPATCHER_BASE_DELAY_SECONDS,
        max_delay: float = DISPATCHER_MAX_DELAY_SECONDS,
        visibility_timeout: float = DISPATCHER_VISIBILITY_TIMEOUT_SECONDS,
        poll_seconds: float = DISPATCHER_POLL_SECONDS,
        concurrency: int = DISPATCHER_CONCURRENCY,
        batch_size: int = 50,
    ):
        self.session_factory = session_factory
        self.documents = documents or DocumentGeneratorClient()
        self.notifier = notifier or NotifierClient()
        self.clock = clock
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.visibility_timeout = timedelta(seconds=visibility_timeout)
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self._semaphore = asyncio.Semaphore(concurrency)
        self._wakeup = asyncio.Event()
        self._stop = asyncio.Event()

    # Loop control

    def wake(self) -> None:
        """Start the next pass now instead of waiting for the poll interval."""
        self._wakeup.set()

    def stop(self) -> None:
        self._stop.set()
        self._wakeup.set()

    async def run_forever(self) -> None:
        logger.info("🚀 Side-effect dispatcher started")
        while not self._stop.is_set():
            self._wakeup.clear()
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"❌ Dispatcher pass failed: {e}")
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("📴 Side-effect dispatcher stopped")

    # Processing

    def _claimable(self, now: datetime):
        stale_before = now - self.visibility_timeout
        return or_(
            and_(SideEffectJob.status == JobStatus.PENDING, SideEffectJob.next_attempt_at <= now),
            and_(SideEffectJob.status == JobStatus.PROCESSING, SideEffectJob.claimed_at < stale_before),
        )

    async def run_once(self, now: Optional[datetime] = None) -> DispatchReport:
        """One pass over due jobs."""
        now = now or self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(SideEffectJob.id)
                .where(self._claimable(now))
                .order_by(SideEffectJob.next_attempt_at)
                .limit(self.batch_size)
            )
            job_ids = list(result.scalars().all())

        report = DispatchReport()
        outcomes = await asyncio.gather(*(self._guarded(job_id, now) for job_id in job_ids))
        for job_id, outcome in zip(job_ids, outcomes):
            if outcome is None:
                continue
            if isinstance(outcome, Exception):
                report.errors += 1
                continue
            report.claimed += 1
            report.job_ids.append(str(job_id))
            if outcome == JobStatus.SUCCEEDED:
                report.succeeded += 1
            elif outcome == JobStatus.PENDING:
                report.retried += 1
            elif outcome == JobStatus.FAILED:
                report.failed += 1

        if report.claimed or report.errors:
            logger.info(
                f"📬 Dispatch pass: {report.succeeded} sent, {report.retried} retrying, "
                f"{report.failed} failed, {report.errors} errors"
            )
        return report

    async def _guarded(self, job_id: uuid.UUID, now: datetime):
        async with self._semaphore:
            try:
                return await self.process(job_id, now)
            except Exception as e:
                logger.exception(f"Job {job_id} crashed outside delivery handling")
                await self._release_claim(job_id, now, e)
                return e

    async def _release_claim(self, job_id: uuid.UUID, now: datetime, error: Exception) -> None:
        """Put a crashed job back in the queue, or fail it once attempts are spent."""
        try:
            async with self.session_factory() as session:
                job = await session.get(SideEffectJob, job_id, populate_existing=True)
                if job is None or job.status != JobStatus.PROCESSING:
                    return
                values = {"last_error": str(error)[:2000], "updated_at": now}
                if job.attempts >= job.max_attempts:
                    values.update(status=JobStatus.FAILED, completed_at=now)
                else:
                    delay = backoff_delay(job.attempts, self.base_delay, self.max_delay)
                    values.update(status=JobStatus.PENDING, next_attempt_at=now + timedelta(seconds=delay))
                await session.execute(
                    update(SideEffectJob)
                    .where(SideEffectJob.id == job_id, SideEffectJob.status == JobStatus.PROCESSING)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as e:
            # The claim still lapses after the visibility timeout
            logger.error(f"Could not release claim on job {job_id}: {e}")

    async def process(self, job_id: uuid.UUID, now: Optional[datetime] = None) -> Optional[JobStatus]:
        """
        Claim and run one job. Returns the job's resulting status, or None
        when another worker holds the claim.
        """
        now = now or self.clock()
        async with self.session_factory() as session:
            claimed = await self._claim(session, job_id, now)
            if not claimed:
                return None

            job = await session.get(SideEffectJob, job_id, populate_existing=True)
            effect = EFFECTS[job.effect_kind]
            client = job.payload.get("client") or {}
            reference = job.payload.get("referenceNumber")
            message = None

            try:
                if effect.document_kind and not job.document_url:
                    job.document_url = await self.documents.render(
                        effect.document_kind, job.payload, job.dedupe_key
                    )
                    await session.commit()

                message = render_message(job.effect_kind, job.payload)
                result = await self.notifier.send(
                    to=client.get("phone"),
                    template=effect.template,
                    message=message,
                    idempotency_key=job.dedupe_key,
                    media_url=job.document_url,
                )

                session.add(self._message_log(job, effect.template, client, message,
                                              MessageStatus.SENT, external_id=result.get("external_id")))
                job.status = JobStatus.SUCCEEDED
                job.completed_at = self.clock()
                job.last_error = None
                await session.commit()
                logger.info(f"✅ {job.effect_kind.value} delivered for {reference}")
                return JobStatus.SUCCEEDED

            except Exception as e:
                retryable = e.retryable if isinstance(e, ExternalServiceError) else True
                if not isinstance(e, ExternalServiceError):
                    logger.exception(f"Unexpected error running job {job_id}")

                session.add(self._message_log(job, effect.template, client, message,
                                              MessageStatus.FAILED, error=str(e)))
                job.last_error = str(e)[:2000]

                if not retryable or job.attempts >= job.max_attempts:
                    job.status = JobStatus.FAILED
                    job.completed_at = self.clock()
                    await session.commit()
                    logger.error(
                        f"❌ {job.effect_kind.value} for {reference} failed permanently "
                        f"after {job.attempts} attempt(s): {e}"
                    )
                    return JobStatus.FAILED

                delay = backoff_delay(job.attempts, self.base_delay, self.max_delay)
                job.status = JobStatus.PENDING
                job.next_attempt_at = now + timedelta(seconds=delay)
                await session.commit()
                logger.warning(
                    f"⚠️ {job.effect_kind.value} for {reference} failed "
                    f"(attempt {job.attempts}/{job.max_attempts}), retrying in {delay:.0f}s: {e}"
                )
                return JobStatus.PENDING

    async def _claim(self, session: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
        result = await session.execute(
            update(SideEffectJob)
            .where(SideEffectJob.id == job_id, self._claimable(now))
            .values(
                status=JobStatus.PROCESSING,
                claimed_at=now,
                attempts=SideEffectJob.attempts + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount == 1

    def _message_log(self, job: SideEffectJob, template: str, client: dict, content: Optional[str],
                     status: MessageStatus, external_id: Optional[str] = None,
                     error: Optional[str] = None) -> MessageLog:
        return MessageLog(
            quote_id=job.quote_id,
            job_id=job.id,
            channel=MessageChannel.WHATSAPP,
            template=template,
            recipient=client.get("phone"),
            content=content,
            media_url=job.document_url,
            status=status,
            external_id=external_id,
            error=error,
            created_at=self.clock(),
        )

    # Staff operations

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[SideEffectJob]:
        async with self.session_factory() as session:
            query = select(SideEffectJob).order_by(SideEffectJob.created_at.desc()).limit(limit)
            if status is not None:
                query = query.where(SideEffectJob.status == status)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def requeue(self, job_id: uuid.UUID) -> SideEffectJob:
        """Put a FAILED job back in the queue with a fresh attempt budget."""
        now = self.clock()
        async with self.session_factory() as session:
            job = await session.get(SideEffectJob, job_id)
            if not job:
                raise NotFoundError(f"Side-effect job {job_id} not found", jobId=str(job_id))
            if job.status != JobStatus.FAILED:
                raise StateConflict(
                    f"Only FAILED jobs can be retried (job is {job.status.value})",
                    currentStatus=job.status.value,
                )
            job.status = JobStatus.PENDING
            job.attempts = 0
            job.next_attempt_at = now
            job.claimed_at = None
            job.completed_at = None
            job.updated_at = now
            await session.commit()

        logger.info(f"🔁 Job {job_id} re-queued by staff")
        self.wake()
        return job
