# dewey/dispatch.py

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from dewey.entities import Base, DeferredJob, QueueMessage

logger = logging.getLogger("dewey_bot")

SERVER_SENDER_ID = "dewey_server"

JobRunner = Callable[[DeferredJob], Awaitable[object]]


def build_db_session_factory(database_url: str) -> Callable[[], Session]:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)
    Base.metadata.create_all(engine)
    maker = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    def _factory() -> Session:
        return maker()

    return _factory


class InProcessDispatcher:
    """
    Runs phase 2 as a task on the current event loop. dispatch() returns as
    soon as the task is scheduled.
    """

    def __init__(self, runner: JobRunner):
        self.runner = runner
        self._in_flight: Set[asyncio.Task] = set()

    async def dispatch(self, job: DeferredJob) -> None:
        task = asyncio.create_task(self._run(job))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, job: DeferredJob) -> None:
        try:
            await self.runner(job)
        except Exception:
            logger.exception("Deferred job failed outside the pipeline boundary")

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)


class QueueDispatcher:
    """
    Writes the job as a QueueMessage row for worker_main.py to pick up.
    receiver_id addresses the worker process that should run it.
    """

    def __init__(self, session_factory: Callable[[], Session], receiver_id: str, sender_id: str = SERVER_SENDER_ID):
        self.SessionFactory = session_factory
        self.receiver_id = receiver_id
        self.sender_id = sender_id

    def _insert(self, job: DeferredJob) -> str:
        session = self.SessionFactory()
        try:
            row = QueueMessage(
                sender_id=self.sender_id,
                receiver_id=str(self.receiver_id),
                type=job.type,
                payload=job.model_dump(),
            )
            session.add(row)
            session.commit()
            return row.id
        finally:
            session.close()

    async def dispatch(self, job: DeferredJob) -> None:
        row_id = await asyncio.to_thread(self._insert, job)
        logger.info(f"Enqueued deferred job {row_id} for receiver {self.receiver_id}")

    async def drain(self) -> None:
        return None


class QueueGuard:
    """
    Polls the queue for rows addressed to receiver_id, claims them (deleting
    the rows in the same transaction) and runs each on the event loop, with
    at most max_concurrent jobs in flight.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: JobRunner,
        receiver_id: str,
        poll_interval: float = 1.0,
        max_concurrent: int = 4,
    ):
        self.SessionFactory = session_factory
        self.runner = runner
        self.receiver_id = receiver_id
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def claim(self, limit: int) -> list:
        session = self.SessionFactory()
        try:
            query = (
                session.query(QueueMessage)
                .filter(QueueMessage.receiver_id == str(self.receiver_id))
                .order_by(QueueMessage.created_at.asc())
            )
            if session.get_bind().dialect.name != "sqlite":
                query = query.with_for_update(skip_locked=True)
            rows = query.limit(limit).all()

            jobs = [{"id": r.id, "type": r.type, "payload": r.payload} for r in rows]
            for r in rows:
                session.delete(r)
            session.commit()
            return jobs
        finally:
            session.close()

    async def _run_job(self, job: dict) -> None:
        try:
            if job["type"] != "deferred_processing":
                logger.warning(f"Skipping queue message {job['id']} of unknown type {job['type']}")
                return
            await self.runner(DeferredJob(**job["payload"]))
        except Exception:
            logger.exception(f"Error processing queue message {job['id']}")
        finally:
            self._in_flight.discard(job["id"])

    async def poll_once(self) -> int:
        available_slots = self.max_concurrent - len(self._in_flight)
        if available_slots <= 0:
            return 0

        jobs = await asyncio.to_thread(self.claim, available_slots)
        started = 0
        for job in jobs:
            if job["id"] in self._in_flight:
                continue
            self._in_flight.add(job["id"])
            task = asyncio.create_task(self._run_job(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        return started

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        logger.info(f"QueueGuard running - receiver_id={self.receiver_id} (max_concurrent={self.max_concurrent})")
        while stop is None or not stop.is_set():
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
