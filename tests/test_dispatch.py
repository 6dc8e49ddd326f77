import asyncio
from unittest.mock import AsyncMock

from dewey.dispatch import InProcessDispatcher, QueueDispatcher, QueueGuard, build_db_session_factory
from dewey.entities import DeferredJob, QueueMessage
from tests.conftest import make_interaction, string_opt


def make_job(title="Dune", provider="gemini"):
    return DeferredJob(interaction=make_interaction("synopsis", [string_opt("title", title)]), provider=provider)


async def test_in_process_dispatch_returns_before_the_job_runs():
    started = asyncio.Event()
    release = asyncio.Event()
    seen = []

    async def runner(job):
        started.set()
        await release.wait()
        seen.append(job)

    dispatcher = InProcessDispatcher(runner)
    job = make_job()

    await dispatcher.dispatch(job)
    assert dispatcher.in_flight == 1
    assert seen == []

    await asyncio.wait_for(started.wait(), 1)
    release.set()
    await dispatcher.drain()
    assert seen == [job]


async def test_in_process_failures_are_contained():
    dispatcher = InProcessDispatcher(AsyncMock(side_effect=RuntimeError("boom")))

    await dispatcher.dispatch(make_job())
    await dispatcher.drain()


async def test_queue_round_trip_is_addressed_by_receiver(tmp_path):
    factory = build_db_session_factory(f"sqlite:///{tmp_path / 'queue.db'}")
    await QueueDispatcher(factory, "worker-a").dispatch(make_job("Dune", "claude"))
    await QueueDispatcher(factory, "worker-b").dispatch(make_job("Emma"))

    runner = AsyncMock()
    guard = QueueGuard(factory, runner, receiver_id="worker-a")

    assert await guard.poll_once() == 1
    await asyncio.gather(*list(guard._tasks))

    job = runner.await_args.args[0]
    assert isinstance(job, DeferredJob)
    assert job.provider == "claude"
    assert job.interaction["data"]["options"][0]["value"] == "Dune"

    # claimed rows are gone; the other receiver's row is untouched
    assert guard.claim(10) == []
    assert len(QueueGuard(factory, runner, receiver_id="worker-b").claim(10)) == 1


async def test_guard_respects_concurrency_cap(tmp_path):
    factory = build_db_session_factory(f"sqlite:///{tmp_path / 'queue.db'}")
    dispatcher = QueueDispatcher(factory, "worker-a")
    for title in ("Dune", "Emma", "Beloved"):
        await dispatcher.dispatch(make_job(title))

    release = asyncio.Event()

    async def runner(job):
        await release.wait()

    guard = QueueGuard(factory, runner, receiver_id="worker-a", max_concurrent=2)

    assert await guard.poll_once() == 2
    assert await guard.poll_once() == 0

    release.set()
    await asyncio.gather(*list(guard._tasks))
    assert await guard.poll_once() == 1
    await asyncio.gather(*list(guard._tasks))


async def test_guard_skips_unknown_message_types(tmp_path):
    factory = build_db_session_factory(f"sqlite:///{tmp_path / 'queue.db'}")
    session = factory()
    session.add(QueueMessage(sender_id="someone", receiver_id="worker-a", type="ingestion", payload={}))
    session.commit()
    session.close()

    runner = AsyncMock()
    guard = QueueGuard(factory, runner, receiver_id="worker-a")

    assert await guard.poll_once() == 1
    await asyncio.gather(*list(guard._tasks))
    runner.assert_not_awaited()
