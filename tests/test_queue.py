import asyncio

import pytest

from core.queue import Backoff, Job, JobQueue, JobState, MemoryJobStore, RedisJobStore


def run(coro):
    return asyncio.run(coro)


def test_backoff_strategies():
    assert Backoff("fixed", 1000).compute(3) == 1.0
    assert Backoff("linear", 1000).compute(3) == 3.0
    assert Backoff("exponential", 1000).compute(1) == 1.0
    assert Backoff("exponential", 1000).compute(3) == 4.0
    with pytest.raises(ValueError):
        Backoff("random", 10).compute(1)


def test_job_round_trips_through_dict():
    job = Job(id="7", queue="q", name="n", data={"a": 1}, attempts=3, backoff=Backoff("fixed", 5))
    job.state = JobState.DELAYED
    restored = Job.from_dict(job.to_dict())
    assert restored == job


def test_job_completes_with_return_value():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())

        async def handler(job):
            return {"doubled": job.data["n"] * 2}

        queue.process("double", handler)
        await queue.start()
        job = await queue.add("double", {"n": 21})
        await queue.wait_until_idle(5)
        done = await queue.get_job(job.id)
        counts = await queue.get_job_counts()
        await queue.close()
        return done, counts

    done, counts = run(scenario())
    assert done.state == JobState.COMPLETED
    assert done.return_value == {"doubled": 42}
    assert done.attempts_made == 1
    assert done.finished_at is not None
    assert counts["completed"] == 1


def test_job_retries_then_succeeds():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())
        seen = []

        async def handler(job):
            seen.append((job.attempts_made, job.is_last_attempt))
            if job.attempts_made < 3:
                raise RuntimeError("try again")
            return "ok"

        queue.process("flaky", handler)
        await queue.start()
        job = await queue.add("flaky", {}, attempts=3, backoff=Backoff("fixed", 1))
        await queue.wait_until_idle(5)
        done = await queue.get_job(job.id)
        await queue.close()
        return done, seen

    done, seen = run(scenario())
    assert seen == [(1, False), (2, False), (3, True)]
    assert done.state == JobState.COMPLETED
    assert done.failed_reason == "try again"


def test_job_fails_when_attempts_are_exhausted():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())

        async def handler(job):
            raise ValueError("boom")

        queue.process("bad", handler)
        await queue.start()
        job = await queue.add("bad", {}, attempts=2, backoff=Backoff("exponential", 1))
        await queue.wait_until_idle(5)
        done = await queue.get_job(job.id)
        counts = await queue.get_job_counts()
        await queue.close()
        return done, counts

    done, counts = run(scenario())
    assert done.state == JobState.FAILED
    assert done.attempts_made == 2
    assert done.failed_reason == "boom"
    assert counts["failed"] == 1


def test_unknown_job_name_fails():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())
        await queue.start()
        job = await queue.add("nobody-handles-this", {})
        await queue.wait_until_idle(5)
        done = await queue.get_job(job.id)
        await queue.close()
        return done

    done = run(scenario())
    assert done.state == JobState.FAILED
    assert "No processor registered" in done.failed_reason


def test_concurrency_limit_is_respected():
    async def scenario(concurrency):
        queue = JobQueue("q", MemoryJobStore(), concurrency=concurrency)
        running = 0
        peak = 0

        async def handler(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        queue.process("work", handler)
        await queue.start()
        for i in range(6):
            await queue.add("work", {"i": i})
        await queue.wait_until_idle(5)
        await queue.close()
        return peak

    assert run(scenario(1)) == 1
    assert run(scenario(2)) == 2


def test_jobs_added_before_start_are_picked_up():
    async def scenario():
        store = MemoryJobStore()
        queue = JobQueue("q", store)
        handled = []

        async def handler(job):
            handled.append(job.id)

        queue.process("work", handler)
        first = await queue.add("work", {})
        # simulate a process that died mid-job
        interrupted = await queue.add("work", {})
        interrupted.state = JobState.ACTIVE
        interrupted.attempts_made = 1
        await store.save(interrupted)

        await queue.start()
        await queue.wait_until_idle(5)
        restored = await queue.get_job(interrupted.id)
        await queue.close()
        return handled, first, restored

    handled, first, restored = run(scenario())
    assert sorted(handled) == sorted([first.id, restored.id])
    assert restored.state == JobState.COMPLETED
    assert restored.attempts_made == 1


def test_pause_and_resume():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())
        handled = []

        async def handler(job):
            handled.append(job.id)

        queue.process("work", handler)
        await queue.start()
        queue.pause()
        await queue.add("work", {})
        await asyncio.sleep(0.05)
        before = list(handled)
        queue.resume()
        await queue.wait_until_idle(5)
        await queue.close()
        return before, handled

    before, after = run(scenario())
    assert before == []
    assert after == ["1"]


def test_clear_drops_jobs_and_resets_ids():
    async def scenario():
        queue = JobQueue("q", MemoryJobStore())
        await queue.add("work", {})
        await queue.clear()
        counts = await queue.get_job_counts()
        job = await queue.add("work", {})
        return counts, job.id

    counts, job_id = run(scenario())
    assert sum(counts.values()) == 0
    assert job_id == "1"


def test_memory_store_keeps_bounded_history():
    async def scenario():
        store = MemoryJobStore(max_finished=2)
        for i in range(1, 5):
            await store.save(Job(id=str(i), queue="q", name="n", data={}, state=JobState.COMPLETED))
        return await store.counts("q"), await store.get("q", "1")

    counts, oldest = run(scenario())
    assert counts["completed"] == 2
    assert oldest is None


class DictRedis:
    """Just the redis.asyncio calls RedisJobStore makes, backed by dicts."""

    def __init__(self):
        self.values, self.sets, self.lists = {}, {}, {}

    def pipeline(self, transaction=True):
        return DictPipeline(self)

    async def get(self, key):
        return self.values.get(key)

    async def scard(self, key):
        return len(self.sets.get(key, ()))

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        return items[start:] if stop == -1 else items[start:stop + 1]


class DictPipeline:

    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def srem(self, key, member):
        self.ops.append(lambda r: r.sets.setdefault(key, set()).discard(member))

    def sadd(self, key, member):
        self.ops.append(lambda r: r.sets.setdefault(key, set()).add(member))

    def set(self, key, value):
        self.ops.append(lambda r: r.values.__setitem__(key, value))

    def delete(self, key):
        self.ops.append(lambda r: r.values.pop(key, None))

    def rpush(self, key, value):
        self.ops.append(lambda r: r.lists.setdefault(key, []).append(value))

    def ltrim(self, key, start, stop):
        self.ops.append(lambda r: r.lists.__setitem__(key, r.lists.get(key, [])[start:]))

    async def execute(self):
        for op in self.ops:
            op(self.redis)
        self.ops = []


def test_redis_store_keeps_bounded_history():
    async def scenario():
        store = RedisJobStore("redis://unused", max_finished=2)
        store.redis = DictRedis()
        for i in range(1, 5):
            await store.save(Job(id=str(i), queue="q", name="n", data={}, state=JobState.COMPLETED))
        await store.save(Job(id="5", queue="q", name="n", data={}, state=JobState.WAITING))
        return (
            await store.counts("q"),
            await store.get("q", "1"),
            await store.get("q", "4"),
            store.redis.lists["deedchain:queue:q:finished"],
        )

    counts, oldest, newest, finished = run(scenario())
    assert counts["completed"] == 2
    assert counts["waiting"] == 1
    assert oldest is None
    assert newest.id == "4"
    assert finished == ["3", "4"]
