"""
core/queue.py: Background Job Queues
=======================================
Named job queues processed by asyncio workers inside the API process.

    queue = JobQueue("ipfs upload", store, concurrency=2)
    queue.process("upload-to-ipfs", handler)      # async def handler(job) -> dict
    await queue.start()
    job = await queue.add("upload-to-ipfs", {...}, attempts=3,
                          backoff=Backoff("exponential", 3000))

Job lifecycle:
    waiting → active → completed
                     → delayed → active ...   (attempts left, after backoff)
                     → failed                 (attempts exhausted)

Job records live in a JobStore: MemoryJobStore (default) or RedisJobStore
(QUEUE_BACKEND=redis). With Redis, jobs left waiting / active / delayed by a
stopped process are picked up again on the next start().
"""

import asyncio
import enum
import itertools
import json
import logging
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from config import settings

logger = logging.getLogger("deedchain.queue")


class JobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    DELAYED = "delayed"
    FAILED = "failed"


RUNNABLE_STATES = (JobState.WAITING, JobState.ACTIVE, JobState.DELAYED)


@dataclass
class Backoff:
    """Delay before a retry, in milliseconds."""
    type: str = "exponential"     # fixed | linear | exponential
    delay: int = 0

    def compute(self, attempts_made: int) -> float:
        """Seconds to wait after the `attempts_made`-th failed attempt."""
        n = max(1, attempts_made)
        if self.type == "fixed":
            ms = self.delay
        elif self.type == "linear":
            ms = self.delay * n
        elif self.type == "exponential":
            ms = self.delay * 2 ** (n - 1)
        else:
            raise ValueError(f"Unknown backoff type: {self.type}")
        return ms / 1000.0


@dataclass
class Job:
    id: str
    queue: str
    name: str
    data: dict
    attempts: int = 1
    backoff: Backoff = field(default_factory=Backoff)
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    failed_reason: Optional[str] = None
    return_value: Any = None
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    processed_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def is_last_attempt(self) -> bool:
        return self.attempts_made >= self.attempts

    def to_dict(self) -> dict:
        d = asdict(self)
        d["state"] = self.state.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Job":
        d = dict(d)
        d["state"] = JobState(d["state"])
        d["backoff"] = Backoff(**d["backoff"])
        return cls(**d)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "data": self.data,
            "state": self.state.value,
            "attemptsMade": self.attempts_made,
            "attempts": self.attempts,
            "failedReason": self.failed_reason,
            "returnValue": self.return_value,
            "createdAt": self.created_at,
            "processedAt": self.processed_at,
            "finishedAt": self.finished_at,
        }


# ── Stores ────────────────────────────────────────────────────────────────────
class MemoryJobStore:
    """Dict-backed store. Keeps the newest `max_finished` finished jobs per queue."""

    def __init__(self, max_finished: int = 1000):
        self.max_finished = max_finished
        self._jobs: dict[str, dict[str, Job]] = {}
        self._finished: dict[str, deque] = {}
        self._ids: dict[str, itertools.count] = {}

    async def connect(self):
        pass

    async def close(self):
        pass

    async def ping(self) -> str:
        return "healthy"

    async def next_id(self, queue: str) -> str:
        counter = self._ids.setdefault(queue, itertools.count(1))
        return str(next(counter))

    async def save(self, job: Job):
        jobs = self._jobs.setdefault(job.queue, {})
        jobs[job.id] = job
        if job.state in (JobState.COMPLETED, JobState.FAILED):
            finished = self._finished.setdefault(job.queue, deque())
            finished.append(job.id)
            while len(finished) > self.max_finished:
                jobs.pop(finished.popleft(), None)

    async def get(self, queue: str, job_id: str) -> Optional[Job]:
        return self._jobs.get(queue, {}).get(job_id)

    async def by_state(self, queue: str, *states: JobState) -> list[Job]:
        return [j for j in self._jobs.get(queue, {}).values() if j.state in states]

    async def counts(self, queue: str) -> dict:
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.get(queue, {}).values():
            counts[job.state.value] += 1
        return counts

    async def clear(self, queue: str):
        self._jobs.pop(queue, None)
        self._finished.pop(queue, None)
        self._ids.pop(queue, None)


class RedisJobStore:
    """
    Redis-backed store (redis.asyncio).
        <prefix>:<queue>:job:<id>   → job JSON
        <prefix>:<queue>:<state>    → set of job ids
        <prefix>:<queue>:id         → id counter
        <prefix>:<queue>:finished   → finished job ids, oldest first, capped at max_finished
    """

    def __init__(self, url: str, prefix: str = "deedchain:queue", max_finished: int = 1000):
        self.url = url
        self.prefix = prefix
        self.max_finished = max_finished
        self.redis = None

    async def connect(self):
        from redis import asyncio as aioredis
        self.redis = aioredis.from_url(self.url, decode_responses=True)
        await self.redis.ping()
        logger.info(f"Redis job store connected ({self.url})")

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    async def ping(self) -> str:
        await self.redis.ping()
        return "healthy"

    def _key(self, queue: str, *parts: str) -> str:
        return ":".join((self.prefix, queue, *parts))

    async def next_id(self, queue: str) -> str:
        return str(await self.redis.incr(self._key(queue, "id")))

    async def save(self, job: Job):
        finished = job.state in (JobState.COMPLETED, JobState.FAILED)
        async with self.redis.pipeline(transaction=True) as pipe:
            for state in JobState:
                pipe.srem(self._key(job.queue, state.value), job.id)
            pipe.sadd(self._key(job.queue, job.state.value), job.id)
            pipe.set(self._key(job.queue, "job", job.id), json.dumps(job.to_dict()))
            if finished:
                pipe.rpush(self._key(job.queue, "finished"), job.id)
            await pipe.execute()
        if finished:
            await self._trim_finished(job.queue)

    async def _trim_finished(self, queue: str):
        finished = self._key(queue, "finished")
        overflow = await self.redis.llen(finished) - self.max_finished
        if overflow <= 0:
            return
        expired = await self.redis.lrange(finished, 0, overflow - 1)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.ltrim(finished, overflow, -1)
            for job_id in expired:
                pipe.srem(self._key(queue, JobState.COMPLETED.value), job_id)
                pipe.srem(self._key(queue, JobState.FAILED.value), job_id)
                pipe.delete(self._key(queue, "job", job_id))
            await pipe.execute()

    async def get(self, queue: str, job_id: str) -> Optional[Job]:
        raw = await self.redis.get(self._key(queue, "job", job_id))
        return Job.from_dict(json.loads(raw)) if raw else None

    async def by_state(self, queue: str, *states: JobState) -> list[Job]:
        ids = set()
        for state in states:
            ids |= await self.redis.smembers(self._key(queue, state.value))
        if not ids:
            return []
        raws = await self.redis.mget([self._key(queue, "job", i) for i in ids])
        return [Job.from_dict(json.loads(r)) for r in raws if r]

    async def counts(self, queue: str) -> dict:
        return {state.value: await self.redis.scard(self._key(queue, state.value)) for state in JobState}

    async def clear(self, queue: str):
        keys = [k async for k in self.redis.scan_iter(match=self._key(queue, "*"))]
        if keys:
            await self.redis.delete(*keys)


def create_job_store():
    if settings.QUEUE_BACKEND.lower() == "redis":
        logger.info("Using Redis job store")
        return RedisJobStore(settings.REDIS_URL)
    logger.info("Using in-memory job store")
    return MemoryJobStore()


# ── Queue ─────────────────────────────────────────────────────────────────────
Handler = Callable[[Job], Awaitable[Any]]


class JobQueue:

    def __init__(self, name: str, store, concurrency: int = 1):
        self.name = name
        self.store = store
        self.concurrency = max(1, concurrency)
        self._handlers: dict[str, Handler] = {}
        self._ready: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._running: Optional[asyncio.Event] = None
        self._idle: Optional[asyncio.Event] = None
        self._pending = 0

    # ── setup ──────────────────────────────────────────────────────────────
    def process(self, job_name: str, handler: Handler):
        self._handlers[job_name] = handler

    @property
    def started(self) -> bool:
        return bool(self._workers)

    async def start(self):
        """Spawn the workers and pick up jobs a previous run left behind."""
        if self.started:
            return
        self._ready = asyncio.Queue()
        self._running = asyncio.Event()
        self._running.set()
        self._idle = asyncio.Event()
        self._pending = 0

        leftovers = await self.store.by_state(self.name, *RUNNABLE_STATES)
        for job in sorted(leftovers, key=lambda j: j.created_at):
            if job.state == JobState.ACTIVE:
                # interrupted mid-run; that attempt does not count
                job.state = JobState.WAITING
                job.attempts_made = max(0, job.attempts_made - 1)
                await self.store.save(job)
            self._track()
            self._ready.put_nowait(job.id)
        if leftovers:
            logger.info(f"[{self.name}] re-queued {len(leftovers)} unfinished job(s)")
        if self._pending == 0:
            self._idle.set()

        self._workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"[{self.name}] started with concurrency {self.concurrency}")

    async def close(self):
        tasks = [*self._workers, *self._timers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._timers.clear()
        logger.info(f"[{self.name}] closed")

    def pause(self):
        if self._running is not None:
            self._running.clear()

    def resume(self):
        if self._running is not None:
            self._running.set()

    async def clear(self):
        await self.store.clear(self.name)
        if self._ready is not None:
            while not self._ready.empty():
                self._ready.get_nowait()
                self._ready.task_done()
        self._pending = 0
        if self._idle is not None:
            self._idle.set()

    # ── producing ──────────────────────────────────────────────────────────
    async def add(self, job_name: str, data: dict, attempts: int = 1, backoff: Optional[Backoff] = None) -> Job:
        job = Job(
            id=await self.store.next_id(self.name),
            queue=self.name,
            name=job_name,
            data=data,
            attempts=max(1, attempts),
            backoff=backoff or Backoff(),
        )
        await self.store.save(job)
        if self.started:
            self._track()
            self._ready.put_nowait(job.id)
        logger.info(f"[{self.name}] queued {job_name} job {job.id}")
        return job

    # ── inspection ─────────────────────────────────────────────────────────
    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get(self.name, job_id)

    async def get_job_counts(self) -> dict:
        return await self.store.counts(self.name)

    async def wait_until_idle(self, timeout: Optional[float] = None):
        """Block until every job this process knows about has completed or failed."""
        if self._idle is None:
            return
        await asyncio.wait_for(self._idle.wait(), timeout)

    # ── consuming ──────────────────────────────────────────────────────────
    def _track(self):
        self._pending += 1
        self._idle.clear()

    def _settle(self):
        self._pending = max(0, self._pending - 1)
        if self._pending == 0:
            self._idle.set()

    async def _worker(self, index: int):
        while True:
            job_id = await self._ready.get()
            # a paused queue holds on to the job it already took
            await self._running.wait()
            try:
                await self._run(job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"[{self.name}] worker {index} crashed on job {job_id}")
                self._settle()
            finally:
                self._ready.task_done()

    async def _run(self, job_id: str):
        job = await self.store.get(self.name, job_id)
        if job is None or job.state not in (JobState.WAITING, JobState.DELAYED):
            self._settle()
            return

        job.state = JobState.ACTIVE
        job.attempts_made += 1
        job.processed_at = datetime.utcnow().isoformat()
        await self.store.save(job)

        try:
            handler = self._handlers.get(job.name)
            if handler is None:
                raise LookupError(f"No processor registered for job '{job.name}'")
            result = await handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failed_reason = str(e) or e.__class__.__name__
            if not job.is_last_attempt:
                delay = job.backoff.compute(job.attempts_made)
                job.state = JobState.DELAYED
                await self.store.save(job)
                logger.warning(
                    f"[{self.name}] {job.name} job {job.id} failed "
                    f"(attempt {job.attempts_made}/{job.attempts}), retrying in {delay:.2f}s: {job.failed_reason}"
                )
                self._schedule_retry(job.id, delay)
                return
            job.state = JobState.FAILED
            job.finished_at = datetime.utcnow().isoformat()
            await self.store.save(job)
            logger.error(f"[{self.name}] {job.name} job {job.id} failed permanently: {job.failed_reason}")
            self._settle()
            return

        job.state = JobState.COMPLETED
        job.return_value = result
        job.finished_at = datetime.utcnow().isoformat()
        await self.store.save(job)
        logger.info(f"[{self.name}] {job.name} job {job.id} completed")
        self._settle()

    def _schedule_retry(self, job_id: str, delay: float):
        async def _later():
            await asyncio.sleep(delay)
            self._ready.put_nowait(job_id)

        task = asyncio.create_task(_later())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
