import json
import time
from typing import Any, Dict, Iterable, List, Optional
import redis.asyncio as redis
from redis.asyncio import ConnectionPool
import logging

from crm_gateway.core.config import settings

logger = logging.getLogger(__name__)

JOB_STATES = ("waiting", "active", "completed", "failed")
FINISHED_JOB_TTL_SECONDS = 7 * 24 * 60 * 60
_JSON_FIELDS = ("data", "opts", "return_value")


class RedisClient:
    """
    Redis client for the job registry, response cache, rate limits and locks.

    Job state lives in one sorted set per (queue, state), scored by the time the
    job entered that state, so counts are a ZCARD and retention is a rank trim.
    """

    def __init__(self):
        self.pool = self._new_pool()
        self.client: Optional[redis.Redis] = None

    @staticmethod
    def _new_pool() -> ConnectionPool:
        return ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )

    async def connect(self):
        """Initialize Redis connection."""
        try:
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def ensure_connected(self):
        if not self.client:
            await self.connect()

    async def reconnect(self):
        """Drop the pool and connect again inside the running event loop."""
        self.pool = self._new_pool()
        self.client = None
        await self.connect()

    async def disconnect(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis connection closed")

    async def ping(self) -> bool:
        await self.ensure_connected()
        return bool(await self.client.ping())

    # ------------------------------------------------------------------
    # Job registry
    # ------------------------------------------------------------------

    @staticmethod
    def job_key(queue_name: str, job_id: str) -> str:
        return f"queue:{queue_name}:job:{job_id}"

    @staticmethod
    def state_key(queue_name: str, state: str) -> str:
        return f"queue:{queue_name}:{state}"

    @staticmethod
    def _encode_job(fields: Dict[str, Any]) -> Dict[str, str]:
        encoded = {}
        for key, value in fields.items():
            if key in _JSON_FIELDS:
                encoded[key] = json.dumps(value, default=str)
            elif value is None:
                encoded[key] = ""
            else:
                encoded[key] = str(value)
        return encoded

    @staticmethod
    def _decode_job(raw: Dict[str, str]) -> Dict[str, Any]:
        job: Dict[str, Any] = {}
        for key, value in raw.items():
            if key in _JSON_FIELDS:
                job[key] = json.loads(value) if value else None
            elif key in ("timestamp", "processed_on", "finished_on", "attempts_made"):
                job[key] = int(float(value)) if value else None
            else:
                job[key] = value or None
        return job

    async def register_job(self, queue_name: str, job: Dict[str, Any]):
        """Store a new job and mark it waiting."""
        try:
            await self.ensure_connected()
            job_id = job["id"]
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self.job_key(queue_name, job_id), mapping=self._encode_job({**job, "state": "waiting"}))
                pipe.zadd(self.state_key(queue_name, "waiting"), {job_id: time.time()})
                await pipe.execute()
            logger.debug(f"Job {job_id} registered on {queue_name}")
        except Exception as e:
            logger.error(f"Failed to register job on {queue_name}: {e}")
            raise

    async def move_job(
        self,
        queue_name: str,
        job_id: str,
        state: str,
        keep: Optional[int] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        """Atomically move a job to ``state``, trimming that state to the newest ``keep`` jobs."""
        if state not in JOB_STATES:
            raise ValueError(f"Unknown job state: {state}")

        await self.ensure_connected()
        job_key = self.job_key(queue_name, job_id)
        async with self.client.pipeline(transaction=True) as pipe:
            for other in JOB_STATES:
                if other != state:
                    pipe.zrem(self.state_key(queue_name, other), job_id)
            pipe.zadd(self.state_key(queue_name, state), {job_id: time.time()})
            pipe.hset(job_key, mapping=self._encode_job({**(fields or {}), "state": state}))
            if keep is not None:
                pipe.zremrangebyrank(self.state_key(queue_name, state), 0, -(keep + 1))
            if state in ("completed", "failed"):
                pipe.expire(job_key, FINISHED_JOB_TTL_SECONDS)
            await pipe.execute()

    async def get_job(self, queue_name: str, job_id: str) -> Optional[Dict[str, Any]]:
        await self.ensure_connected()
        raw = await self.client.hgetall(self.job_key(queue_name, job_id))
        return self._decode_job(raw) if raw else None

    async def get_job_counts(self, queue_name: str) -> Dict[str, int]:
        """Job-count snapshot for one queue."""
        await self.ensure_connected()
        async with self.client.pipeline(transaction=False) as pipe:
            for state in JOB_STATES:
                pipe.zcard(self.state_key(queue_name, state))
            results = await pipe.execute()
        return {state: int(count or 0) for state, count in zip(JOB_STATES, results)}

    async def get_job_ids(self, queue_name: str, state: str, start: int = 0, end: int = -1) -> List[str]:
        await self.ensure_connected()
        return await self.client.zrevrange(self.state_key(queue_name, state), start, end)

    async def get_jobs(self, queue_name: str, job_ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch many jobs in one round trip; ids whose hash has expired are skipped."""
        if not job_ids:
            return []
        await self.ensure_connected()
        async with self.client.pipeline(transaction=False) as pipe:
            for job_id in job_ids:
                pipe.hgetall(self.job_key(queue_name, job_id))
            results = await pipe.execute()
        return [self._decode_job(raw) for raw in results if raw]

    async def remove_job(self, queue_name: str, job_id: str) -> bool:
        """Drop a job from every state set and delete its hash."""
        await self.ensure_connected()
        async with self.client.pipeline(transaction=True) as pipe:
            for state in JOB_STATES:
                pipe.zrem(self.state_key(queue_name, state), job_id)
            pipe.delete(self.job_key(queue_name, job_id))
            results = await pipe.execute()
        return bool(results[-1])

    async def clear_queue(self, queue_name: str) -> List[str]:
        """Delete every job of ``queue_name``; returns the removed ids."""
        await self.ensure_connected()
        job_ids: List[str] = []
        for state in JOB_STATES:
            job_ids.extend(await self.client.zrange(self.state_key(queue_name, state), 0, -1))
        async with self.client.pipeline(transaction=True) as pipe:
            for job_id in job_ids:
                pipe.delete(self.job_key(queue_name, job_id))
            for state in JOB_STATES:
                pipe.delete(self.state_key(queue_name, state))
            await pipe.execute()
        return job_ids

    @staticmethod
    def paused_key(queue_name: str) -> str:
        return f"queue:{queue_name}:paused"

    async def set_queue_paused(self, queue_name: str, paused: bool):
        await self.ensure_connected()
        if paused:
            await self.client.set(self.paused_key(queue_name), "1")
        else:
            await self.client.delete(self.paused_key(queue_name))

    async def is_queue_paused(self, queue_name: str) -> bool:
        await self.ensure_connected()
        return bool(await self.client.exists(self.paused_key(queue_name)))

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def get_json(self, key: str) -> Any:
        await self.ensure_connected()
        value = await self.client.get(key)
        return json.loads(value) if value is not None else None

    async def set_json(self, key: str, value: Any, ttl_seconds: int):
        await self.ensure_connected()
        await self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)

    async def delete_patterns(self, patterns: Iterable[str]) -> int:
        """Delete every key matching any of the glob patterns."""
        await self.ensure_connected()
        deleted = 0
        for pattern in patterns:
            if "*" not in pattern:
                deleted += await self.client.delete(pattern)
                continue
            batch = []
            async for key in self.client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)
        return deleted

    # ------------------------------------------------------------------
    # Rate limiting and locks
    # ------------------------------------------------------------------

    async def increment_window(self, key: str, window_seconds: int) -> int:
        """Fixed-window counter; the key expires with its window."""
        await self.ensure_connected()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    async def set_lock(self, lock_key: str, ttl_seconds: int = 300) -> bool:
        """
        Set a distributed lock.
        Returns True if lock acquired, False if already exists.
        """
        try:
            await self.ensure_connected()
            result = await self.client.set(lock_key, "1", nx=True, ex=ttl_seconds)
            return bool(result)
        except Exception as e:
            logger.error(f"Failed to set lock {lock_key}: {e}")
            return False

    async def release_lock(self, lock_key: str):
        """Release a distributed lock."""
        try:
            await self.client.delete(lock_key)
        except Exception as e:
            logger.error(f"Failed to release lock {lock_key}: {e}")


# Global Redis client instance
redis_client = RedisClient()
