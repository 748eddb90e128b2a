import redis
from redis.connection import ConnectionPool
from typing import Optional
import hashlib
import json
import time
from app.core.config import settings

class RedisClient:
    """Redis client for caching, rate limiting, the render queue and change relay"""

    _client: Optional[redis.Redis] = None
    _pool: Optional[ConnectionPool] = None

    @classmethod
    def get_client(cls) -> Optional[redis.Redis]:
        """Get or create Redis client instance with connection pooling"""
        if not settings.redis_enabled:
            return None

        if cls._client is None:
            try:
                cls._pool = ConnectionPool(
                    host=settings.REDIS_HOST,
                    port=settings.REDIS_PORT,
                    password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                    db=settings.REDIS_DB,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    max_connections=20,
                    health_check_interval=15,
                )

                cls._client = redis.Redis(connection_pool=cls._pool)

                # Test connection
                cls._client.ping()
                print("✅ Redis connected successfully")
            except Exception as e:
                print(f"❌ Redis connection failed: {e}")
                cls._client = None
                cls._pool = None
                raise

        return cls._client

    @classmethod
    def close(cls):
        """Close Redis connection"""
        if cls._client:
            cls._client.close()
            cls._client = None
        if cls._pool:
            cls._pool.disconnect()
            cls._pool = None
        print("🔌 Redis connection closed")


def get_redis() -> Optional[redis.Redis]:
    """Dependency to get Redis client"""
    try:
        return RedisClient.get_client()
    except Exception:
        return None


# Cache key generators
class CacheKeys:
    """Redis cache key patterns"""

    @staticmethod
    def listing(url: str) -> str:
        """Extracted listing data, keyed by URL digest"""
        digest = hashlib.sha256(url.strip().encode()).hexdigest()
        return f"listing:{digest}"

    @staticmethod
    def rate_limit(identifier: str, action: str) -> str:
        """Rate limiting key"""
        return f"rate_limit:{action}:{identifier}"

    @staticmethod
    def render_job(project_id: str) -> str:
        """Render queue status key"""
        return f"render:job:{project_id}"


# Redis operations helper
class RedisOps:
    """Common Redis operations"""

    @staticmethod
    def set_with_expiry(key: str, value: str, expire_seconds: int) -> bool:
        """Set a key with expiration time"""
        client = get_redis()
        if not client:
            return False
        return client.setex(key, expire_seconds, value)

    @staticmethod
    def get(key: str) -> Optional[str]:
        """Get value by key"""
        client = get_redis()
        if not client:
            return None
        return client.get(key)

    @staticmethod
    def ttl(key: str) -> int:
        """Get time to live for key"""
        client = get_redis()
        if not client:
            return -1
        return client.ttl(key)

    @staticmethod
    def publish(channel: str, message: str) -> bool:
        """Publish a message; False when Redis is unavailable"""
        client = get_redis()
        if not client:
            return False
        try:
            client.publish(channel, message)
            return True
        except Exception:
            return False


class RateLimiter:
    """Rate limiting using Redis"""

    @staticmethod
    def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: int,
        window_seconds: int
    ) -> tuple[bool, int]:
        """
        Check if request is within rate limit.
        Uses pipeline for single round-trip to Redis.

        Returns:
            (is_allowed, remaining_requests)
        """
        client = get_redis()

        if not client:
            # If Redis not available, allow request (fallback)
            return True, max_requests

        key = CacheKeys.rate_limit(identifier, action)

        try:
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            results = pipe.execute()

            current = results[0]
            remaining = max(0, max_requests - current)
            is_allowed = current <= max_requests

            return is_allowed, remaining
        except Exception:
            # On error, allow request
            return True, max_requests

    @staticmethod
    def get_remaining_time(identifier: str, action: str) -> int:
        """Get seconds until rate limit resets"""
        key = CacheKeys.rate_limit(identifier, action)
        return max(0, RedisOps.ttl(key))


class Cache:
    """Caching helpers"""

    @staticmethod
    def get_listing(url: str) -> Optional[dict]:
        """Get cached listing data for a URL"""
        try:
            raw = RedisOps.get(CacheKeys.listing(url))
            return json.loads(raw) if raw else None
        except Exception:
            return None

    @staticmethod
    def set_listing(url: str, data: dict, ttl: Optional[int] = None) -> bool:
        """Cache extracted listing data (default EXTRACTOR_CACHE_TTL_SECONDS)"""
        try:
            return RedisOps.set_with_expiry(
                CacheKeys.listing(url),
                json.dumps(data),
                ttl or settings.EXTRACTOR_CACHE_TTL_SECONDS,
            )
        except Exception:
            return False


class RenderQueue:
    """
    Work queue for pipeline runs when PIPELINE_MODE=queue.

    The API pushes jobs onto a Redis list; render workers pop them and
    run the orchestrator. Job status keys are informational only, the
    project row remains the source of truth.
    """

    QUEUE_KEY = "render:queue"
    STATUS_TTL = 3600
    MAX_QUEUE_SIZE = 1000

    @classmethod
    def enqueue(cls, project_id: str, listing_data: dict, project_config: dict) -> bool:
        """
        Add a pipeline run to the queue.

        Returns:
            True if queued successfully
        """
        client = get_redis()
        if not client:
            return False

        try:
            queue_size = client.llen(cls.QUEUE_KEY)
            if queue_size >= cls.MAX_QUEUE_SIZE:
                print(f"⚠️ Render queue full ({queue_size}/{cls.MAX_QUEUE_SIZE})")
                return False

            item = json.dumps({
                "project_id": project_id,
                "listing_data": listing_data,
                "project_config": project_config,
                "queued_at": int(time.time()),
            })
            client.rpush(cls.QUEUE_KEY, item)
            cls.set_status(project_id, "queued", position=queue_size + 1)

            print(f"📥 Queued render for project {project_id} (position: {queue_size + 1})")
            return True

        except Exception as e:
            print(f"❌ Render queue error: {e}")
            return False

    @classmethod
    def dequeue(cls, timeout: int = 1) -> Optional[dict]:
        """Block up to `timeout` seconds for the next job"""
        client = get_redis()
        if not client:
            return None

        try:
            item = client.blpop(cls.QUEUE_KEY, timeout=timeout)
            if item:
                return json.loads(item[1])
            return None
        except Exception:
            return None

    @classmethod
    def set_status(cls, project_id: str, status: str, **kwargs) -> bool:
        """Set job status with optional data"""
        client = get_redis()
        if not client:
            return False

        try:
            data = {"status": status, **kwargs}
            client.setex(CacheKeys.render_job(project_id), cls.STATUS_TTL, json.dumps(data))
            return True
        except Exception:
            return False

    @classmethod
    def get_status(cls, project_id: str) -> Optional[dict]:
        """Get job status"""
        raw = RedisOps.get(CacheKeys.render_job(project_id))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    @classmethod
    def get_queue_size(cls) -> int:
        """Get current queue size"""
        client = get_redis()
        if not client:
            return 0

        try:
            return client.llen(cls.QUEUE_KEY)
        except Exception:
            return 0
