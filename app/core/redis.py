"""
Shared Redis client for the import wizard state.

Celery talks to Redis through its own connections (see celery_app.py).
"""
import redis.asyncio as redis
from typing import Optional
from app.config import settings
import logging

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


async def init_redis() -> redis.Redis:
	"""Connect lazily on first use; strings in, strings out"""
	global redis_client

	client = redis.Redis.from_url(
		settings.REDIS_URL,
		max_connections=settings.REDIS_POOL_SIZE,
		decode_responses=True,
		health_check_interval=30,
	)
	try:
		await client.ping()
	except redis.RedisError as e:
		await client.aclose()
		logger.error(f"Redis unavailable at startup of import state: {e}")
		raise

	redis_client = client
	logger.info("Redis client initialized")
	return redis_client


async def get_redis() -> redis.Redis:
	if redis_client is None:
		return await init_redis()
	return redis_client


async def close_redis():
	global redis_client

	if redis_client is not None:
		# also disconnects the pool created by from_url
		await redis_client.aclose()
		redis_client = None
		logger.info("Redis connections closed")


async def check_redis_connection() -> bool:
	try:
		client = await get_redis()
		await client.ping()
		return True
	except redis.RedisError as e:
		logger.error(f"Redis health check failed: {e}")
		return False
