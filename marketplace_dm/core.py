"""
Shared runtime resources: the optional Redis connection and Prometheus metrics.
"""
import os
import asyncio
import logging
from prometheus_client import Counter, Gauge, start_http_server
from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

# set by redis_startup when REDIS_URL is configured; read as core.REDIS
REDIS = None

MESSAGES_SENT = Counter('messages_sent_total', 'Messages persisted through the API')
PUSH_DELIVERED = Counter('push_events_delivered_total', 'Push events written to an open socket')
PUSH_DROPPED = Counter('push_events_dropped_total', 'Push events dropped because the receiver had no open socket')
PUSH_CONNECTIONS = Gauge('push_connections', 'Authenticated push channel connections on this instance')

REDIS_CONNECT_ATTEMPTS = 3
REDIS_RETRY_DELAY = 3  # seconds


def init_metrics(port: int = None):
    port = port or int(os.getenv('METRICS_PORT', '8001'))
    try:
        start_http_server(port)
        logger.info(f"Metrics exporter listening on :{port}")
    except OSError as e:
        logger.warning(f'Metrics exporter not started: {e}')


async def redis_startup():
    """Connect when REDIS_URL is set; rate limits, presence and cross-instance push depend on it"""
    global REDIS

    redis_url = os.getenv('REDIS_URL')
    if not redis_url:
        logger.info("REDIS_URL not set, running without Redis (single instance push delivery)")
        return

    for attempt in range(1, REDIS_CONNECT_ATTEMPTS + 1):
        client = aioredis.from_url(redis_url, max_connections=20, health_check_interval=30, socket_connect_timeout=5)
        try:
            await client.ping()
        except Exception as e:
            logger.warning(f'Redis connect attempt {attempt}/{REDIS_CONNECT_ATTEMPTS} failed: {e}')
            await client.aclose()
            if attempt < REDIS_CONNECT_ATTEMPTS:
                await asyncio.sleep(REDIS_RETRY_DELAY)
            continue
        REDIS = client
        logger.info("Redis connected")
        return

    logger.error("Redis unavailable, continuing without it")


async def shutdown_connections():
    global REDIS
    if REDIS is None:
        return
    try:
        await REDIS.aclose()
        logger.info("Redis connection closed")
    except Exception as e:
        logger.error(f"Error closing Redis connection: {e}")
    REDIS = None
