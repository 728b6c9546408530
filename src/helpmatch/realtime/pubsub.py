"""Redis pub/sub — cross-process relay for chat rooms.

Learn: Room membership lives in each process's ChannelBroker. When the API
runs as several workers, the sender's POST /messages may land on a
different process than the recipient's WebSocket. Every broadcast is
therefore also PUBLISHed on one Redis channel; each process SUBSCRIBEs and
delivers to its own local connections.

Redis pub/sub is fire-and-forget. If no one is listening, the message is
lost — that matches the relay's at-most-once contract. The database is
the durable copy; clients catch up through the history endpoint.

Redis is optional. Without it the app still works single-process.
"""

import asyncio
import json
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from helpmatch.config import settings

logger = structlog.get_logger()

RELAY_CHANNEL = "helpmatch:relay"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


class RedisRelay:
    """Bridges one process's broker to every other process's broker."""

    def __init__(self, redis: aioredis.Redis, broker):
        self.redis = redis
        self.broker = broker

    async def publish(self, target: str, key: Any, event: dict) -> None:
        """Publish a room or user event for the other processes."""
        payload = json.dumps({
            "origin": self.broker.instance_id,
            "target": target,
            "key": str(key),
            "event": event,
        })
        await self.redis.publish(RELAY_CHANNEL, payload)

    async def handle(self, raw: str) -> None:
        """Deliver one relayed event locally, skipping our own echoes.

        Malformed envelopes are logged and dropped; they never reach the
        listener loop.
        """
        try:
            envelope = json.loads(raw)
            if envelope.get("origin") == self.broker.instance_id:
                return
            target = envelope.get("target")
            event = envelope.get("event") or {}
            if target == "room":
                key = int(envelope["key"])
            elif target == "user":
                key = uuid.UUID(envelope["key"])
            else:
                raise ValueError(f"unknown target {target!r}")
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("relay.bad_payload", error=str(e))
            return

        if target == "room":
            await self.broker.deliver_to_room(key, event)
        else:
            await self.broker.deliver_to_user(key, event)

    async def run(self, retry_delay: float = 1.0, max_retry_delay: float = 30.0) -> None:
        """Listen until cancelled from the lifespan on shutdown.

        A lost Redis connection is retried with exponential backoff; a
        failure delivering one event is logged and the loop moves on.
        """
        delay = retry_delay
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(RELAY_CHANNEL)
                delay = retry_delay
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    try:
                        await self.handle(message["data"])
                    except Exception as e:
                        logger.warning("relay.deliver_failed", error=str(e))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("relay.listener_failed", error=str(e), retry_in=delay)
            finally:
                await self._close(pubsub)

            await asyncio.sleep(delay)
            delay = min(delay * 2, max_retry_delay)

    async def _close(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(RELAY_CHANNEL)
            await pubsub.aclose()
        except Exception as e:
            logger.debug("relay.close_failed", error=str(e))
