"""
NATS JetStream Client for Python Microservices

Event-driven communication between services over NATS JetStream (nats-py).
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

import nats
from nats.js.errors import BadRequestError

if TYPE_CHECKING:
    from core.config_manager import ConfigManager


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class Event:
    """Event envelope"""

    def __init__(
        self,
        event_type: Union[str, Enum],
        source: Union[str, Enum],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, Enum) else event_type
        self.source = source.value if isinstance(source, Enum) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


def stream_name_for(event_type: str) -> str:
    """
    Determine the JetStream stream name based on event type.

    The first subject token selects the stream: payment.* -> payment-stream,
    ad_campaign.* -> ad_campaign-stream.
    """
    return f"{event_type.split('.')[0]}-stream"


class NATSEventBus:
    """NATS JetStream event bus"""

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
        servers: Optional[List[str]] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)

        if servers:
            self.servers = servers
        else:
            host, port = config.discover_service(
                service_name='nats',
                default_host='localhost',
                default_port=4222,
                env_host_key='NATS_HOST',
                env_port_key='NATS_PORT'
            )
            self.servers = [f"nats://{host}:{port}"]

        self._nc = None
        self._js = None
        self._streams: Dict[str, bool] = {}
        self._subscriptions: Dict[str, Any] = {}

        logger.info(f"NATS EventBus initialized: {','.join(self.servers)}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, subject: str):
        stream_name = stream_name_for(subject)
        if self._streams.get(stream_name):
            return stream_name
        prefix = subject.split('.')[0]
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except BadRequestError as e:
            # Stream already exists with a different config; publishing still works
            logger.debug(f"Stream creation note for {stream_name}: {e}")
        self._streams[stream_name] = True
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The event type is the subject (e.g. "ad_campaign.approved"); the stream
        is derived from its first token.
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            payload = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, payload)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: Callable, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable JetStream consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "payment.completed")
            handler: Async callback receiving an Event
            durable: Optional durable consumer name
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        await self._ensure_stream(pattern)

        async def _on_message(msg):
            try:
                data = json.loads(msg.data.decode())
                if 'type' in data and 'source' in data and 'data' in data:
                    event = Event.from_dict(data)
                else:
                    # Raw payload published without an envelope
                    event = Event(event_type=msg.subject, source="unknown", data=data, subject=msg.subject)
                await handler(event)
            except Exception as e:
                logger.error(f"Error processing message on {msg.subject}: {e}", exc_info=True)
            finally:
                await msg.ack()

        try:
            sub = await self._js.subscribe(pattern, durable=durable, cb=_on_message, manual_ack=True)
            self._subscriptions[pattern] = sub
            logger.info(f"Subscribed to {pattern} (JetStream consumer {durable or 'ephemeral'})")
            return durable or pattern
        except Exception as e:
            logger.error(f"Error subscribing to {pattern}: {e}")
            return None

    async def unsubscribe(self, pattern: str) -> bool:
        sub = self._subscriptions.pop(pattern, None)
        if sub is None:
            return False
        await sub.unsubscribe()
        logger.info(f"Unsubscribed from {pattern}")
        return True

    async def close(self):
        """Drain subscriptions and close the connection"""
        for pattern in list(self._subscriptions.keys()):
            try:
                await self.unsubscribe(pattern)
            except Exception as e:
                logger.warning(f"Failed to unsubscribe {pattern}: {e}")

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional["ConfigManager"] = None,
) -> NATSEventBus:
    """Get or create the process-wide event bus"""
    global _event_bus

    if _event_bus is None:
        _event_bus = NATSEventBus(service_name=service_name, config=config)
        await _event_bus.connect()

    return _event_bus


__all__ = ["Event", "NATSEventBus", "get_event_bus", "stream_name_for"]
