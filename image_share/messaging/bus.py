"""
    RabbitMQ message bus.

    One durable topic exchange per deployment. Publishers derive the routing
    key from the event class; subscribers declare a durable queue
    ``queue.<routing-key>`` bound with the same key and consume it with
    manual acknowledgment: ack when the handler returns, nack without
    requeue when the payload does not decode, the handler raises or the
    handler times out. With dead-lettering enabled those rejected messages
    are routed to ``<queue>.dead`` through ``<exchange>.dlx``; without it
    they are dropped.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Type

import aio_pika
from aio_pika import DeliveryMode, ExchangeType
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractRobustConnection,
)
from pydantic import ValidationError

from image_share.events.models import EventEnvelope, IntegrationEvent, queue_name_for
from image_share.exceptions import MessageBusException
from image_share.settings import settings

log = logging.getLogger(__name__)

EventHandler = Callable[[IntegrationEvent], Awaitable[None]]

# Marks a subscription that uses the bus-wide handler timeout.
DEFAULT_TIMEOUT = object()

class MessageBus:
    def __init__(
        self,
        url: Optional[str] = None,
        exchange_name: Optional[str] = None,
        prefetch_count: Optional[int] = None,
        handler_timeout: Optional[float] = None,
        dead_letter_enabled: Optional[bool] = None,
        clock=None,
    ):
        self.url = url or settings.rabbitmq_url
        self.exchange_name = exchange_name or settings.rabbitmq_exchange
        self.prefetch_count = prefetch_count or settings.rabbitmq_prefetch_count
        self.handler_timeout = handler_timeout or settings.handler_timeout_seconds
        self.dead_letter_enabled = (
            settings.rabbitmq_dead_letter_enabled if dead_letter_enabled is None else dead_letter_enabled
        )
        self.clock = clock

        self.connection: Optional[AbstractRobustConnection] = None
        self.channel: Optional[AbstractChannel] = None
        self.exchange: Optional[AbstractExchange] = None
        self.dead_letter_exchange: Optional[AbstractExchange] = None
        self.consumers: Dict[str, str] = {}

    @property
    def dead_letter_exchange_name(self) -> str:
        return f"{self.exchange_name}.dlx"

    @property
    def is_connected(self) -> bool:
        return (
            self.connection is not None
            and not self.connection.is_closed
            and self.channel is not None
            and not self.channel.is_closed
        )

    async def initialize(self) -> None:
        """
            Connects and declares the topic exchange.
            Connection errors propagate: a worker without a broker has nothing to do.
        """
        self.connection = await aio_pika.connect_robust(self.url)
        self.channel = await self.connection.channel()
        await self.channel.set_qos(prefetch_count=self.prefetch_count)
        self.exchange = await self.channel.declare_exchange(
            self.exchange_name,
            ExchangeType.TOPIC,
            durable=True,
            auto_delete=False,
        )
        if self.dead_letter_enabled:
            self.dead_letter_exchange = await self.channel.declare_exchange(
                self.dead_letter_exchange_name,
                ExchangeType.TOPIC,
                durable=True,
                auto_delete=False,
            )
        log.info("Connected to message bus, exchange %s", self.exchange_name)

    async def publish(self, event: IntegrationEvent, routing_key: Optional[str] = None) -> bool:
        """
            Publishes a persistent message. Best effort: failures are logged and
            reported as False, they never undo what the caller already saved.
        """
        event_type = event.event_type()
        if self.exchange is None:
            log.warning("Message bus not initialized, dropping %s", event_type)
            return False

        key = routing_key or event.routing_key()
        occurred_at = self.clock.now() if self.clock else None
        envelope = EventEnvelope.wrap(event, occurred_at=occurred_at)
        message = aio_pika.Message(
            body=event.to_json(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=envelope.message_id,
            timestamp=envelope.occurred_at,
            type=event_type,
            headers=envelope.headers(),
        )
        try:
            await self.exchange.publish(message, routing_key=key)
        except Exception as e:
            log.error("Failed to publish %s with routing key %s: %s", event_type, key, e, exc_info=True)
            return False

        log.debug("Published %s with routing key %s (message %s)", event_type, key, envelope.message_id)
        return True

    async def subscribe(
        self,
        event_type: Type[IntegrationEvent],
        handler: EventHandler,
        queue_name: Optional[str] = None,
        handler_timeout=DEFAULT_TIMEOUT,
    ) -> str:
        """
            Declares and binds the durable queue for ``event_type`` and starts
            consuming it. Calling it again for a queue already consumed returns
            the existing consumer tag.

            ``handler_timeout`` overrides the bus-wide deadline for this queue;
            None runs the handler without one.
        """
        if self.channel is None or self.exchange is None:
            raise MessageBusException(f"Message bus not initialized, cannot subscribe to {event_type.event_type()}")

        routing_key = event_type.routing_key()
        queue_name = queue_name or queue_name_for(routing_key)
        if queue_name in self.consumers:
            log.info("Already consuming queue %s", queue_name)
            return self.consumers[queue_name]

        arguments = {}
        if self.dead_letter_enabled and self.dead_letter_exchange is not None:
            arguments["x-dead-letter-exchange"] = self.dead_letter_exchange_name
            dead_queue = await self.channel.declare_queue(
                f"{queue_name}.dead",
                durable=True,
                exclusive=False,
                auto_delete=False,
            )
            await dead_queue.bind(self.dead_letter_exchange, routing_key=routing_key)

        queue = await self.channel.declare_queue(
            queue_name,
            durable=True,
            exclusive=False,
            auto_delete=False,
            arguments=arguments or None,
        )
        await queue.bind(self.exchange, routing_key=routing_key)

        async def on_message(message: AbstractIncomingMessage) -> None:
            await self.dispatch(event_type, handler, message, queue_name, handler_timeout)

        consumer_tag = await queue.consume(on_message, no_ack=False)
        self.consumers[queue_name] = consumer_tag
        log.info(
            "Subscribed to %s on queue %s with routing key %s",
            event_type.event_type(), queue_name, routing_key,
        )
        return consumer_tag

    async def dispatch(
        self,
        event_type: Type[IntegrationEvent],
        handler: EventHandler,
        message: AbstractIncomingMessage,
        queue_name: str,
        handler_timeout=DEFAULT_TIMEOUT,
    ) -> bool:
        """Runs one delivery through the handler and settles it. Returns True on ack."""
        timeout = self.handler_timeout if handler_timeout is DEFAULT_TIMEOUT else handler_timeout
        try:
            event = event_type.from_json(message.body)
        except (ValidationError, ValueError) as e:
            log.error("Could not decode %s from queue %s: %s", event_type.event_type(), queue_name, e)
            await message.nack(requeue=False)
            return False

        try:
            await asyncio.wait_for(handler(event), timeout=timeout)
        except asyncio.TimeoutError:
            log.error(
                "Handler for %s on queue %s timed out after %ss",
                event_type.event_type(), queue_name, timeout,
            )
            await message.nack(requeue=False)
            return False
        except Exception:
            log.exception("Handler for %s on queue %s failed", event_type.event_type(), queue_name)
            await message.nack(requeue=False)
            return False

        await message.ack()
        log.debug("Handled %s from queue %s", event_type.event_type(), queue_name)
        return True

    async def close(self) -> None:
        try:
            if self.channel is not None and not self.channel.is_closed:
                await self.channel.close()
            if self.connection is not None and not self.connection.is_closed:
                await self.connection.close()
            log.info("Closed message bus connection")
        except Exception as e:
            log.warning("Error while closing message bus: %s", e)
        finally:
            self.channel = None
            self.connection = None
            self.exchange = None
            self.dead_letter_exchange = None
            self.consumers.clear()
