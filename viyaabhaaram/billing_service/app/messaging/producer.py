import json
import logging

import pika

from .. import config
from ..errors import RemoteCallFailure

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """One short-lived connection per published event."""

    def __init__(self, host=config.RABBITMQ_HOST, exchange="events"):
        self.host = host
        self.exchange = exchange

    def publish_event(self, event_data: dict, routing_key: str = "sale.recorded"):
        try:
            connection = pika.BlockingConnection(
                pika.ConnectionParameters(
                    host=self.host,
                    heartbeat=600,
                    blocked_connection_timeout=300
                )
            )
        except pika.exceptions.AMQPError as e:
            raise RemoteCallFailure(f"RabbitMQ unreachable at {self.host}: {e}") from e

        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=self.exchange, exchange_type='topic', durable=True)
            channel.basic_publish(
                exchange=self.exchange,
                routing_key=routing_key,
                body=json.dumps(event_data, default=str),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Persistent
                    content_type='application/json'
                )
            )
            logger.info("Sent event %r: %s", routing_key, event_data)
        except pika.exceptions.AMQPError as e:
            raise RemoteCallFailure(f"Failed to publish {routing_key!r}: {e}") from e
        finally:
            connection.close()
