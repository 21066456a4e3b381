import json
import logging
import os
import threading
import time

import pika
from .database import SessionLocal
from .stock import apply_decrement

logger = logging.getLogger(__name__)

EXCHANGE = "events"
PENDING_QUEUE = "store.stock.pending"
DEAD_LETTER_EXCHANGE = "events.dead"
DEAD_LETTER_QUEUE = "store.stock.pending.dead"


class StockReconciliationConsumer:
    """
    Applies stock decrements that a billing client could not complete itself.

    Billing hands each failed line over as a 'stock.pending' event; this
    consumer takes the stock off and answers on the same channel with
    'stock.reconciled' or 'stock.reconcile_failed'.

    A message is acked only once its decrement is committed and the answer is
    published. Malformed events and unknown items go straight to the
    dead-letter queue. Any other error requeues the message once and
    dead-letters it on the second failure. Each event carries the billing
    side's idempotency key, so a redelivered event never takes stock twice.
    """

    def __init__(self, session_factory=SessionLocal, retry_seconds=5):
        self.session_factory = session_factory
        self.retry_seconds = retry_seconds
        self.host = os.getenv("RABBITMQ_HOST", "rabbitmq")
        self.connection = None
        self.channel = None

    def connect(self):
        """Connects to RabbitMQ and sets up the exchanges and queues."""
        while True:
            try:
                credentials = pika.PlainCredentials('guest', 'guest')
                parameters = pika.ConnectionParameters(self.host, credentials=credentials)
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()

                self.channel.exchange_declare(exchange=EXCHANGE, exchange_type='topic', durable=True)
                self.channel.exchange_declare(exchange=DEAD_LETTER_EXCHANGE, exchange_type='fanout', durable=True)
                self.channel.queue_declare(queue=DEAD_LETTER_QUEUE, durable=True)
                self.channel.queue_bind(exchange=DEAD_LETTER_EXCHANGE, queue=DEAD_LETTER_QUEUE)

                self.channel.queue_declare(
                    queue=PENDING_QUEUE,
                    durable=True,
                    arguments={"x-dead-letter-exchange": DEAD_LETTER_EXCHANGE},
                )
                self.channel.queue_bind(exchange=EXCHANGE, queue=PENDING_QUEUE, routing_key='stock.pending')

                logger.info("Stock reconciliation consumer connected to RabbitMQ")
                break
            except pika.exceptions.AMQPConnectionError:
                logger.warning("RabbitMQ not ready, retrying in %s seconds", self.retry_seconds)
                time.sleep(self.retry_seconds)

    @staticmethod
    def publish(ch, routing_key, message):
        """Publishes an answer on the consuming channel. AMQP errors propagate."""
        ch.basic_publish(
            exchange=EXCHANGE,
            routing_key=routing_key,
            body=json.dumps(message),
            properties=pika.BasicProperties(
                delivery_mode=2,  # Persistent
                content_type='application/json'
            )
        )
        logger.info("Sent event %r: %s", routing_key, message)

    def process_stock_pending(self, ch, method, properties, body):
        """
        Received 'stock.pending'.
        Action: Decrement stock (floored at zero) -> Reconciled OR Failed.
        """
        try:
            data = json.loads(body)
            item_id, quantity = int(data["item_id"]), int(data["quantity"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Malformed stock.pending event %r dead-lettered: %s", body, e)
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            return

        logger.info("Pending stock update received: %s", data)
        db = self.session_factory()
        try:
            item, shortfall = apply_decrement(db, item_id, quantity, key=data.get("key"))
            if item is None:
                self.publish(ch, "stock.reconcile_failed", {
                    "transaction_id": data.get("transaction_id"),
                    "item_id": item_id,
                    "reason": "ITEM_NOT_FOUND",
                })
                logger.error(
                    "Pending stock update of sale %s for missing item %s dead-lettered",
                    data.get("transaction_id"), item_id,
                )
                ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
                return

            if shortfall:
                logger.warning("Item %s reconciled with a shortfall of %s", item.id, shortfall)
            self.publish(ch, "stock.reconciled", {
                "transaction_id": data.get("transaction_id"),
                "item_id": item.id,
                "stock": item.stock,
                "shortfall": shortfall,
            })
        except Exception:
            requeue = not method.redelivered
            logger.exception(
                "Error applying pending stock update for item %s, %s",
                item_id, "requeued" if requeue else "dead-lettered",
            )
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=requeue)
            return
        finally:
            db.close()

        ch.basic_ack(delivery_tag=method.delivery_tag)

    def start_listening(self):
        """Starts the consuming loop."""
        if not self.connection:
            self.connect()

        self.channel.basic_consume(
            queue=PENDING_QUEUE, on_message_callback=self.process_stock_pending
        )

        logger.info("Store service waiting for pending stock events...")
        self.channel.start_consuming()

def start_consumer_thread():
    """Helper to run consumer in a background thread."""
    consumer = StockReconciliationConsumer()
    thread = threading.Thread(target=consumer.start_listening, daemon=True)
    thread.start()
    return thread
