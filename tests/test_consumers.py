import json
import unittest
from decimal import Decimal
from unittest import mock

import pika
from sqlalchemy.exc import OperationalError

from viyaabhaaram.store_service.app.consumers import (
    DEAD_LETTER_EXCHANGE, PENDING_QUEUE, StockReconciliationConsumer,
)
from viyaabhaaram.store_service.app.models import Item

from tests.fakes import make_session_factory


class StockReconciliationConsumerTests(unittest.TestCase):
    def setUp(self):
        self.SessionLocal = make_session_factory()
        db = self.SessionLocal()
        item = Item(user_email="shop@example.com", name="Oil", price=Decimal("50.00"), stock=3)
        db.add(item)
        db.commit()
        self.item_id = item.id
        db.close()

        self.consumer = StockReconciliationConsumer(session_factory=self.SessionLocal)
        self.ch = mock.Mock()

    def deliver(self, payload, redelivered=False):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        method = mock.Mock(delivery_tag=7, redelivered=redelivered)
        self.consumer.process_stock_pending(self.ch, method, None, body)

    def event(self, quantity=2):
        return {"transaction_id": 11, "item_id": self.item_id, "quantity": quantity, "key": f"tx-11-item-{self.item_id}"}

    def published(self):
        return [
            (c.kwargs["routing_key"], json.loads(c.kwargs["body"]))
            for c in self.ch.basic_publish.call_args_list
        ]

    def stock(self):
        db = self.SessionLocal()
        try:
            return db.get(Item, self.item_id).stock
        finally:
            db.close()

    def test_pending_event_decrements_and_reports_reconciled(self):
        self.deliver(self.event())

        self.assertEqual(self.stock(), 1)
        self.assertEqual(self.published(), [
            ("stock.reconciled", {"transaction_id": 11, "item_id": self.item_id, "stock": 1, "shortfall": 0}),
        ])
        self.assertEqual(self.ch.basic_publish.call_args.kwargs["exchange"], "events")
        self.ch.basic_ack.assert_called_once_with(delivery_tag=7)

    def test_redelivered_event_does_not_take_stock_twice(self):
        self.deliver(self.event())
        self.deliver(self.event(), redelivered=True)

        self.assertEqual(self.stock(), 1)
        self.assertEqual(self.ch.basic_ack.call_count, 2)

    def test_unknown_item_is_reported_and_dead_lettered(self):
        self.deliver({"transaction_id": 11, "item_id": 999, "quantity": 1, "key": "tx-11-item-999"})

        routing_key, message = self.published()[0]
        self.assertEqual(routing_key, "stock.reconcile_failed")
        self.assertEqual(message["reason"], "ITEM_NOT_FOUND")
        self.ch.basic_nack.assert_called_once_with(delivery_tag=7, requeue=False)
        self.ch.basic_ack.assert_not_called()

    def test_malformed_event_is_dead_lettered_without_changes(self):
        self.deliver(b"not json")
        self.deliver({"transaction_id": 11})

        self.assertEqual(self.stock(), 3)
        self.ch.basic_publish.assert_not_called()
        self.ch.basic_ack.assert_not_called()
        self.assertEqual(self.ch.basic_nack.call_args_list, [mock.call(delivery_tag=7, requeue=False)] * 2)

    def test_failed_answer_requeues_then_replays_without_decrementing(self):
        self.ch.basic_publish.side_effect = pika.exceptions.AMQPChannelError("channel closed")
        self.deliver(self.event())

        self.ch.basic_nack.assert_called_once_with(delivery_tag=7, requeue=True)
        self.ch.basic_ack.assert_not_called()
        self.assertEqual(self.stock(), 1)

        self.ch.basic_publish.side_effect = None
        self.deliver(self.event(), redelivered=True)

        self.assertEqual(self.stock(), 1)
        self.assertEqual(self.published()[-1][1]["stock"], 1)
        self.ch.basic_ack.assert_called_once_with(delivery_tag=7)

    @mock.patch("viyaabhaaram.store_service.app.consumers.apply_decrement")
    def test_database_error_requeues_once_then_dead_letters(self, apply_decrement):
        apply_decrement.side_effect = OperationalError("UPDATE items", {}, Exception("database is locked"))

        self.deliver(self.event())
        self.deliver(self.event(), redelivered=True)

        self.assertEqual(self.ch.basic_nack.call_args_list, [
            mock.call(delivery_tag=7, requeue=True),
            mock.call(delivery_tag=7, requeue=False),
        ])
        self.ch.basic_publish.assert_not_called()
        self.assertEqual(self.stock(), 3)

    @mock.patch("viyaabhaaram.store_service.app.consumers.pika.BlockingConnection")
    def test_pending_queue_dead_letters_to_its_own_exchange(self, connection_cls):
        channel = connection_cls.return_value.channel.return_value

        self.consumer.connect()

        channel.queue_declare.assert_any_call(
            queue=PENDING_QUEUE, durable=True, arguments={"x-dead-letter-exchange": DEAD_LETTER_EXCHANGE},
        )
        channel.queue_bind.assert_any_call(exchange="events", queue=PENDING_QUEUE, routing_key="stock.pending")


if __name__ == '__main__':
    unittest.main()
