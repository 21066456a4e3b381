import json
import unittest
from unittest import mock

import pika

from viyaabhaaram.billing_service.app.errors import RemoteCallFailure
from viyaabhaaram.billing_service.app.messaging.producer import RabbitMQProducer


class ProducerTests(unittest.TestCase):
    @mock.patch("viyaabhaaram.billing_service.app.messaging.producer.pika.BlockingConnection")
    def test_publish_sends_persistent_json_and_closes(self, connection_cls):
        connection = connection_cls.return_value
        channel = connection.channel.return_value

        RabbitMQProducer(host="mq").publish_event({"item_id": 4, "quantity": 2}, routing_key="stock.pending")

        kwargs = channel.basic_publish.call_args.kwargs
        self.assertEqual(kwargs["exchange"], "events")
        self.assertEqual(kwargs["routing_key"], "stock.pending")
        self.assertEqual(json.loads(kwargs["body"]), {"item_id": 4, "quantity": 2})
        self.assertEqual(kwargs["properties"].delivery_mode, 2)
        connection.close.assert_called_once()

    @mock.patch("viyaabhaaram.billing_service.app.messaging.producer.pika.BlockingConnection")
    def test_unreachable_broker_is_remote_failure(self, connection_cls):
        connection_cls.side_effect = pika.exceptions.AMQPConnectionError("refused")
        with self.assertRaises(RemoteCallFailure):
            RabbitMQProducer(host="mq").publish_event({"transaction_id": 1})


if __name__ == '__main__':
    unittest.main()
