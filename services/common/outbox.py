from __future__ import annotations

import json
import logging

from confluent_kafka import Producer

from .models import SettlementOutcome

LOGGER = logging.getLogger('token_liquidity.outbox')


class KafkaOutbox:
    def __init__(self, bootstrap_servers: str, topic: str, *, client_id: str = 'token-liquidity-reconciler', producer=None) -> None:
        self.topic = topic
        self.producer = producer or Producer(
            {
                'bootstrap.servers': bootstrap_servers,
                'client.id': client_id
            }
        )

    def publish(self, outcome: SettlementOutcome) -> None:
        self.producer.produce(
            topic=self.topic,
            key=outcome.txid,
            value=json.dumps(outcome.as_payload()).encode('utf-8')
        )
        self.producer.poll(0)
        LOGGER.debug('outcome published topic=%s txid=%s', self.topic, outcome.txid)

    def flush(self, timeout: float = 5.0) -> None:
        self.producer.flush(timeout)


class NullOutbox:
    """Used when no Kafka cluster is configured."""

    def publish(self, outcome: SettlementOutcome) -> None:
        LOGGER.debug('outbox disabled txid=%s', outcome.txid)

    def flush(self, timeout: float = 5.0) -> None:
        return None
