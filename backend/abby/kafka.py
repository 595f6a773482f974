# abby/kafka.py
import json
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from abby.config import get_settings

logger = logging.getLogger(__name__)

producer: AIOKafkaProducer | None = None


async def start_kafka():
    global producer
    kafka = get_settings().kafka
    if not kafka.enabled:
        logger.info("Kafka disabled; domain events will not be published")
        return
    producer = AIOKafkaProducer(
        bootstrap_servers=kafka.bootstrap,
        value_serializer=lambda v: json.dumps(v, default=str).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    await producer.start()


async def stop_kafka():
    global producer
    if producer:
        await producer.stop()
        producer = None


async def publish_event(event_type: str, key, payload: dict) -> bool:
    """
    도메인 이벤트 발행. 프로듀서가 없으면(비활성) 로그만 남기고 False.
    """
    if producer is None:
        logger.debug("skip event %s key=%s", event_type, key)
        return False
    try:
        await producer.send_and_wait(
            get_settings().kafka.topic_events,
            {"type": event_type, **payload},
            key=key,
        )
    except KafkaError:
        # 이미 커밋된 요청은 실패시키지 않는다
        logger.exception("failed to publish %s key=%s", event_type, key)
        return False
    return True
