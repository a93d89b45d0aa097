"""
Consumer lag observers.

A lag observer reports the number of messages published to a stream but not
yet consumed by the store's consumer group. None means the lag could not be
determined; callers treat it as drained.
"""

from typing import Any, Optional, Protocol, runtime_checkable

import requests
from kafka import KafkaAdminClient, KafkaConsumer, TopicPartition
from kafka.errors import KafkaError

from cdc_engine.common.config import get_settings
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class LagObserver(Protocol):
    """Anything that can report outstanding messages for a stream."""

    def outstanding(self, stream: str) -> Optional[int]:
        ...


class KafkaLagObserver:
    """Lag from committed group offsets versus partition end offsets."""

    def __init__(
        self,
        bootstrap_servers: Optional[list[str]] = None,
        group_id: Optional[str] = None,
        admin: Optional[KafkaAdminClient] = None,
        consumer: Optional[KafkaConsumer] = None,
    ) -> None:
        """
        Initialize Kafka lag observer.

        Args:
            bootstrap_servers: Broker addresses (default from config)
            group_id: Consumer group whose lag is reported (default from config)
            admin: Pre-built admin client
            consumer: Pre-built consumer used only for offset lookups
        """
        settings = get_settings()
        self.bootstrap_servers = bootstrap_servers or settings.kafka.server_list()
        self.group_id = group_id or settings.kafka.group_id
        self._admin = admin
        self._consumer = consumer

    @property
    def admin(self) -> KafkaAdminClient:
        if self._admin is None:
            self._admin = KafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
        return self._admin

    @property
    def consumer(self) -> KafkaConsumer:
        if self._consumer is None:
            self._consumer = KafkaConsumer(bootstrap_servers=self.bootstrap_servers)
        return self._consumer

    def outstanding(self, stream: str) -> Optional[int]:
        """
        Summed lag over the topic's partitions.

        Partitions the group never committed count from their beginning offset.

        Args:
            stream: Topic name

        Returns:
            Outstanding messages, or None if Kafka could not be queried
        """
        try:
            partitions = self.consumer.partitions_for_topic(stream)
            if not partitions:
                logger.debug(f"Topic {stream} not found; lag unknown")
                return None

            topic_partitions = [TopicPartition(stream, p) for p in sorted(partitions)]
            committed = self.admin.list_consumer_group_offsets(
                self.group_id, partitions=topic_partitions
            )
            end_offsets = self.consumer.end_offsets(topic_partitions)
            beginning = self.consumer.beginning_offsets(topic_partitions)
        except KafkaError as e:
            logger.warning(f"Failed to read lag for {stream}: {e}")
            return None

        lag = 0
        for tp in topic_partitions:
            meta = committed.get(tp)
            position = meta.offset if meta is not None and meta.offset >= 0 else beginning.get(tp, 0)
            lag += max(0, end_offsets.get(tp, 0) - position)
        return lag

    def close(self) -> None:
        if self._admin is not None:
            self._admin.close()
        if self._consumer is not None:
            self._consumer.close()


class ConsoleLagObserver:
    """Lag from the Redpanda Console consumer-groups API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        group_id: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize console lag observer.

        Args:
            base_url: Console base URL, e.g. http://localhost:8080
            group_id: Group to read; the first listed group if omitted
            timeout: HTTP timeout in seconds
            session: requests session to reuse
        """
        self.base_url = (base_url or get_settings().kafka.console_url or "http://localhost:8080").rstrip("/")
        self.group_id = group_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def outstanding(self, stream: str) -> Optional[int]:
        """
        summedLag of the topic in the consumer group.

        Args:
            stream: Topic name

        Returns:
            Outstanding messages, or None if unreachable or not reported
        """
        try:
            response = self.session.get(f"{self.base_url}/api/consumer-groups", timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to query consumer lag for {stream}: {e}")
            return None

        if not isinstance(body, dict):
            logger.warning(f"Unexpected consumer-groups response for {stream}: {type(body).__name__}")
            return None

        group = self._select_group(body.get("consumerGroups"))
        if group is None:
            return None

        topic_offsets = group.get("topicOffsets")
        if not isinstance(topic_offsets, list):
            return None

        for offsets in topic_offsets:
            if not isinstance(offsets, dict) or offsets.get("topic") != stream:
                continue
            lag = offsets.get("summedLag")
            if lag is None:
                return None
            try:
                return int(lag)
            except (TypeError, ValueError):
                logger.warning(f"Unusable summedLag {lag!r} for {stream}")
                return None
        return None

    def _select_group(self, groups: Any) -> Optional[dict]:
        if not isinstance(groups, list):
            return None
        groups = [g for g in groups if isinstance(g, dict)]
        if not groups:
            return None
        if self.group_id is None:
            return groups[0]
        for group in groups:
            if group.get("groupId") == self.group_id:
                return group
        return None
