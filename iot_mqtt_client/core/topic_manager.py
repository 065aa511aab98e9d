"""
Topic construction for the telemetry/control demo.

Every topic is built as ``{namespace}/{suffix}``, where the namespace is a
caller-supplied unique prefix shared with the devices (e.g. the ESP32 firmware
publishing sensor readings) and the suffix is fixed per logical purpose:

    X1/suhu         temperature readings   (TopicPurpose.TELEMETRY_A)
    X1/kelembaban   humidity readings      (TopicPurpose.TELEMETRY_B)
    X1/led          actuator commands      (TopicPurpose.COMMAND)
    X1/status       device status          (TopicPurpose.STATUS)

The namespace is what keeps independent deployments on a public broker from
seeing each other's traffic. An empty namespace is accepted, but collisions
then become the caller's problem, so a warning is logged.

Example:
    >>> manager = TopicManager(namespace="X1")
    >>> manager.build_topics()[TopicPurpose.COMMAND]
    'X1/led'
"""
import logging
from typing import Mapping, Optional

from .models import DEFAULT_TOPIC_SUFFIXES, TopicPurpose

logger = logging.getLogger(__name__)


class TopicManager:
    """
    Builds and inspects the per-purpose topic set for one namespace.

    Attributes:
        namespace: Unique prefix prepended to every topic
    """

    def __init__(self, namespace: str):
        self.namespace = namespace
        if not namespace:
            logger.warning(
                "Empty topic namespace prefix; topics may collide with other "
                "deployments on the same broker"
            )
        logger.debug(f"Initialized TopicManager with namespace: {namespace!r}")

    def build_topic(self, suffix: str) -> str:
        return f"{self.namespace}/{suffix}"

    def build_topics(
        self, suffixes: Optional[Mapping[TopicPurpose | str, str]] = None
    ) -> dict[TopicPurpose, str]:
        """
        Build the topic for every logical purpose.

        Args:
            suffixes: Optional per-purpose overrides of the default suffixes

        Returns:
            Mapping of purpose to topic string

        Raises:
            ValueError: If two purposes would end up on the same topic
        """
        resolved = dict(DEFAULT_TOPIC_SUFFIXES)
        for purpose, suffix in (suffixes or {}).items():
            resolved[TopicPurpose(purpose)] = suffix

        topics = {purpose: self.build_topic(suffix) for purpose, suffix in resolved.items()}

        if len(set(topics.values())) != len(topics):
            raise ValueError(f"Topic suffixes must be distinct per purpose, got {resolved}")

        logger.debug(
            f"Built topics for namespace {self.namespace!r}",
            extra={p.value: t for p, t in topics.items()},
        )
        return topics

    def purpose_for(self, topic: str, topics: Mapping[TopicPurpose, str]) -> Optional[TopicPurpose]:
        """Return the purpose whose topic is ``topic``, or None for foreign topics."""
        for purpose, candidate in topics.items():
            if candidate == topic:
                return purpose
        return None

