from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from google.cloud import pubsub_v1

logger = logging.getLogger(__name__)

TOPIC_INTAKE_PUBLISHED = "intake-published"
TOPIC_SUBMISSION_RECEIVED = "submission-received"


class PubSubClient:
    """Wrapper for Google Cloud Pub/Sub operations."""

    def __init__(
        self,
        project_id: str,
        *,
        published_topic: str = TOPIC_INTAKE_PUBLISHED,
        submission_topic: str = TOPIC_SUBMISSION_RECEIVED,
        publisher: Any | None = None,
    ) -> None:
        self.project_id = project_id
        self.published_topic = published_topic
        self.submission_topic = submission_topic
        self.publisher = publisher or pubsub_v1.PublisherClient()

    def publish(
        self,
        topic_id: str,
        message: dict[str, Any],
        *,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Publish a message to a Pub/Sub topic.

        Args:
            topic_id: The topic ID (e.g., "intake-published")
            message: The message payload as a dictionary
            attributes: Optional message attributes

        Returns:
            Message ID from Pub/Sub
        """
        topic_path = self.publisher.topic_path(self.project_id, topic_id)
        data = json.dumps(message, default=str).encode("utf-8")

        future = self.publisher.publish(topic_path, data, **(attributes or {}))
        message_id = future.result()

        logger.info(
            "Published message to Pub/Sub",
            extra={
                "topic_id": topic_id,
                "message_id": message_id,
                "attributes": attributes,
            },
        )
        return message_id

    def publish_intake_published(
        self,
        *,
        intake_id: str,
        slug: str,
        published_at: datetime,
    ) -> str:
        """Announce that a new snapshot replaced the published intake."""
        message = {
            "intake_id": intake_id,
            "slug": slug,
            "published_at": published_at.isoformat(),
        }
        attributes = {"intake_id": intake_id, "event_type": "intake_published"}
        return self.publish(self.published_topic, message, attributes=attributes)

    def publish_submission_received(self, *, intake_id: str, submission_id: str) -> str:
        """Announce a stored submission. Answers stay in the store, not in the event."""
        message = {"intake_id": intake_id, "submission_id": submission_id}
        attributes = {"intake_id": intake_id, "event_type": "submission_received"}
        return self.publish(self.submission_topic, message, attributes=attributes)


__all__ = ["PubSubClient", "TOPIC_INTAKE_PUBLISHED", "TOPIC_SUBMISSION_RECEIVED"]
