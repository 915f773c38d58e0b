"""Subscription notification publishing to Google Cloud Pub/Sub.

Responsibilities:
- Build SubscriptionStatusNotification messages
- Publish to the configured Pub/Sub topic
- Manage Pub/Sub client lifecycle
"""

import time
from threading import RLock
from typing import Optional

from google.cloud import pubsub_v1

from marketplace_reconciler.logging_config import get_logger
from marketplace_reconciler.models.events import SubscriptionStatusNotification
from marketplace_reconciler.models.settings import NotificationConfig
from marketplace_reconciler.models.subscription import SubscriptionRecord

logger = get_logger(__name__)


class EventDispatcher:
    """Publishes subscription status notifications to Pub/Sub.

    Downstream subscribers turn these into customer emails. Publishing never
    raises; failures are logged and reported as False.
    """

    def __init__(
        self,
        settings: Optional[NotificationConfig] = None,
        publisher: Optional[pubsub_v1.PublisherClient] = None,
    ):
        """Initialize event dispatcher.

        Args:
            settings: Notification settings (defaults to configuration)
            publisher: Pre-built publisher client, mainly for tests
        """
        if settings is None:
            from marketplace_reconciler.config import get_config

            settings = get_config().notifications
        self._settings = settings
        self._lock = RLock()
        self._publisher = publisher
        self._topic_path: Optional[str] = None
        self._enabled = settings.enabled

        self._initialize()

    def _initialize(self) -> None:
        """Init pub/sub publisher from settings"""
        if not self._enabled:
            logger.info("event_dispatcher_disabled", message="Status notifications are disabled in config")
            return

        try:
            if self._publisher is None:
                self._publisher = pubsub_v1.PublisherClient()
            self._topic_path = self._publisher.topic_path(self._settings.project_id, self._settings.topic)
            self._ensure_topic_exists()
            logger.info(
                "event_dispatcher_initialized",
                project_id=self._settings.project_id,
                topic=self._settings.topic,
                topic_path=self._topic_path,
            )
        except Exception as e:
            logger.error(
                "event_dispatcher_init_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            # Disable dispatcher if initialization fails
            self._enabled = False

    def _ensure_topic_exists(self) -> None:
        """Ensure Pub/Sub topic exists, create if it doesn't."""
        try:
            self._publisher.get_topic(request={"topic": self._topic_path})
            logger.info("pubsub_topic_exists", topic_path=self._topic_path)
        except Exception:
            topic = self._publisher.create_topic(request={"name": self._topic_path})
            logger.info("pubsub_topic_created", topic_path=topic.name)

    def is_enabled(self) -> bool:
        """Check if event dispatcher is enabled.

        Returns:
            True if notifications are enabled and the client is initialized
        """
        return self._enabled and self._publisher is not None

    def publish_status(self, subscription: SubscriptionRecord) -> bool:
        """Publish the current state of a subscription.

        Args:
            subscription: Subscription as stored after the trigger

        Returns:
            True if published successfully, False otherwise
        """
        if not self.is_enabled():
            logger.debug("event_dispatcher_disabled", message="Skipping event publication")
            return False

        with self._lock:
            try:
                notification = SubscriptionStatusNotification(
                    external_id=subscription.external_id,
                    status=subscription.status.value,
                    is_active=subscription.is_active,
                    plan_id=subscription.plan_id,
                    quantity=subscription.quantity,
                    purchaser_email=subscription.purchaser_email,
                    event_time_millis=int(time.time() * 1000),
                )
                self._publish_notification(notification)
                logger.info(
                    "subscription_event_published",
                    external_id=subscription.external_id,
                    status=subscription.status.value,
                )
                return True
            except Exception as e:
                logger.error(
                    "subscription_event_publish_failed",
                    external_id=subscription.external_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return False

    def _publish_notification(self, notification: SubscriptionStatusNotification) -> None:
        """Publish one notification and wait for the broker to accept it.

        Raises:
            GoogleAPIError: If publication fails after retries
        """
        if not self._publisher or not self._topic_path:
            raise RuntimeError("Publisher is not initialized")

        message_data = notification.model_dump_json().encode("utf-8")
        future = self._publisher.publish(
            self._topic_path,
            message_data,
            # Attributes for subscriber-side filtering
            status=notification.status,
            external_id=notification.external_id,
        )
        message_id = future.result(timeout=self._settings.publish_timeout_seconds)
        logger.debug("pubsub_message_published", message_id=message_id)

    def shutdown(self) -> None:
        """Shutdown the event dispatcher and close connections."""
        with self._lock:
            if self._publisher:
                logger.info("event_dispatcher_shutting_down")
                self._publisher = None
                self._topic_path = None
                logger.info("event_dispatcher_shutdown_complete")
