"""
Topic Subscriber
================

Bounded Context: Subscription Management

Issues the configured subscription set every time the session enters the
CONNECTED state and logs what the broker granted.

Design:
- One request per Connected transition, carrying every filter
- No automatic retry on failure: the next Connected transition retries
- Catch-all ('#') and explicit per-topic filter sets are equally valid

Example:
    >>> subscriber = TopicSubscriber(
    ...     subscriptions=[Subscription.catch_all(qos=1)],
    ...     logger=create_logger("subscriber")
    ... )
    >>> subscriber.on_connected(engine)   # called by SessionController
"""

from typing import Dict, Optional, Sequence, Tuple

from .engine import SUBACK_FAILURE, ProtocolEngine, SubscriptionFailed, SubscriptionGranted
from .errors import ConfigurationError, SubscribeError
from .logging import LogEvent, StructuredLogger
from .schemas import Subscription


class TopicSubscriber:
    """
    Subscription set owner.

    Attributes:
        subscriptions: Filters requested on every connect
        requests_issued: Subscription requests issued since start
        granted: Latest granted QoS per topic filter
    """

    def __init__(self, subscriptions: Sequence[Subscription], logger: StructuredLogger):
        if not subscriptions:
            raise ConfigurationError("At least one subscription is required")
        self.subscriptions: Tuple[Subscription, ...] = tuple(subscriptions)
        self.logger = logger
        self.requests_issued = 0
        self.granted: Dict[str, int] = {}
        self._pending: Dict[int, Tuple[Subscription, ...]] = {}

    @property
    def topic_filters(self) -> Tuple[str, ...]:
        return tuple(s.topic_filter for s in self.subscriptions)

    def on_connected(self, engine: ProtocolEngine) -> Optional[int]:
        """
        Issue the subscription request for a fresh connection.

        Returns:
            Request id, or None when the request could not be issued
        """
        # Requests from a previous connection will never be answered
        self._pending.clear()
        self.granted.clear()
        self.requests_issued += 1

        try:
            request_id = engine.subscribe(self.subscriptions)
        except SubscribeError as e:
            self.logger.error(
                event=LogEvent.SUBSCRIPTION_ERROR,
                message="Error subscribing to topics",
                exc_info=e,
                metadata={'topic_filters': list(self.topic_filters)}
            )
            return None

        self._pending[request_id] = self.subscriptions
        self.logger.info(
            event=LogEvent.SUBSCRIPTION_REQUESTED,
            message="Subscription requested",
            metadata={
                'request_id': request_id,
                'subscriptions': [
                    {'topic_filter': s.topic_filter, 'qos': s.qos}
                    for s in self.subscriptions
                ]
            }
        )
        return request_id

    def on_granted(self, event: SubscriptionGranted) -> None:
        """Log each (filter, granted QoS) pair of an answered request."""
        subscriptions = self._pending.pop(event.request_id, None)
        if subscriptions is None:
            self.logger.debug(
                event=LogEvent.SUBSCRIPTION_GRANTED,
                message="Ignoring grant for unknown subscription request",
                metadata={'request_id': event.request_id}
            )
            return

        accepted = 0
        for subscription, code in zip(subscriptions, event.granted):
            if code >= SUBACK_FAILURE:
                self.logger.warning(
                    event=LogEvent.SUBSCRIPTION_REFUSED,
                    message=f"Broker refused subscription to {subscription.topic_filter}",
                    metadata={'topic_filter': subscription.topic_filter, 'code': code}
                )
                continue

            accepted += 1
            self.granted[subscription.topic_filter] = code
            self.logger.info(
                event=LogEvent.SUBSCRIPTION_GRANTED,
                message=f"Subscribed to: {subscription.topic_filter} (QoS: {code})",
                metadata={
                    'topic_filter': subscription.topic_filter,
                    'qos': code,
                    'requested_qos': subscription.qos
                }
            )

        if accepted:
            self.logger.info(
                event=LogEvent.SUBSCRIPTION_READY,
                message="Ready to receive messages",
                metadata={'granted': dict(self.granted)}
            )

    def on_failed(self, event: SubscriptionFailed) -> None:
        """Log a failed request; retried on the next connection."""
        subscriptions = self._pending.pop(event.request_id, None) or self.subscriptions
        self.logger.error(
            event=LogEvent.SUBSCRIPTION_ERROR,
            message="Subscription request failed",
            exc_info=event.cause,
            metadata={
                'request_id': event.request_id,
                'topic_filters': [s.topic_filter for s in subscriptions]
            }
        )
