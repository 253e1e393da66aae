"""
Notification collaborator.

Turns outbox rows into ``Notification`` envelopes and delivers them.
Delivery is at-least-once: the dispatcher retries until ``deliver``
returns, so every envelope carries the outbox event id and consumers
de-duplicate on it.  ``deliver`` raises ``DeliveryFailed`` on any failure;
it never swallows one.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ride_lifecycle.domain.enums import EventType
from ride_lifecycle.domain.errors import DeliveryFailed
from ride_lifecycle.domain.safety import EMERGENCY_CONTACT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    event_id: str
    ride_id: str
    type: str
    recipients: list[str]
    payload: dict[str, Any] = field(default_factory=dict)
    priority: str = "normal"
    silent: bool = False


def _party(prefix: str, user_id: Optional[str]) -> list[str]:
    return [f"{prefix}:{user_id}"] if user_id else []


def build_notification(
    event_id: str,
    ride_id: str,
    event_type: str,
    payload: dict[str, Any],
    emergency_contact: Optional[str] = None,
) -> Notification:
    """Address an outbox event to the people who must hear about it.

    The ``emergency_contact`` alert target becomes
    ``emergency_contact:<contact>``, or is dropped when the rider has none
    on file.  A silent SOS is not sent to the ride's own parties.
    """
    parties = _party("rider", payload.get("rider_id")) + _party(
        "driver", payload.get("driver_id")
    )
    priority = "normal"
    silent = bool(payload.get("silent"))

    if event_type == EventType.SAFETY_ESCALATED.value:
        recipients = []
        for target in payload.get("alert_targets", []):
            if target != EMERGENCY_CONTACT:
                recipients.append(target)
            elif emergency_contact:
                recipients.append(f"{EMERGENCY_CONTACT}:{emergency_contact}")
        if not silent:
            recipients += parties
        priority = "urgent"
    elif event_type == EventType.SAFETY_RESOLVED.value:
        recipients = ["operations"]
    else:
        recipients = parties

    return Notification(
        event_id=event_id,
        ride_id=ride_id,
        type=event_type,
        recipients=recipients,
        payload=payload,
        priority=priority,
        silent=silent,
    )


class NotificationCollaborator(ABC):
    @abstractmethod
    async def deliver(self, notification: Notification) -> None: ...


class LoggingNotifier(NotificationCollaborator):
    """Logs each notification once; used when no webhook is configured.

    Remembers the last *max_remembered* event ids for de-duplication.
    """

    def __init__(self, max_remembered: int = 10_000):
        self.max_remembered = max_remembered
        self.delivered: OrderedDict[str, Notification] = OrderedDict()

    async def deliver(self, notification: Notification) -> None:
        if notification.event_id in self.delivered:
            self.delivered.move_to_end(notification.event_id)
            return
        self.delivered[notification.event_id] = notification
        while len(self.delivered) > self.max_remembered:
            self.delivered.popitem(last=False)
        level = logging.WARNING if notification.priority == "urgent" else logging.INFO
        logger.log(
            level,
            "Notification %s for ride %s -> %s",
            notification.type,
            notification.ride_id,
            ", ".join(notification.recipients) or "-",
        )


class WebhookNotifier(NotificationCollaborator):
    """POSTs notifications to an HTTP endpoint (push / SMS / ops tooling)."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def deliver(self, notification: Notification) -> None:
        body = {
            "event_id": notification.event_id,
            "ride_id": notification.ride_id,
            "type": notification.type,
            "recipients": notification.recipients,
            "priority": notification.priority,
            "silent": notification.silent,
            "payload": notification.payload,
        }
        try:
            resp = await self.client.post(
                self.url,
                json=body,
                headers={"Idempotency-Key": notification.event_id},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryFailed(
                f"Webhook delivery of {notification.event_id} failed: {exc}"
            ) from exc

    async def aclose(self) -> None:
        await self.client.aclose()
