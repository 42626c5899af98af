"""
Push-marketing dispatch.

A notification row is created as ``queued``; ``dispatch_notification`` then
sends it to the topic its target maps to and records the outcome on the row.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .db import SessionLocal
from .exceptions import PushError

logger = logging.getLogger(__name__)

TOPICS = {
    "premium": "premium_users",
    "free": "free_users",
}
DEFAULT_TOPIC = "all_users"
CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"
SCREEN = "notifications"
HISTORY_LIMIT = 20


def topic_for(target: Optional[str]) -> str:
    return TOPICS.get(target or "all", DEFAULT_TOPIC)


def build_payload(notification: models.MarketingNotification) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "title": notification.title,
        "body": notification.body,
        "target_topic": topic_for(notification.target),
        "data": {"click_action": CLICK_ACTION, "screen": SCREEN},
    }
    if notification.image_url:
        payload["imageUrl"] = notification.image_url
    return payload


class PushClient:
    """Thin HTTP client for the push gateway."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or settings.PUSH_API_URL
        self.api_key = api_key or settings.PUSH_API_KEY
        self.timeout = timeout or settings.PUSH_TIMEOUT_SECONDS

    def send(self, payload: Dict[str, Any]) -> str:
        """Send one message; returns the gateway's message id."""
        if not self.url:
            raise PushError("PUSH_API_URL is not set")

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            r = httpx.post(self.url, json={"message": payload}, headers=headers, timeout=self.timeout)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PushError(f"Push gateway returned {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise PushError(f"Push gateway unreachable: {e}") from e

        try:
            data = r.json() if r.content else {}
        except ValueError:
            # шлюз ответил 200 не-JSON телом: сообщение принято, id неизвестен
            logger.warning("Push gateway returned non-JSON body: %r", r.text[:200])
            data = {}
        if not isinstance(data, dict):
            data = {}
        return str(data.get("name") or data.get("message_id") or "")


# ---------- Очередь уведомлений ----------

def queue_notification(
    db: Session,
    title: str,
    body: str,
    target: str = "all",
    image_url: Optional[str] = None,
) -> models.MarketingNotification:
    notification = models.MarketingNotification(
        title=title,
        body=body,
        target=target,
        image_url=image_url or None,
        status="queued",
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info("Queued notification %s for %s", notification.id, target)
    return notification


def list_history(db: Session, limit: int = HISTORY_LIMIT):
    return (
        db.query(models.MarketingNotification)
        .order_by(models.MarketingNotification.sent_at.desc())
        .limit(limit)
        .all()
    )


def dispatch_notification(db: Session, notification_id: str, client: PushClient) -> Optional[models.MarketingNotification]:
    notification = db.get(models.MarketingNotification, notification_id)
    if notification is None:
        logger.warning("Notification %s vanished before dispatch", notification_id)
        return None

    try:
        message_id = client.send(build_payload(notification))
    except PushError as e:
        logger.error("Error sending notification %s: %s", notification_id, e)
        notification.status = "failed"
        notification.error = str(e)
    else:
        logger.info("Sent notification %s as %s", notification_id, message_id)
        notification.status = "sent"
        notification.sent_message_id = message_id
        notification.error = None

    db.commit()
    db.refresh(notification)
    return notification


def dispatch_in_background(notification_id: str, client: PushClient, session_factory=SessionLocal) -> None:
    """BackgroundTasks entry point; opens its own DB session."""
    db = session_factory()
    try:
        dispatch_notification(db, notification_id, client)
    finally:
        db.close()
