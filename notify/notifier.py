"""
Fire-and-forget notifications for availability events.

Two events are emitted:
  - trip_update           to every accepted member after a generation run
                          commits ("N new suggested periods generated ...")
  - availability_updated  to the trip creator after a member's submission
                          commits

Delivery model:
  - Scheduled on the running event loop (or a daemon thread when called
    outside one) and never awaited by the request path, so a slow or failing
    notification store cannot delay or fail the request.
  - One independent attempt loop per recipient: a failure for one member
    does not stop the others.
  - Each attempt has its own timeout (NOTIFY_TIMEOUT_SECONDS); failed
    attempts are retried up to NOTIFY_MAX_ATTEMPTS with linear backoff, then
    logged and dropped.
  - Invalid notifications (empty title, oversized fields) are dropped
    without retrying.
  - Duplicates are acceptable; read/unread state belongs to the store.

Each notification is written to the notifications table and, when
NOTIFY_WEBHOOK_URL is set, also POSTed there as JSON.
"""

import asyncio
import enum
import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Iterable

import httpx
from sqlalchemy.exc import SQLAlchemyError

from config import (
    FRONTEND_URL,
    NOTIFY_BACKOFF_SECONDS,
    NOTIFY_MAX_ATTEMPTS,
    NOTIFY_TIMEOUT_SECONDS,
    NOTIFY_WEBHOOK_URL,
)
from db.models import Notification
from db.session import SessionLocal
from errors import NotificationFailure
from trips.directory import TripWindow

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_MESSAGE_LENGTH = 10_000
MAX_ACTION_URL_LENGTH = 2048


class NotificationType(str, enum.Enum):
    TRIP_INVITATION = "trip_invitation"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    TRIP_UPDATE = "trip_update"
    AVAILABILITY_UPDATED = "availability_updated"
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"


_KNOWN_TYPES = {t.value for t in NotificationType}


@dataclass
class OutgoingNotification:
    user_id: str
    type: str
    title: str
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    action_url: str | None = None


DeliverFn = Callable[[OutgoingNotification], Awaitable[None]]

# Strong references so pending tasks are not garbage-collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


def trip_url(trip_id: str) -> str:
    return f"{FRONTEND_URL.rstrip('/')}/trips/{trip_id}"


def validate_notification(n: OutgoingNotification) -> None:
    """Raise ValueError for notifications that can never be delivered."""
    if not (n.user_id or "").strip():
        raise ValueError("user_id cannot be empty")
    if not (n.type or "").strip():
        raise ValueError("notification type is required")
    if not (n.title or "").strip():
        raise ValueError("notification title is required")
    if len(n.title) > MAX_TITLE_LENGTH:
        raise ValueError(f"notification title exceeds maximum length of {MAX_TITLE_LENGTH} characters")
    if n.message is not None and len(n.message) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"notification message exceeds maximum length of {MAX_MESSAGE_LENGTH} characters")
    if n.action_url is not None and len(n.action_url) > MAX_ACTION_URL_LENGTH:
        raise ValueError(f"action_url exceeds maximum length of {MAX_ACTION_URL_LENGTH} characters")
    if n.type not in _KNOWN_TYPES:
        logger.warning("Unknown notification type: %s (user_id=%s)", n.type, n.user_id)


def store_notification(n: OutgoingNotification) -> None:
    """Insert one row into notifications using a dedicated session."""
    session = SessionLocal()
    try:
        session.add(Notification(
            user_id=n.user_id,
            type=n.type,
            title=n.title,
            message=n.message,
            data=n.data or None,
            action_url=n.action_url,
        ))
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise NotificationFailure(f"failed to insert notification: {exc}") from exc
    finally:
        session.close()


async def _post_webhook(n: OutgoingNotification) -> None:
    try:
        async with httpx.AsyncClient(timeout=NOTIFY_TIMEOUT_SECONDS) as client:
            resp = await client.post(NOTIFY_WEBHOOK_URL, json=asdict(n))
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise NotificationFailure(f"webhook delivery failed: {exc}") from exc


async def deliver(n: OutgoingNotification) -> None:
    """One delivery attempt: notifications table, then the optional webhook."""
    await asyncio.to_thread(store_notification, n)
    if NOTIFY_WEBHOOK_URL:
        await _post_webhook(n)


async def send_with_retry(n: OutgoingNotification, deliver_fn: DeliverFn | None = None) -> bool:
    """
    Deliver a single notification with bounded retries.

    Returns True on success, False when the notification was invalid or every
    attempt failed.  Never raises: nothing upstream is waiting for it.
    """
    deliver_fn = deliver_fn or deliver
    try:
        validate_notification(n)
    except ValueError as exc:
        logger.warning("Dropping invalid notification (user_id=%s, type=%s): %s", n.user_id, n.type, exc)
        return False

    attempts = max(1, NOTIFY_MAX_ATTEMPTS)
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            await asyncio.wait_for(deliver_fn(n), timeout=NOTIFY_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError as exc:
            last_exc = exc
            logger.warning(
                "Notification attempt %d/%d timed out after %.1fs (user_id=%s, type=%s)",
                attempt, attempts, NOTIFY_TIMEOUT_SECONDS, n.user_id, n.type,
            )
        except Exception as exc:
            last_exc = exc
            logger.warning(
                "Notification attempt %d/%d failed: %s (user_id=%s, type=%s)",
                attempt, attempts, exc, n.user_id, n.type,
            )
        if attempt < attempts:
            await asyncio.sleep(NOTIFY_BACKOFF_SECONDS * attempt)

    logger.error(
        "Failed to create notification after %d attempts: %s (user_id=%s, type=%s, title=%s)",
        attempts, last_exc, n.user_id, n.type, n.title,
    )
    return False


async def deliver_all(
    notifications: Iterable[OutgoingNotification],
    deliver_fn: DeliverFn | None = None,
) -> list[bool]:
    """Fan out concurrently; each recipient succeeds or fails on its own."""
    return list(await asyncio.gather(*(send_with_retry(n, deliver_fn) for n in notifications)))


def _spawn(coro: Coroutine[Any, Any, Any]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # Called from plain sync code (CLI, scripts): run on a daemon thread instead.
        threading.Thread(target=asyncio.run, args=(coro,), daemon=True).start()
        return
    task = loop.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def dispatch(notifications: list[OutgoingNotification]) -> None:
    """Schedule delivery and return immediately."""
    if not notifications:
        return
    _spawn(deliver_all(notifications))


def build_generated_notifications(
    window: TripWindow,
    members: Iterable[str],
    period_count: int,
    min_days: int,
    min_availability_member: int,
) -> list[OutgoingNotification]:
    message = f"{period_count} new suggested periods generated for {window.name}"
    data = {
        "trip_id": window.trip_id,
        "total_periods": period_count,
        "min_days": min_days,
        "min_availability_member": min_availability_member,
        "trip_name": window.name,
    }
    return [
        OutgoingNotification(
            user_id=user_id,
            type=NotificationType.TRIP_UPDATE.value,
            title="Updated Availability Periods",
            message=message,
            data=dict(data),
            action_url=trip_url(window.trip_id),
        )
        for user_id in sorted(members)
    ]


def notify_generated(
    window: TripWindow,
    members: Iterable[str],
    period_count: int,
    min_days: int,
    min_availability_member: int,
) -> None:
    """Tell every accepted member a new result set exists.  Call only after the replace commits."""
    notifications = build_generated_notifications(
        window, members, period_count, min_days, min_availability_member,
    )
    logger.debug("Dispatching %d trip_update notifications for trip %s.", len(notifications), window.trip_id)
    dispatch(notifications)


def notify_availability_submitted(window: TripWindow, user_id: str, submitted_days: int) -> None:
    """Tell the trip creator a member submitted availability.  Skipped when the creator is the submitter."""
    if window.creator_id == user_id:
        return
    dispatch([
        OutgoingNotification(
            user_id=window.creator_id,
            type=NotificationType.AVAILABILITY_UPDATED.value,
            title="Created Availability",
            message=f"{user_id} submitted availability for {window.name} ({submitted_days} days)",
            data={
                "trip_id": window.trip_id,
                "user_id": user_id,
                "submitted_days": submitted_days,
                "trip_name": window.name,
            },
            action_url=trip_url(window.trip_id),
        )
    ])
