"""Best-effort notification delivery.

Recipients are either a :class:`~mfg_procurement.constants.Role`, which fans
out to the users subscribed to that role's topic, or a plain user id.
Delivery is fire-and-forget: :func:`dispatch` logs failures and never lets
them escape into the workflow that triggered the message.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, List, Mapping, Optional, Protocol, Union

from . import log
from .constants import Collection, Role
from .ledger_store import LedgerStore, join_path
from .records import NotificationRow, deserialize_many, deserialize_notification


Recipient = Union[Role, str]


class Notifier(Protocol):
    """Anything able to deliver a message to a role or user."""

    def notify(self, recipient: Recipient, notification: Mapping[str, Any]) -> None:
        ...


class RoleDirectory:
    """Role topic subscriptions kept under ``roles/<role>`` in the store."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def _path(self, role: Role) -> str:
        return join_path(Collection.ROLES.value, Role(role).value)

    def subscribers(self, role: Role) -> List[str]:
        raw = self._store.read(self._path(role))
        return [str(user_id) for user_id in raw] if isinstance(raw, list) else []

    def subscribe_role(self, role: Role, user_id: str) -> None:
        with self._store.transaction():
            current = self.subscribers(role)
            if user_id not in current:
                self._store.write(self._path(role), [*current, user_id])
                log.info("Subscribed user '%s' to role '%s'", user_id, Role(role).value)

    def unsubscribe_role(self, role: Role, user_id: str) -> None:
        with self._store.transaction():
            current = self.subscribers(role)
            if user_id in current:
                self._store.write(self._path(role), [uid for uid in current if uid != user_id])
                log.info("Unsubscribed user '%s' from role '%s'", user_id, Role(role).value)


class StoreNotifier:
    """Deliver notifications into per-user inboxes in the ledger store."""

    def __init__(self, store: LedgerStore, directory: Optional[RoleDirectory] = None) -> None:
        self._store = store
        self._directory = directory or RoleDirectory(store)

    def notify(self, recipient: Recipient, notification: Mapping[str, Any]) -> None:
        if isinstance(recipient, Role):
            user_ids = self._directory.subscribers(recipient)
            if not user_ids:
                log.debug("No subscribers for role '%s'", recipient.value)
        else:
            user_ids = [recipient]
        created_at = notification.get("createdAt") or datetime.now(UTC).isoformat()
        for user_id in user_ids:
            self._store.append(
                join_path(Collection.NOTIFICATIONS.value, user_id),
                {**notification, "status": "unread", "createdAt": created_at},
            )


def dispatch(
    notifier: Notifier,
    recipient: Optional[Recipient],
    *,
    notification_type: str,
    message: str,
    data: Optional[Mapping[str, Any]] = None,
    moment: Optional[datetime] = None,
) -> bool:
    """Send one notification, swallowing and logging any failure.

    ``moment`` stamps ``createdAt`` with the triggering operation's time;
    without it the notifier uses the current time.

    Returns:
        bool: ``True`` when the notifier accepted the message.
    """

    if not recipient:
        log.debug("Skipping '%s' notification without recipient", notification_type)
        return False
    payload = {"type": notification_type, "message": message, "data": dict(data or {})}
    if moment is not None:
        payload["createdAt"] = moment.isoformat()
    try:
        notifier.notify(recipient, payload)
    except Exception as exc:
        label = recipient.value if isinstance(recipient, Role) else recipient
        log.warning("Failed to deliver '%s' notification to '%s': %s", notification_type, label, exc)
        return False
    return True


def unread(store: LedgerStore, user_id: str) -> List[NotificationRow]:
    """Return the unread notifications of one user, oldest first."""

    inbox = store.read(join_path(Collection.NOTIFICATIONS.value, user_id))
    rows = deserialize_many(inbox, deserialize_notification)
    return [row for row in rows if row.status == "unread"]


def mark_read(store: LedgerStore, user_id: str, notification_id: str) -> None:
    """Flag a notification as read; unknown ids are ignored."""

    path = join_path(Collection.NOTIFICATIONS.value, user_id, notification_id)
    if store.read(path) is None:
        log.debug("Notification '%s' not found for user '%s'", notification_id, user_id)
        return
    store.update(path, {"status": "read"})
