"""Unit tests for role topics and best-effort notification delivery."""

from __future__ import annotations

from unittest.mock import Mock

from mfg_procurement import notifications
from mfg_procurement.constants import Role


def test_subscribe_role_is_idempotent(store):
    directory = notifications.RoleDirectory(store)

    directory.subscribe_role(Role.ACCOUNTS, "acc-1")
    directory.subscribe_role(Role.ACCOUNTS, "acc-1")
    directory.subscribe_role(Role.ACCOUNTS, "acc-2")

    assert directory.subscribers(Role.ACCOUNTS) == ["acc-1", "acc-2"]


def test_unsubscribe_role_removes_user(store):
    directory = notifications.RoleDirectory(store)
    directory.subscribe_role(Role.QC_OFFICER, "qc-1")

    directory.unsubscribe_role(Role.QC_OFFICER, "qc-1")

    assert directory.subscribers(Role.QC_OFFICER) == []


def test_role_notification_fans_out_to_subscribers(store):
    directory = notifications.RoleDirectory(store)
    directory.subscribe_role(Role.HEAD_OF_OPERATIONS, "ho-1")
    directory.subscribe_role(Role.HEAD_OF_OPERATIONS, "ho-2")
    notifier = notifications.StoreNotifier(store, directory)

    delivered = notifications.dispatch(
        notifier,
        Role.HEAD_OF_OPERATIONS,
        notification_type="material_request",
        message="New request",
        data={"requestId": "R1"},
    )

    assert delivered is True
    for user_id in ("ho-1", "ho-2"):
        inbox = notifications.unread(store, user_id)
        assert [row.notification_type for row in inbox] == ["material_request"]
        assert inbox[0].data == {"requestId": "R1"}


def test_user_notification_goes_to_single_inbox(store):
    notifier = notifications.StoreNotifier(store)

    notifications.dispatch(notifier, "wh-1", notification_type="request_ho_approved", message="ok")

    assert len(notifications.unread(store, "wh-1")) == 1


def test_dispatch_stamps_notification_with_operation_moment(store, moment):
    notifier = notifications.StoreNotifier(store)

    notifications.dispatch(notifier, "wh-1", notification_type="x", message="y", moment=moment)

    (row,) = notifications.unread(store, "wh-1")
    assert row.created_at == moment.isoformat()


def test_dispatch_swallows_notifier_failures():
    notifier = Mock(name="notifier")
    notifier.notify.side_effect = RuntimeError("smtp down")

    delivered = notifications.dispatch(notifier, "wh-1", notification_type="x", message="y")

    assert delivered is False


def test_dispatch_skips_missing_recipient():
    notifier = Mock(name="notifier")

    assert notifications.dispatch(notifier, None, notification_type="x", message="y") is False
    notifier.notify.assert_not_called()


def test_mark_read_removes_from_unread(store):
    notifier = notifications.StoreNotifier(store)
    notifications.dispatch(notifier, "wh-1", notification_type="x", message="y")
    notification_id = notifications.unread(store, "wh-1")[0].notification_id

    notifications.mark_read(store, "wh-1", notification_id)
    notifications.mark_read(store, "wh-1", "unknown")

    assert notifications.unread(store, "wh-1") == []
