"""Test doubles shared across the suite."""
from datetime import datetime, timedelta

from app.models.audit import AccountLog
from app.services.notifier import Notifier

T0 = datetime(2026, 3, 2, 9, 0, 0)


class FrozenClock:
    """A controllable stand-in for datetime.utcnow."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def enqueue(self, event, email, name, detail=None):
        self.events.append((event, email, name, detail or {}))


class FailingNotifier(Notifier):
    def enqueue(self, event, email, name, detail=None):
        raise ConnectionError("mail server unreachable")


def log_entries(db_session, account_id=None):
    query = db_session.query(AccountLog)
    if account_id is not None:
        query = query.filter(AccountLog.account_id == account_id)
    return query.order_by(AccountLog.id).all()
