# outreach_server/dependencies.py
from daily_outreach.db.batches import BatchStore
from daily_outreach.db.preferences import PreferenceStore
from outreach_server.db.engine import get_session


def get_preference_store() -> PreferenceStore:
    return PreferenceStore(get_session)


def get_batch_store() -> BatchStore:
    return BatchStore(get_session)
