import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Start every test with a fresh in-memory store and no cached chat service."""
    from src.megachat.infrastructure import message_store
    from src.megachat.services import chat_service

    monkeypatch.setattr(message_store, "_store", message_store.InMemoryMessageStore())
    monkeypatch.setattr(chat_service, "_service", None)
    for key in ("MEGACHAT_ARCHIVE_MAX_BYTES", "MEGACHAT_MESSAGE_STORE_IMPL", "SUPABASE_URL"):
        monkeypatch.delenv(key, raising=False)
