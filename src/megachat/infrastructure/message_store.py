from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol
import logging
import uuid

import requests

from ..config import Settings, load_settings
from ..domain.chat_models import StoredMessage
from ..domain.errors import PersistenceFailure


logger = logging.getLogger("megachat.store")


class MessageStore(Protocol):
    def record(self, role: str, content: str, owner_id: str) -> StoredMessage: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class _Message:
    message_id: str
    owner_id: str
    role: str
    content: str
    created_at: str


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._messages: Dict[str, List[_Message]] = {}
        self._lock = RLock()

    def _message_model(self, message: _Message) -> StoredMessage:
        return StoredMessage(**message.__dict__)

    def record(self, role: str, content: str, owner_id: str) -> StoredMessage:
        with self._lock:
            msg = _Message(
                message_id=uuid.uuid4().hex,
                owner_id=owner_id,
                role=role,
                content=content,
                created_at=_now_iso(),
            )
            self._messages.setdefault(owner_id, []).append(msg)
            return self._message_model(msg)

    def list_messages(self, owner_id: str) -> List[StoredMessage]:
        with self._lock:
            return [self._message_model(m) for m in self._messages.get(owner_id, [])]


class SupabaseMessageStore:
    """Inserts rows into the Supabase ``messages`` table over its REST (PostgREST) API."""

    def __init__(
        self,
        url: str,
        service_key: str,
        table: str = "messages",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self._key = service_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def record(self, role: str, content: str, owner_id: str) -> StoredMessage:
        row = {"user_id": owner_id, "role": role, "content": content}
        try:
            resp = self._session.post(self._endpoint, json=row, headers=self._headers(), timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as exc:
            raise PersistenceFailure(f"supabase insert failed: {exc}") from exc
        except ValueError as exc:
            raise PersistenceFailure("supabase insert returned a non-JSON body") from exc
        saved = data[0] if isinstance(data, list) and data else {}
        if not isinstance(saved, dict):
            saved = {}
        return StoredMessage(
            message_id=str(saved.get("id") or uuid.uuid4().hex),
            owner_id=owner_id,
            role=role,
            content=content,
            created_at=str(saved.get("created_at") or _now_iso()),
        )


_store: MessageStore | None = None


def build_message_store(settings: Settings) -> MessageStore:
    impl = settings.message_store_impl
    if impl == "supabase":
        if settings.supabase_url and settings.supabase_key:
            return SupabaseMessageStore(settings.supabase_url, settings.supabase_key)
        logger.warning("Supabase message store requested without SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY; using memory")
    elif impl != "memory":
        logger.warning("Unknown MEGACHAT_MESSAGE_STORE_IMPL=%s; using memory", impl)
    return InMemoryMessageStore()


def get_message_store() -> MessageStore:
    global _store
    if _store is None:
        _store = build_message_store(load_settings())
    return _store
