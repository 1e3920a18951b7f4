"""Environment-driven settings for the MegaChat service.

Values are read once per :func:`load_settings` call from ``os.environ`` (or an
explicit mapping, which keeps tests independent of the process environment).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_HF_MODEL = "mistralai/Mixtral-8x7B-Instruct-v0.1"
DEFAULT_HF_BASE_URL = "https://api-inference.huggingface.co"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not str(value).strip():
        return None
    parsed = _int(value, 0)
    return parsed if parsed > 0 else None


@dataclass(frozen=True)
class Settings:
    hf_model: str = DEFAULT_HF_MODEL
    hf_api_key: Optional[str] = None
    hf_base_url: str = DEFAULT_HF_BASE_URL
    hf_max_new_tokens: int = 1024
    llm_connect_timeout: int = 3
    llm_read_timeout: int = 90
    upstream_streaming: bool = False
    chunk_size: int = 30
    chunk_delay_ms: int = 40
    history_turns: int = 0
    archive_max_bytes: Optional[int] = None
    message_store_impl: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    @property
    def chunk_delay(self) -> float:
        return max(0, self.chunk_delay_ms) / 1000.0


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = env if env is not None else os.environ
    supabase_url = (env.get("SUPABASE_URL") or "").strip() or None
    default_store = "supabase" if supabase_url else "memory"
    return Settings(
        hf_model=(env.get("HF_MODEL") or DEFAULT_HF_MODEL).strip(),
        hf_api_key=env.get("HF_API_KEY") or None,
        hf_base_url=(env.get("HF_BASE_URL") or DEFAULT_HF_BASE_URL).rstrip("/"),
        hf_max_new_tokens=_int(env.get("HF_MAX_NEW_TOKENS"), 1024),
        llm_connect_timeout=_int(env.get("MEGACHAT_LLM_CONNECT_TIMEOUT"), 3),
        llm_read_timeout=_int(env.get("MEGACHAT_LLM_READ_TIMEOUT"), 90),
        upstream_streaming=_flag(env.get("MEGACHAT_UPSTREAM_STREAMING")),
        chunk_size=max(1, _int(env.get("MEGACHAT_CHUNK_SIZE"), 30)),
        chunk_delay_ms=max(0, _int(env.get("MEGACHAT_CHUNK_DELAY_MS"), 40)),
        history_turns=max(0, _int(env.get("MEGACHAT_HISTORY_TURNS"), 0)),
        archive_max_bytes=_optional_int(env.get("MEGACHAT_ARCHIVE_MAX_BYTES")),
        message_store_impl=(env.get("MEGACHAT_MESSAGE_STORE_IMPL") or default_store).strip().lower(),
        supabase_url=supabase_url,
        supabase_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or None,
    )
