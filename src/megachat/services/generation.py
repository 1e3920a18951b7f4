from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import Settings
from ..domain.chat_models import ChatTurn
from ..domain.errors import UpstreamUnavailable


LOG = logging.getLogger("megachat.llm")


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST", "GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def messages_to_prompt(turns: List[ChatTurn]) -> str:
    parts: List[str] = []
    for turn in turns:
        role = (turn.role or "user").strip().upper()
        parts.append(f"{role}: {turn.content}")
    parts.append("ASSISTANT:")
    return "\n".join(parts)


def build_prompt(turns: List[ChatTurn], history_turns: int = 0) -> str:
    """Prompt sent upstream: the latest turn alone, or a short role-tagged transcript."""
    if not turns:
        return ""
    if history_turns <= 0:
        return turns[-1].content
    return messages_to_prompt(turns[-(history_turns + 1) :])


class HuggingFaceClient:
    """Text generation against the Hugging Face inference API."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: str = "https://api-inference.huggingface.co",
        max_new_tokens: int = 1024,
        timeout: Tuple[int, int] = (3, 90),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_new_tokens = max_new_tokens
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or _build_session()
        if not api_key:
            LOG.warning("HF_API_KEY is not set; inference requests will be anonymous")

    @classmethod
    def from_settings(cls, settings: Settings) -> "HuggingFaceClient":
        return cls(
            model=settings.hf_model,
            api_key=settings.hf_api_key,
            base_url=settings.hf_base_url,
            max_new_tokens=settings.hf_max_new_tokens,
            timeout=(settings.llm_connect_timeout, settings.llm_read_timeout),
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "inputs": prompt,
            "parameters": {"max_new_tokens": self.max_new_tokens},
        }
        if stream:
            payload["stream"] = True
        return payload

    def generate(self, prompt: str) -> str:
        LOG.debug("hf_generate", extra={"model": self.model})
        try:
            resp = self._session.post(
                self.endpoint,
                json=self._payload(prompt, stream=False),
                headers=self._headers(),
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailable(f"inference request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable("inference response was not JSON") from exc
        return self._generated_text(data)

    @staticmethod
    def _generated_text(data: Any) -> str:
        item = data[0] if isinstance(data, list) and data else data
        if isinstance(item, dict):
            if item.get("error"):
                raise UpstreamUnavailable(f"inference error: {item['error']}")
            text = item.get("generated_text")
            if isinstance(text, str) and text:
                return text
        raise UpstreamUnavailable("inference response carried no generated_text")

    def stream(self, prompt: str) -> Iterator[str]:
        """Yield token text as the backend produces it (server-sent ``data:`` lines)."""
        LOG.debug("hf_stream", extra={"model": self.model})
        try:
            with self._session.post(
                self.endpoint,
                json=self._payload(prompt, stream=True),
                headers=self._headers(),
                timeout=self._timeout,
                stream=True,
            ) as resp:
                resp.raise_for_status()
                for raw_line in resp.iter_lines():
                    if not raw_line:
                        continue
                    line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        parsed = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(parsed, dict):
                        continue
                    if parsed.get("error"):
                        raise UpstreamUnavailable(f"inference error: {parsed['error']}")
                    token = parsed.get("token") or {}
                    if token.get("special"):
                        continue
                    text = token.get("text") or ""
                    if text:
                        yield text
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailable(f"inference stream failed: {exc}") from exc
