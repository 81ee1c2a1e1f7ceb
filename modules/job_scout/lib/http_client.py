from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)


class HttpClient:
    """Shared HTTP session with retries; used for outbound API calls (Telegram)."""

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = "JobScout/0.1 (+https://example.invalid)",
        retries: int = 3,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

        retry = Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["GET", "POST"]),
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """POST a JSON body and return the decoded JSON response."""
        resp = self.session.post(url, json=dict(payload), timeout=timeout or self.timeout, **kwargs)
        try:
            body = resp.json()
        except ValueError as e:
            preview = resp.text[:200].replace("\n", " ")
            resp.raise_for_status()
            raise ValueError(f"JSON decode failed for POST {_redact_url(url)}; body starts: {preview!r}") from e
        if resp.status_code >= 400 and not isinstance(body, dict):
            resp.raise_for_status()
        return body

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)


def _redact_url(url: str) -> str:
    # Telegram puts the bot token in the path: /bot<token>/sendMessage
    if "/bot" in url:
        head, _, tail = url.partition("/bot")
        return f"{head}/bot***/{tail.split('/', 1)[-1]}"
    return url
