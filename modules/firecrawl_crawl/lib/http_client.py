# modules/firecrawl_crawl/lib/http_client.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import ApiResponse

LOG = logging.getLogger(__name__)


class HttpClient:
    """Shared HTTP client with retrying transport and JSON-or-raw decoding."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "firecrawl-relaunch/0.1",
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

        retry = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["GET", "HEAD", "DELETE"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=2, pool_maxsize=4)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> ApiResponse:
        """
        Perform a request and never raise for HTTP or transport errors.

        Body decoding: empty -> {}, JSON -> parsed, anything else -> {"raw": text}.
        Transport failures come back as status 0 with the error text.
        """
        try:
            resp = self.session.request(method, url, headers=headers, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            LOG.warning("%s %s failed: %s", method, url, e)
            return ApiResponse(ok=False, status=0, data={"error": str(e)})

        text = resp.text or ""
        if not text.strip():
            data: Any = {}
        else:
            try:
                data = json.loads(text)
            except ValueError:
                data = {"raw": text}
        return ApiResponse(ok=resp.ok, status=resp.status_code, data=data)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
