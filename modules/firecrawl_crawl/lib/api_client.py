from __future__ import annotations

import logging
from urllib.parse import quote

from .config import DEFAULT_API_BASE
from .http_client import HttpClient
from .models import ApiResponse

LOG = logging.getLogger(__name__)

MISSING_KEY_ERROR = "FIRECRAWL_API_KEY not set"


class FirecrawlApi:
    """
    Thin client for the remote crawl-job endpoints.

    A missing API key is a normal failure mode: every call returns
    ApiResponse(ok=False, status=401) without touching the network.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_API_BASE,
        http: HttpClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http = http or HttpClient()

    def job_url(self, job_id: str) -> str:
        return f"{self.base_url}/v2/crawl/{quote(job_id, safe='')}"

    def _call(self, method: str, url: str) -> ApiResponse:
        if not self.api_key:
            return ApiResponse(ok=False, status=401, data={"error": MISSING_KEY_ERROR})
        return self.http.request_json(method, url, headers={"Authorization": f"Bearer {self.api_key}"})

    def get_status(self, job_id: str) -> ApiResponse:
        return self._call("GET", self.job_url(job_id))

    def get_errors(self, job_id: str) -> ApiResponse:
        return self._call("GET", f"{self.job_url(job_id)}/errors")

    def cancel(self, job_id: str) -> ApiResponse:
        resp = self._call("DELETE", self.job_url(job_id))
        if not resp.ok:
            LOG.warning("Cancel of crawl job %s failed (status %s)", job_id, resp.status)
        return resp

    def close(self) -> None:
        self.http.close()
