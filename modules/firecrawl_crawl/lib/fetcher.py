from __future__ import annotations

from dataclasses import dataclass

from .api_client import FirecrawlApi
from .artifacts import ArtifactPaths, write_json
from .models import ApiResponse, RemoteJobStatus
from .utils import now_iso


@dataclass(frozen=True)
class StatusReport:
    """Raw status/errors responses for one job plus the parsed snapshot."""

    status_response: ApiResponse | None
    errors_response: ApiResponse | None

    @property
    def snapshot(self) -> RemoteJobStatus:
        return RemoteJobStatus.from_response(self.status_response)

    @property
    def errors_count(self) -> int | None:
        data = self.errors_response.data if self.errors_response is not None else None
        if isinstance(data, dict) and isinstance(data.get("errors"), list):
            return len(data["errors"])
        return None


class StatusFetcher:
    """Fetches job status + errors and always persists both for postmortems."""

    def __init__(self, api: FirecrawlApi, paths: ArtifactPaths):
        self.api = api
        self.paths = paths

    def fetch(self, job_id: str | None) -> StatusReport:
        if not job_id:
            payload = {"fetchedAt": now_iso(), "error": "missing job id"}
            write_json(self.paths.status, payload)
            write_json(self.paths.errors, payload)
            return StatusReport(status_response=None, errors_response=None)

        status_response = self.api.get_status(job_id)
        errors_response = self.api.get_errors(job_id)

        write_json(self.paths.status, {"fetchedAt": now_iso(), "jobId": job_id, "response": status_response.to_dict()})
        write_json(self.paths.errors, {"fetchedAt": now_iso(), "jobId": job_id, "response": errors_response.to_dict()})
        return StatusReport(status_response=status_response, errors_response=errors_response)
