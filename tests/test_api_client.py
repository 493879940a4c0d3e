import requests

from modules.firecrawl_crawl.lib.api_client import MISSING_KEY_ERROR, FirecrawlApi
from modules.firecrawl_crawl.lib.http_client import HttpClient


class _Resp:
    def __init__(self, status, text):
        self.status_code = status
        self.text = text
        self.ok = 200 <= status < 400


class _Session:
    def __init__(self, resp=None, exc=None):
        self.resp = resp
        self.exc = exc
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append((method, url, dict(headers or {})))
        if self.exc is not None:
            raise self.exc
        return self.resp

    def close(self):
        pass


def _api(session, key="fc-test-key"):
    http = HttpClient()
    http.session = session
    return FirecrawlApi(key, "https://api.firecrawl.dev/", http=http)


def test_missing_key_is_401_without_request():
    session = _Session(resp=_Resp(200, "{}"))
    api = _api(session, key=None)
    for resp in (api.get_status("j1"), api.get_errors("j1"), api.cancel("j1")):
        assert not resp.ok
        assert resp.status == 401
        assert resp.data == {"error": MISSING_KEY_ERROR}
    assert session.calls == []


def test_status_uses_bearer_and_job_url():
    session = _Session(resp=_Resp(200, '{"status": "scraping", "completed": 3, "total": 20}'))
    resp = _api(session).get_status("abc-123")
    assert resp.ok and resp.data["status"] == "scraping"
    method, url, headers = session.calls[0]
    assert (method, url) == ("GET", "https://api.firecrawl.dev/v2/crawl/abc-123")
    assert headers["Authorization"] == "Bearer fc-test-key"


def test_errors_and_cancel_endpoints():
    session = _Session(resp=_Resp(200, ""))
    api = _api(session)
    assert api.get_errors("j1").data == {}
    assert api.cancel("j1").ok
    assert [c[:2] for c in session.calls] == [
        ("GET", "https://api.firecrawl.dev/v2/crawl/j1/errors"),
        ("DELETE", "https://api.firecrawl.dev/v2/crawl/j1"),
    ]


def test_non_json_body_kept_raw():
    resp = _api(_Session(resp=_Resp(502, "<html>Bad Gateway</html>"))).get_status("j1")
    assert not resp.ok
    assert resp.status == 502
    assert resp.data == {"raw": "<html>Bad Gateway</html>"}


def test_transport_error_is_status_zero():
    resp = _api(_Session(exc=requests.ConnectionError("connection refused"))).cancel("j1")
    assert not resp.ok
    assert resp.status == 0
    assert "connection refused" in resp.data["error"]
