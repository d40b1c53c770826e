import logging

import requests

from .errors import UnreachableError, UpstreamError

logger = logging.getLogger(__name__)


def webhook_path(name: str, prefix: str = "webhook-test") -> str:
    return f"/{prefix.strip('/')}/{name.lstrip('/')}"


class WebhookProxy:
    """
    Thin relay to the workflow engine's webhook endpoints.

    Bodies are POSTed as JSON and the upstream response is handed back
    unmodified: parsed JSON when it parses, raw text when it does not, None
    for an empty body. Upstream failures are never retried here.
    """

    def __init__(self, base_url: str, timeout: float = 30, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def forward(self, path: str, body):
        url = self._url(path)
        logger.info(f"Forwarding to {url}")
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Workflow engine unreachable at {url}: {e}")
            raise UnreachableError(
                "Workflow engine is not reachable", details={"url": url, "reason": str(e)}, status_code=503
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Workflow engine timed out after {self.timeout}s at {url}")
            raise UnreachableError(
                "Workflow engine did not respond in time", details={"url": url, "reason": str(e)}
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {url} failed: {e}")
            raise UnreachableError("Request to workflow engine failed", details={"url": url, "reason": str(e)})

        text = resp.text or ""
        if not resp.ok:
            logger.error(f"Workflow engine returned {resp.status_code} for {url}: {text[:500]}")
            raise UpstreamError(resp.status_code, text, url=url)

        if not text.strip():
            return None
        try:
            return resp.json()
        except ValueError:
            return text

    def health(self) -> dict:
        """Probe the engine without triggering any workflow."""
        status = {"status": "unknown", "url": self.base_url, "workflows": None}
        try:
            resp = self.session.get(self._url("/rest/login"), timeout=5)
        except requests.exceptions.RequestException as e:
            status.update(status="unreachable", error=str(e))
            return status

        # 401 means the engine is up but wants credentials
        if resp.status_code not in (200, 401):
            status.update(status="unhealthy", error=f"HTTP {resp.status_code}")
            return status
        status["status"] = "healthy"

        try:
            wf = self.session.get(self._url("/rest/workflows"), timeout=5)
            if wf.ok:
                data = wf.json().get("data", [])
                active = [w for w in data if w.get("active")]
                status["workflows"] = {"total": len(data), "active": len(active)}
        except (requests.exceptions.RequestException, ValueError, AttributeError) as e:
            logger.debug(f"Workflow listing unavailable: {e}")
        return status
