"""Single authenticated reads against the Mattermost REST API."""

import logging
from time import perf_counter
from typing import Optional

import requests

from mmarchive.errors import RemoteError
from mmarchive.metrics.metrics import API_CALLS, API_LATENCY

logger = logging.getLogger(__name__)

USER_AGENT = "mattermost-archive/0.1"


class ResourceFetcher:
    """Fetch raw response bodies from the API with a pre-obtained session cookie.

    There are no retries: any unexpected status is raised as `RemoteError` and
    aborts the current crawl step. A 404 can be tolerated per call, in which
    case `None` is returned instead.

    Parameters:
        endpoint: API base URL, e.g. https://mattermost.example.com/api/v4/
        cookie: Value of the Cookie header for every request.
        timeout: Optional request timeout in seconds.
        session: Optional preconfigured session (tests inject one).
    """

    def __init__(
        self,
        endpoint: str,
        cookie: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the fetcher and its HTTP session."""
        if not endpoint:
            raise ValueError("endpoint must be provided")
        self.endpoint = endpoint if endpoint.endswith("/") else endpoint + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Cookie": cookie})

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> "ResourceFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url(self, resource: str) -> str:
        """Absolute URL of a resource."""
        return self.endpoint + resource

    def fetch(self, resource: str, ignore_not_found: bool = False) -> Optional[bytes]:
        """Issue one GET for `resource`.

        Args:
            resource: Path relative to the endpoint, including the query string.
            ignore_not_found: If True a 404 returns None instead of raising.

        Returns:
            The response body, or None for a tolerated 404.

        Raises:
            RemoteError: On any other non-200 status or a transport failure.
        """
        u = self.url(resource)
        method = resource.split("?", 1)[0].split("/", 1)[0]
        logger.info(f"get {u}")
        call_start = perf_counter()
        try:
            resp = self.session.get(u, timeout=self.timeout)
        except requests.RequestException as e:
            API_CALLS.labels(method=method, status="error").inc()
            raise RemoteError(resource, reason=str(e)) from e

        status = str(resp.status_code)
        API_CALLS.labels(method=method, status=status).inc()
        API_LATENCY.labels(method=method, status=status).observe(perf_counter() - call_start)

        if resp.status_code != 200:
            if resp.status_code == 404 and ignore_not_found:
                logger.info(f"get {u}: {resp.status_code} {resp.reason}")
                return None
            logger.error(f"get {u}: {resp.status_code} {resp.reason}: {resp.content[:2000]!r}")
            raise RemoteError(resource, status=resp.status_code, payload=resp.content)

        return resp.content
