"""
HTTP Protocol Client

Async request/response client built on httpx with per-call timeouts, an
explicit redirect limit, browser-like default headers and a generic
multipart/form-data encoder.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

import httpx

from loadbench.errors import TransportError, classify_error
from loadbench.models.metrics import HTTP_REQ_DURATION, HTTP_REQ_FAILED, HTTP_REQS

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Mapping[str, str] = {
    "Proxy-Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Accept-Encoding": "gzip, deflate",
    "Accept-Language": "en-GB,en-US;q=0.9,en;q=0.8",
}


class MetricRecorder(Protocol):
    def record_metric(
        self, name: str, value: float, tags: Optional[Mapping[str, str]] = None
    ) -> None: ...


@dataclass(frozen=True, slots=True)
class FormField:
    """One multipart form field, in submission order."""

    name: str
    value: str = ""


def encode_multipart(fields: Sequence[FormField], boundary: str) -> str:
    """
    Encode form fields as a multipart/form-data body.

    Field order and framing are preserved exactly: each field becomes
    ``--<boundary>\\r\\nContent-Disposition: form-data; name="<name>"\\r\\n\\r\\n<value>\\r\\n``
    and the body ends with ``--<boundary>--\\r\\n``.
    """
    if not boundary:
        raise ValueError("Multipart boundary must not be empty")
    parts = [
        f'--{boundary}\r\nContent-Disposition: form-data; name="{f.name}"\r\n\r\n{f.value}\r\n'
        for f in fields
    ]
    parts.append(f"--{boundary}--\r\n")
    return "".join(parts)


def multipart_content_type(boundary: str) -> str:
    return f"multipart/form-data; boundary={boundary}"


@dataclass(slots=True)
class HttpResponse:
    """Completed HTTP exchange."""

    status: int
    headers: httpx.Headers
    body: str
    url: str
    duration_ms: float
    redirects: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name, default)


class HttpClient:
    """
    Stateless-per-call HTTP client.

    One instance owns one ``httpx.AsyncClient`` (its connection pool) for the
    lifetime of an iteration; ``aclose()`` releases it. Every call records
    ``http_reqs``, ``http_req_duration`` (ms) and ``http_req_failed`` on the
    recorder when one is given.
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_headers: Optional[Mapping[str, str]] = None,
        recorder: Optional[MetricRecorder] = None,
    ):
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=False)
        self._default_headers = dict(DEFAULT_HEADERS if default_headers is None else default_headers)
        self._recorder = recorder
        self._closed = False

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        max_redirects: int,
        content: Optional[str | bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        """
        Perform one HTTP exchange, following at most ``max_redirects`` redirects.

        Args:
            method: HTTP method
            url: Absolute URL
            timeout: Budget for the whole exchange, redirects included (seconds)
            max_redirects: Redirect-count limit
            content: Request body
            headers: Headers merged over the client's defaults
            tags: Extra metric tags (e.g. ``{"endpoint": "sample-page"}``)

        Raises:
            TransportError: On network failure, timeout or too many redirects.
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        if max_redirects < 0:
            raise ValueError("max_redirects must be >= 0")

        method = method.upper()
        merged = {**self._default_headers, **(headers or {})}
        metric_tags = {"method": method, "url": url, **(tags or {})}
        request = self._client.build_request(
            method, url, content=content, headers=merged, timeout=timeout
        )

        started = time.perf_counter()
        redirects = 0
        try:
            async with asyncio.timeout(timeout):
                while True:
                    response = await self._client.send(request, follow_redirects=False)
                    next_request = response.next_request
                    if next_request is None:
                        break
                    if redirects >= max_redirects:
                        raise httpx.TooManyRedirects(
                            f"Exceeded {max_redirects} redirect(s)", request=request
                        )
                    redirects += 1
                    request = next_request
        except (httpx.HTTPError, TimeoutError) as e:
            duration_ms = (time.perf_counter() - started) * 1000.0
            code = classify_error(e)
            self._record(duration_ms, failed=True, tags={**metric_tags, "error_code": code})
            logger.debug("%s %s failed after %.1fms: %s", method, url, duration_ms, code)
            raise TransportError(
                f"{method} {url} failed: {code}",
                check_name=f"{method} {(tags or {}).get('endpoint', url)} completed",
            ) from e

        duration_ms = (time.perf_counter() - started) * 1000.0
        result = HttpResponse(
            status=response.status_code,
            headers=response.headers,
            body=response.text,
            url=str(response.url),
            duration_ms=duration_ms,
            redirects=redirects,
        )
        self._record(
            duration_ms,
            failed=not result.ok,
            tags={**metric_tags, "status": str(result.status)},
        )
        return result

    async def get(self, url: str, **kwargs) -> HttpResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, content: Optional[str | bytes] = None, **kwargs) -> HttpResponse:
        return await self.request("POST", url, content=content, **kwargs)

    async def post_multipart(
        self,
        url: str,
        fields: Sequence[FormField],
        *,
        boundary: str,
        headers: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> HttpResponse:
        """POST ``fields`` as multipart/form-data framed with ``boundary``."""
        body = encode_multipart(fields, boundary)
        merged = {**(headers or {}), "Content-Type": multipart_content_type(boundary)}
        return await self.request(
            "POST", url, content=body.encode("utf-8"), headers=merged, **kwargs
        )

    def _record(self, duration_ms: float, *, failed: bool, tags: Mapping[str, str]) -> None:
        if self._recorder is None:
            return
        self._recorder.record_metric(HTTP_REQS, 1, tags)
        self._recorder.record_metric(HTTP_REQ_DURATION, duration_ms, tags)
        self._recorder.record_metric(HTTP_REQ_FAILED, 1 if failed else 0, tags)
