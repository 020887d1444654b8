from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import gzip
import http.client
import json
import socket
import threading
import time
import typing as t
from urllib.parse import ParseResult
from urllib.parse import urlparse

from ddci.internal.constants import CONTENT_ENCODING_GZIP
from ddci.internal.constants import CONTENT_TYPE_JSON
from ddci.internal.constants import DEFAULT_AGENT_HOSTNAME
from ddci.internal.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from ddci.internal.constants import HEADER_CONTENT_ENCODING
from ddci.internal.constants import HEADER_CONTENT_TYPE
from ddci.internal.errors import SetupError
from ddci.internal.logger import get_logger
from ddci.internal.telemetry.constants import ErrorType


log = get_logger(__name__)


class ResponseKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    INTERNAL_ERROR = "internal_error"


def classify_status(status: int) -> ResponseKind:
    if 200 <= status <= 299:
        return ResponseKind.OK
    if status == 404:
        return ResponseKind.NOT_FOUND
    if status == 415:
        return ResponseKind.UNSUPPORTED
    if 400 <= status <= 499:
        return ResponseKind.CLIENT_ERROR
    if status >= 500:
        return ResponseKind.SERVER_ERROR
    return ResponseKind.INTERNAL_ERROR


@dataclass
class Response:
    kind: ResponseKind
    status_code: t.Optional[int] = None
    body: t.Optional[bytes] = None
    error_type: t.Optional[ErrorType] = None
    error_description: t.Optional[str] = None
    elapsed_seconds: float = 0.0
    response_length: t.Optional[int] = None
    is_gzip_response: bool = False
    request_compressed: bool = False
    request_size: int = 0

    @property
    def ok(self) -> bool:
        return self.kind == ResponseKind.OK

    def json(self) -> t.Any:
        """Decode the body as JSON. Raises ``ValueError`` if the body is missing or malformed."""
        if self.body is None:
            raise ValueError("Response has no body")
        return json.loads(self.body)


class HTTPClient(threading.local):
    """
    Single-attempt HTTP client for one base URL.

    Each thread gets its own connection. Transport failures never raise: they are reported through the returned
    :class:`Response` with kind ``internal_error``.
    """

    def __init__(
        self,
        url: str,
        default_headers: t.Optional[t.Dict[str, str]] = None,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        base_path: t.Optional[str] = None,
        compress: bool = False,
    ):
        parsed_url = urlparse(url)
        self.url = url
        self.conn = self._make_connection(parsed_url, timeout_seconds)
        self.default_headers = dict(default_headers or {})
        if base_path is None:
            # The path of a unix URL is the socket file, not a URL prefix.
            base_path = "" if parsed_url.scheme == "unix" else parsed_url.path.rstrip("/")
        self.base_path = base_path
        self.compress = compress

    def close(self) -> None:
        self.conn.close()

    def _make_connection(self, parsed_url: ParseResult, timeout_seconds: float) -> http.client.HTTPConnection:
        if parsed_url.scheme == "http":
            if not parsed_url.hostname:
                raise SetupError(f"No hostname provided in {parsed_url.geturl()}")

            return http.client.HTTPConnection(
                host=parsed_url.hostname, port=parsed_url.port or 80, timeout=timeout_seconds
            )

        if parsed_url.scheme == "https":
            if not parsed_url.hostname:
                raise SetupError(f"No hostname provided in {parsed_url.geturl()}")

            return http.client.HTTPSConnection(
                host=parsed_url.hostname, port=parsed_url.port or 443, timeout=timeout_seconds
            )

        if parsed_url.scheme == "unix":
            # unix:///var/run/datadog/apm.socket has an empty hostname; the Host header still needs one.
            return UnixDomainSocketHTTPConnection(
                host=parsed_url.hostname or DEFAULT_AGENT_HOSTNAME,
                port=parsed_url.port or 80,
                timeout=timeout_seconds,
                path=parsed_url.path,
            )

        raise SetupError(f"Unknown scheme {parsed_url.scheme!r} in {parsed_url.geturl()}")

    def request(
        self,
        path: str,
        payload: t.Optional[bytes] = None,
        headers: t.Optional[t.Dict[str, str]] = None,
        verb: str = "POST",
    ) -> Response:
        full_headers = {**self.default_headers, **(headers or {})}

        compressed = False
        if self.compress and payload is not None:
            payload = gzip.compress(payload, compresslevel=6)
            full_headers[HEADER_CONTENT_ENCODING] = CONTENT_ENCODING_GZIP
            compressed = True

        response = Response(
            kind=ResponseKind.INTERNAL_ERROR,
            request_compressed=compressed,
            request_size=len(payload) if payload is not None else 0,
        )
        start_time = time.perf_counter()

        try:
            self.conn.request(verb, self.base_path + path, body=payload, headers=full_headers)
            http_response = self.conn.getresponse()
            response.status_code = http_response.status
            response.response_length = int(http_response.headers.get("Content-Length") or "0")
            response.is_gzip_response = http_response.headers.get(HEADER_CONTENT_ENCODING) == CONTENT_ENCODING_GZIP
            if response.is_gzip_response:
                response.body = gzip.decompress(http_response.read())
            else:
                response.body = http_response.read()

            response.kind = classify_status(http_response.status)
            if not response.ok:
                response.error_description = f"{http_response.status} {http_response.reason}"
                if response.kind == ResponseKind.INTERNAL_ERROR:
                    response.error_type = ErrorType.NETWORK
                else:
                    response.error_type = ErrorType.STATUS_CODE
        except (TimeoutError, socket.timeout) as e:
            response.error_type = ErrorType.TIMEOUT
            response.error_description = str(e) or "timed out"
        except Exception as e:
            response.error_type = ErrorType.NETWORK
            response.error_description = str(e) or e.__class__.__name__
        finally:
            response.elapsed_seconds = time.perf_counter() - start_time

        if response.error_type is not None:
            log.debug("Request %s %s%s failed: %s", verb, self.url, path, response.error_description)
            if response.status_code is None:
                # Start the next request with a fresh connection.
                self.conn.close()

        return response

    def get_json(self, path: str, headers: t.Optional[t.Dict[str, str]] = None) -> Response:
        headers = {HEADER_CONTENT_TYPE: CONTENT_TYPE_JSON, **(headers or {})}
        return self.request(path, headers=headers, verb="GET")

    def post_json(self, path: str, data: t.Any, headers: t.Optional[t.Dict[str, str]] = None) -> Response:
        headers = {HEADER_CONTENT_TYPE: CONTENT_TYPE_JSON, **(headers or {})}
        return self.request(path, json.dumps(data).encode("utf-8"), headers=headers, verb="POST")


class UnixDomainSocketHTTPConnection(http.client.HTTPConnection):
    """An HTTP connection established over a Unix Domain Socket."""

    # The hostname and port are not used to connect but still end up in headers such as `Host`.
    def __init__(self, path: str, *args: t.Any, **kwargs: t.Any) -> None:
        super().__init__(*args, **kwargs)
        self.path = path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        sock.connect(self.path)
        self.sock = sock
