from __future__ import annotations

import codecs
import logging
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from typing import Any, Literal
from urllib.error import HTTPError, URLError
from urllib.request import (
    HTTPHandler,
    HTTPSHandler,
    OpenerDirector,
    Request,
    build_opener,
)

LOGGER = logging.getLogger("link_shelf.page_fetcher")

DEFAULT_TIMEOUT_MS = 5_000
DEFAULT_MAX_BYTES = 2 * 1024 * 1024
_READ_CHUNK_BYTES = 64 * 1024

FetchFailureKind = Literal["timeout", "network_error"]


@dataclass(frozen=True)
class FetchedPage:
    url: str
    final_url: str
    http_status: int | None
    markup: str
    truncated: bool


@dataclass(frozen=True)
class FetchFailure:
    kind: FetchFailureKind
    detail: str

    @property
    def is_timeout(self) -> bool:
        return self.kind == "timeout"


FetchOutcome = FetchedPage | FetchFailure


class CancellationToken:
    """One-shot signal shared by the fetch timer and the in-flight connection."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()


def _shutdown_socket(sock: socket.socket | None) -> None:
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed by the peer or by the response teardown.
        return


def _cancellable_connection(
    connection_class: type[HTTPConnection],
    token: CancellationToken,
) -> Callable[..., HTTPConnection]:
    class _CancellableConnection(connection_class):  # type: ignore[valid-type,misc]
        def connect(self) -> None:
            super().connect()
            token.on_cancel(partial(_shutdown_socket, self.sock))

    return _CancellableConnection


class _CancellableHTTPHandler(HTTPHandler):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__()
        self._token = token

    def http_open(self, req: Request) -> Any:
        return self.do_open(_cancellable_connection(HTTPConnection, self._token), req)


class _CancellableHTTPSHandler(HTTPSHandler):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__()
        self._token = token

    def https_open(self, req: Request) -> Any:
        return self.do_open(_cancellable_connection(HTTPSConnection, self._token), req)


def build_cancellable_opener(token: CancellationToken) -> OpenerDirector:
    return build_opener(_CancellableHTTPHandler(token), _CancellableHTTPSHandler(token))


class PageFetcher:
    def __init__(
        self,
        *,
        user_agent: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        opener_factory: Callable[[CancellationToken], OpenerDirector] = build_cancellable_opener,
    ) -> None:
        self._user_agent = user_agent.strip() or "link-shelf/0.1"
        self._max_bytes = max(1024, max_bytes)
        self._opener_factory = opener_factory

    def fetch_page(self, url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> FetchOutcome:
        """Issue exactly one GET for `url`, bounded by `timeout_ms` in total.

        Non-2xx responses still count as fetched pages. The timer is stopped and
        the connection closed before this returns, whatever the outcome.
        """
        timeout_seconds = max(1, timeout_ms) / 1000.0
        token = CancellationToken()
        timer = threading.Timer(timeout_seconds, token.cancel)
        timer.daemon = True
        timer.start()
        try:
            request = Request(
                url,
                headers={
                    "Accept": "text/html,application/xhtml+xml",
                    "User-Agent": self._user_agent,
                },
                method="GET",
            )
            opener = self._opener_factory(token)
            try:
                response = opener.open(request, timeout=timeout_seconds)
            except HTTPError as exc:
                response = exc
            with response:
                return self._read_page(url, response, token)
        except (URLError, HTTPException, OSError, ValueError) as exc:
            return _classify_failure(url, exc, token)
        finally:
            timer.cancel()

    def _read_page(self, url: str, response: Any, token: CancellationToken) -> FetchOutcome:
        chunks: list[bytes] = []
        total = 0
        truncated = False
        while True:
            chunk = response.read(_READ_CHUNK_BYTES)
            if token.cancelled:
                return FetchFailure(kind="timeout", detail="read_cancelled")
            if not chunk:
                break
            remaining = self._max_bytes - total
            if len(chunk) >= remaining:
                chunks.append(chunk[:remaining])
                truncated = True
                break
            chunks.append(chunk)
            total += len(chunk)

        headers = getattr(response, "headers", None)
        charset = headers.get_content_charset() if headers is not None else None
        markup = b"".join(chunks).decode(_codec_name(charset), errors="replace")
        status = getattr(response, "status", None)
        final_url = response.geturl() if hasattr(response, "geturl") else url
        if truncated:
            LOGGER.debug("page body truncated url=%s max_bytes=%s", url, self._max_bytes)
        return FetchedPage(
            url=url,
            final_url=str(final_url or url),
            http_status=int(status) if isinstance(status, int) else None,
            markup=markup,
            truncated=truncated,
        )


def _classify_failure(url: str, exc: BaseException, token: CancellationToken) -> FetchFailure:
    if token.cancelled or _is_timeout_error(exc):
        LOGGER.info("page fetch timed out url=%s", url)
        return FetchFailure(kind="timeout", detail="Request timed out")
    reason = getattr(exc, "reason", None)
    detail = f"{type(exc).__name__}: {reason if reason is not None else exc}"
    LOGGER.info("page fetch failed url=%s error=%s", url, detail)
    return FetchFailure(kind="network_error", detail=detail)


def _is_timeout_error(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    reason = getattr(exc, "reason", None)
    return isinstance(reason, TimeoutError)


def _codec_name(charset: str | None) -> str:
    """Codec for the declared charset; unknown or missing names decode as utf-8."""
    if not charset:
        return "utf-8"
    try:
        return codecs.lookup(charset).name
    except LookupError:
        LOGGER.debug("unknown response charset=%s; decoding as utf-8", charset)
        return "utf-8"
