"""
HTTP access to a CloudTurbine server for the chart poller.

One GET per channel per cycle:

    {server_url}/{source_name}/{channel}?f=d[&t=<last_time + 0.001>&d=<lookback>]

The first request of a session carries no time qualifier so the server answers
with its newest point only; later requests ask for everything after the last
retrieved time, padded by a fixed lookback span.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

import requests
from requests.structures import CaseInsensitiveDict

from shared.models import ChannelConfig, FetchWindow

logger = logging.getLogger(__name__)

TIME_EPSILON = 0.001
USER_AGENT = "CTchart/0.1 (+requests)"


class FetchError(RuntimeError):
    """Base class for channel retrieval problems."""


class TransportError(FetchError):
    """The request could not be completed (network, timeout or non-2xx status)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class HeaderParseError(FetchError, ValueError):
    """A `time` or `duration` response header was not a number."""


@dataclass(frozen=True)
class FetchResult:
    url: str
    text: str
    header_time: float = 0.0
    header_duration: float = 0.0
    window_end: Optional[float] = None  # None when the headers could not be parsed


def _format_number(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def build_url(
    server_url: str,
    source_name: str,
    channel_name: str,
    window: FetchWindow,
    lookback_span: float = 10000.0,
) -> str:
    url = f"{server_url.rstrip('/')}/{source_name}/{channel_name}?f=d"
    if window.initialized:
        url += f"&t={_format_number(window.last_time + TIME_EPSILON)}&d={_format_number(lookback_span)}"
    return url


def parse_window_headers(headers: Mapping[str, Any]) -> Tuple[float, float]:
    """Return ``(time, duration)`` from response headers; absent values are 0."""
    lookup = CaseInsensitiveDict(headers)
    parsed = []
    for name in ("time", "duration"):
        raw = lookup.get(name)
        if raw is None:
            parsed.append(0.0)
            continue
        try:
            value = float(str(raw).strip())
        except ValueError as exc:
            raise HeaderParseError(f"Malformed {name!r} header: {raw!r}") from exc
        if not math.isfinite(value):
            raise HeaderParseError(f"Non-finite {name!r} header: {raw!r}")
        parsed.append(value)
    return parsed[0], parsed[1]


class ChannelFetcher:
    """Issues channel GETs over a shared session; pairs of channels are fetched concurrently."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ChannelFetch")
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def fetch(self, config: ChannelConfig, channel_name: str, window: FetchWindow) -> FetchResult:
        """
        Fetch one channel. Raises TransportError on any request failure.

        A malformed time/duration header is not an error here: the result is
        returned with ``window_end=None`` so the caller restarts its window.
        """
        url = build_url(config.server_url, config.source_name, channel_name, window, config.lookback_span)
        if self.closed:
            raise TransportError(url, "fetcher closed")
        try:
            response = self._session.get(url, timeout=config.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(url, str(exc)) from exc

        text = response.content.decode("utf-8", errors="replace")
        try:
            header_time, header_duration = parse_window_headers(response.headers)
        except HeaderParseError as exc:
            logger.debug("Resetting fetch window for %s: %s", url, exc)
            return FetchResult(url=url, text=text)
        return FetchResult(
            url=url,
            text=text,
            header_time=header_time,
            header_duration=header_duration,
            window_end=header_time + header_duration,
        )

    def fetch_channels(self, config: ChannelConfig, window: FetchWindow) -> List[FetchResult]:
        """
        Fetch channel1, plus channel2 when configured, and wait for all of them.

        Requests run concurrently but every one is joined before returning or
        raising, so nothing is left in flight when a sibling fails.
        """
        names = [config.channel1]
        if config.channel_count == 2:
            names.append(config.channel2)
        if len(names) == 1 or self.closed:
            return [self.fetch(config, names[0], window)]

        futures: List[Future] = []
        for name in names:
            try:
                futures.append(self._executor.submit(self.fetch, config, name, window))
            except RuntimeError as exc:
                # executor shut down by a concurrent close()
                wait(futures)
                url = build_url(config.server_url, config.source_name, name, window, config.lookback_span)
                raise TransportError(url, "fetcher closed") from exc
        results: List[FetchResult] = []
        failure: Optional[TransportError] = None
        for future in futures:
            try:
                results.append(future.result())
            except TransportError as exc:
                if failure is None:
                    failure = exc
        if failure is not None:
            raise failure
        return results

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._session.close()


__all__ = [
    "ChannelFetcher",
    "FetchError",
    "FetchResult",
    "HeaderParseError",
    "TransportError",
    "build_url",
    "parse_window_headers",
]
