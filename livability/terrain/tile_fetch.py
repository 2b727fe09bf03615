"""
HTTP acquisition of elevation tiles.

Provides:
- TileSource: templated tile URL plus declared RGB encoding
- RetryPolicy: bounded exponential backoff honouring Retry-After
- get_with_retry: GET with retry on rate limits, server errors and timeouts
- fetch_tile / decode_tile_image: tile bytes to a float32 elevation array

Failures surface as TileFetchError (or its subclasses) wrapping the
underlying requests/PIL exception.
"""

import io
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from livability import config
from livability.terrain.tiles import ELEVATION_ENCODINGS, decode_elevation, tile_url

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


class TileFetchError(Exception):
    """A tile or API request failed at the network or HTTP level."""


class TileDecodeError(TileFetchError):
    """A response body could not be decoded into an elevation tile."""


class RateLimitError(TileFetchError):
    """HTTP 429 persisted through every retry attempt."""


@dataclass
class TileSource:
    """
    A configured elevation tile source.

    Attributes:
        url_template: URL with {z}, {x} and {y} placeholders
        encoding: "mapbox" (24-bit, 0.1 m) or "terrarium"
    """

    url_template: str
    encoding: str = "mapbox"

    def __post_init__(self):
        if self.encoding not in ELEVATION_ENCODINGS:
            raise ValueError(
                f"Unknown encoding '{self.encoding}'. Available: {list(ELEVATION_ENCODINGS)}"
            )
        for placeholder in ("{z}", "{x}", "{y}"):
            if placeholder not in self.url_template:
                raise ValueError(f"Tile URL template is missing {placeholder}: {self.url_template}")

    def url(self, zoom: int, x: int, y: int) -> str:
        return tile_url(self.url_template, zoom, x, y)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"url_template": self.url_template, "encoding": self.encoding}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TileSource":
        """Deserialize from dictionary."""
        return cls(url_template=data["url_template"], encoding=data.get("encoding", "mapbox"))


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = config.RETRY_MAX_ATTEMPTS
    base_delay: float = config.RETRY_BASE_DELAY_S
    max_delay: float = config.RETRY_MAX_DELAY_S

    def __post_init__(self):
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Seconds to wait before retry number ``attempt`` (0-based).

        A server-supplied Retry-After hint wins over the exponential schedule.
        """
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        return min(self.base_delay * (2 ** attempt), self.max_delay)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds; dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def get_with_retry(
    session: requests.Session,
    url: str,
    params: Optional[dict[str, Any]] = None,
    policy: Optional[RetryPolicy] = None,
    timeout: float = config.HTTP_TIMEOUT_S,
    sleep: Callable[[float], None] = time.sleep,
    on_wait: Optional[Callable[[float], None]] = None,
) -> requests.Response:
    """
    GET ``url``, retrying rate limits, server errors and connection failures.

    Args:
        session: requests session used for the call
        url: Request URL
        params: Query parameters
        policy: Retry schedule (defaults to RetryPolicy())
        timeout: Per-request timeout in seconds
        sleep: Sleep function (injected by tests)
        on_wait: Called with the delay before each retry

    Returns:
        The successful response

    Raises:
        RateLimitError: HTTP 429 on the final attempt
        TileFetchError: any other non-OK status or network failure
    """
    policy = policy or RetryPolicy()
    last_error: Optional[Exception] = None

    for attempt in range(policy.max_attempts):
        retry_after = None
        try:
            response = session.get(url, params=params, timeout=timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            last_error = e
            logger.debug(f"Request failed ({e}) for {url}")
        except requests.exceptions.RequestException as e:
            raise TileFetchError(f"Request failed for {url}: {e}") from e
        else:
            if response.ok:
                return response
            if response.status_code not in RETRY_STATUSES:
                raise TileFetchError(f"HTTP {response.status_code} for {url}")
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            last_error = None
            if response.status_code == 429 and attempt == policy.max_attempts - 1:
                raise RateLimitError(f"Rate limited after {policy.max_attempts} attempts: {url}")
            if attempt == policy.max_attempts - 1:
                raise TileFetchError(f"HTTP {response.status_code} for {url}")

        if attempt < policy.max_attempts - 1:
            delay = policy.delay_for(attempt, retry_after)
            logger.warning(
                f"Retrying {url} in {delay:.2f}s (attempt {attempt + 2}/{policy.max_attempts})"
            )
            if on_wait is not None:
                on_wait(delay)
            sleep(delay)

    raise TileFetchError(f"Request failed for {url}: {last_error}") from last_error


def decode_tile_image(
    content: bytes,
    encoding: str = "mapbox",
    tile_size: int = config.TILE_SIZE,
) -> np.ndarray:
    """
    Decode PNG/WEBP tile bytes to a (tile_size, tile_size) float32 array.

    Raises:
        TileDecodeError: unreadable image or unexpected dimensions
    """
    try:
        with Image.open(io.BytesIO(content)) as img:
            rgb = np.asarray(img.convert("RGB"))
    except (UnidentifiedImageError, OSError) as e:
        raise TileDecodeError(f"Could not decode tile image: {e}") from e

    if rgb.shape[:2] != (tile_size, tile_size):
        raise TileDecodeError(
            f"Expected {tile_size}x{tile_size} tile, got {rgb.shape[1]}x{rgb.shape[0]}"
        )
    return decode_elevation(rgb, encoding)


def fetch_tile(
    session: requests.Session,
    source: TileSource,
    zoom: int,
    x: int,
    y: int,
    policy: Optional[RetryPolicy] = None,
    tile_size: int = config.TILE_SIZE,
) -> np.ndarray:
    """Fetch and decode one elevation tile."""
    url = source.url(zoom, x, y)
    response = get_with_retry(session, url, policy=policy)
    tile = decode_tile_image(response.content, source.encoding, tile_size)
    logger.debug(f"Fetched tile {zoom}/{x}/{y} ({len(response.content)} bytes)")
    return tile
