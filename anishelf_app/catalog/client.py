"""
================================================================================
AniShelf - Jikan Client (MyAnimeList)
================================================================================
Async REST client for Jikan v4, the unofficial MyAnimeList API.

Jikan Features:
  - No authentication required
  - 60 requests/min, 3 requests/sec rate limit
  - Every endpoint answers { "data": T | [T], ... }

API Docs: https://docs.api.jikan.moe/

Failure mapping:
  - 429               -> RateLimited (never retried here, the user re-queries)
  - other non-2xx     -> TransportFailure(status)
  - network errors    -> retried up to max_retries, then TransportFailure(None)
================================================================================
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .errors import RateLimited, TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.jikan.moe/v4"


DEFAULT_BURST = 3


class RateLimiter:
    """
    Token-bucket rate limiter for API requests.

    Up to `burst` requests go out at once (Jikan allows 3/sec); the bucket
    refills at requests_per_minute / 60 tokens per second.
    """

    def __init__(self, requests_per_minute: int, burst: int = DEFAULT_BURST):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Maximum sustained requests per minute (0 disables)
            burst: Bucket capacity
        """
        self.requests_per_minute = requests_per_minute
        self.rate = requests_per_minute / 60.0 if requests_per_minute > 0 else 0.0
        self.capacity = float(max(1, burst))
        self.tokens = self.capacity
        self.updated_at = time.monotonic()
        self._lock: Optional[asyncio.Lock] = None
        self._loop = None

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def acquire(self):
        """Wait until a request slot is available."""
        if self.rate <= 0:
            return
        async with self._get_lock():
            self._refill()
            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._refill()
            self.tokens -= 1

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.rate)
        self.updated_at = now


class JikanClient:
    """
    Jikan v4 API client for anime data.

    Holds one httpx.AsyncClient, created lazily on the running loop.
    """

    id = "mal"
    name = "MyAnimeList (Jikan)"

    user_agent: str = "AniShelf/1.0 (+https://github.com/anishelf/anishelf)"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        rate_limit: int = 60,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API root (no trailing slash)
            timeout: Request timeout in seconds
            rate_limit: Requests per minute (0 disables client-side limiting)
            max_retries: Attempts for network errors (>= 1)
            retry_delay: Seconds between network retries
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit = rate_limit
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = retry_delay
        self.rate_limiter = RateLimiter(rate_limit)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client bound to the running loop."""
        loop = asyncio.get_running_loop()
        if self._client is None or self._client.is_closed or self._client_loop is not loop:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    'User-Agent': self.user_agent,
                    'Accept': 'application/json'
                }
            )
            self._client_loop = loop
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._client_loop = None

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        GET <path>?<params> and return the decoded JSON object.

        Raises:
            RateLimited: on HTTP 429
            TransportFailure: on any other non-2xx, network error or bad JSON
        """
        client = await self._get_client()
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries):
            await self.rate_limiter.acquire()
            started = time.monotonic()
            try:
                response = await client.get(path, params=params)
            except httpx.RequestError as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.id}: Request error ({e}), "
                        f"retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                logger.warning(f"{self.id}: Request to {url} failed: {e}")
                raise TransportFailure(status=None, url=url, detail=str(e)) from e

            elapsed = time.monotonic() - started
            logger.debug(f"{self.id}: GET {path} -> {response.status_code} ({elapsed:.2f}s)")

            if response.status_code == 429:
                retry_after = _retry_after(response)
                logger.warning(f"{self.id}: Rate limited (429) on {path}")
                raise RateLimited(url=url, retry_after=retry_after)

            if not response.is_success:
                logger.warning(f"{self.id}: HTTP {response.status_code} on {path}")
                raise TransportFailure(status=response.status_code, url=url)

            try:
                payload = response.json()
            except ValueError as e:
                raise TransportFailure(status=response.status_code, url=url, detail="invalid JSON") from e

            if not isinstance(payload, dict):
                raise TransportFailure(status=response.status_code, url=url, detail="unexpected payload")
            return payload

        raise TransportFailure(status=None, url=url, detail="max retries exceeded")

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def fetch_genres(self) -> List[Dict]:
        """Genre taxonomy (GET /genres/anime)."""
        response = await self.get("/genres/anime")
        return [parse_genre(item) for item in response.get('data') or [] if isinstance(item, dict)]

    def __repr__(self):
        return f"<{self.__class__.__name__}(base_url='{self.base_url}', rate_limit={self.rate_limit}/min)>"


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# =============================================================================
# RECORD NORMALISATION
# =============================================================================

def _names(items) -> List[str]:
    return [item['name'] for item in items or [] if isinstance(item, dict) and item.get('name')]


def _images(item: Dict) -> Dict[str, Optional[str]]:
    images = item.get('images') or {}
    jpg = images.get('jpg') or {}
    webp = images.get('webp') or {}
    return {
        'large': webp.get('large_image_url') or jpg.get('large_image_url'),
        'medium': webp.get('image_url') or jpg.get('image_url'),
        'small': webp.get('small_image_url') or jpg.get('small_image_url'),
    }


def parse_anime(item: Dict) -> Dict:
    """Parse a Jikan anime object into our flat record."""
    images = _images(item)
    aired = item.get('aired') or {}
    trailer = item.get('trailer') or {}

    return {
        'mal_id': item.get('mal_id'),
        'title': item.get('title'),
        'title_english': item.get('title_english'),
        'title_japanese': item.get('title_japanese'),
        'type': item.get('type'),  # TV, Movie, OVA, Special, ONA, Music
        'status': item.get('status'),
        'episodes': item.get('episodes'),
        'score': item.get('score'),
        'scored_by': item.get('scored_by'),
        'rank': item.get('rank'),
        'popularity': item.get('popularity'),
        'members': item.get('members'),
        'synopsis': item.get('synopsis') or '',
        'rating': item.get('rating'),
        'year': item.get('year'),
        'season': item.get('season'),
        'aired': aired.get('string'),
        'genres': _names(item.get('genres')),
        'themes': _names(item.get('themes')),
        'studios': _names(item.get('studios')),
        'producers': _names(item.get('producers')),
        'images': images,
        'cover_url': images['large'] or images['medium'] or images['small'],
        'trailer_url': trailer.get('embed_url'),
        'url': item.get('url'),
    }


def parse_character(item: Dict) -> Dict:
    """Parse an entry of /anime/{id}/characters (character + voice actors)."""
    character = item.get('character') or {}
    voice_actors = []
    for va in item.get('voice_actors') or []:
        person = va.get('person') or {}
        voice_actors.append({
            'mal_id': person.get('mal_id'),
            'name': person.get('name'),
            'language': va.get('language'),
            'image_url': _images(person)['medium'],
        })
    return {
        'mal_id': character.get('mal_id'),
        'name': character.get('name'),
        'role': item.get('role'),
        'favorites': item.get('favorites'),
        'image_url': _images(character)['medium'],
        'url': character.get('url'),
        'voice_actors': voice_actors,
    }


def parse_recommendation(item: Dict) -> Dict:
    """Parse an entry of /anime/{id}/recommendations."""
    entry = item.get('entry') or {}
    images = _images(entry)
    return {
        'mal_id': entry.get('mal_id'),
        'title': entry.get('title'),
        'cover_url': images['large'] or images['medium'],
        'url': entry.get('url'),
        'votes': item.get('votes'),
    }


def parse_genre(item: Dict) -> Dict:
    return {
        'mal_id': item.get('mal_id'),
        'name': item.get('name'),
        'count': item.get('count'),
    }
