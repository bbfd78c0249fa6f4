import httpx
import pytest

from anishelf_app.catalog.client import JikanClient
from anishelf_app.store import PersistedStore

BASE_URL = "https://api.jikan.moe/v4"
API_PREFIX = "/v4"


def anime_item(mal_id, title, type="TV", score=None, popularity=None, genres=()):
    """Minimal Jikan anime object."""
    return {
        "mal_id": mal_id,
        "title": title,
        "type": type,
        "score": score,
        "popularity": popularity,
        "genres": [{"mal_id": i, "name": name} for i, name in enumerate(genres, start=1)],
        "images": {"jpg": {"image_url": f"https://cdn.myanimelist.net/images/anime/{mal_id}.jpg"}},
        "url": f"https://myanimelist.net/anime/{mal_id}",
    }


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class JikanStub:
    """Canned Jikan responses behind an httpx.MockTransport."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, path, json=None, status=200, headers=None):
        self.routes[path] = (status, json, headers)

    def handler(self, request):
        path = request.url.path[len(API_PREFIX):]
        self.calls.append((path, dict(request.url.params)))
        if path not in self.routes:
            return httpx.Response(404, json={"status": 404, "message": "Resource does not exist"})
        status, payload, headers = self.routes[path]
        return httpx.Response(status, json=payload, headers=headers)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def paths(self):
        return [path for path, _ in self.calls]

    def client(self):
        return JikanClient(
            base_url=BASE_URL,
            rate_limit=0,
            max_retries=1,
            retry_delay=0,
            transport=self.transport,
        )

    def add_detail(self, mal_id, title="Fullmetal Alchemist: Brotherhood"):
        self.add(f"/anime/{mal_id}", {"data": anime_item(mal_id, title, score=9.1, popularity=3)})
        self.add(f"/anime/{mal_id}/characters", {"data": [{
            "character": {"mal_id": 11, "name": "Elric, Edward"},
            "role": "Main",
            "favorites": 50000,
            "voice_actors": [{"person": {"mal_id": 5, "name": "Park, Romi"}, "language": "Japanese"}],
        }]})
        self.add(f"/anime/{mal_id}/recommendations", {"data": [{
            "entry": {"mal_id": 121, "title": "Fullmetal Alchemist"},
            "votes": 120,
        }]})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def jikan():
    return JikanStub()


@pytest.fixture
def store():
    store = PersistedStore("sqlite://").open()
    yield store
    store.close()
