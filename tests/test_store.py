import pytest

from anishelf_app.store import (
    CommentsStore, FavoritesStore, InvalidComment, PersistedStore, StoreClosed,
)

NARUTO = {"mal_id": 20, "title": "Naruto", "cover_url": "https://cdn.myanimelist.net/images/anime/20.jpg", "score": 8.0}
BEBOP = {"mal_id": 1, "title": "Cowboy Bebop", "score": 8.8}


def test_toggle_twice_restores_favorites(store):
    favorites = FavoritesStore(store)
    favorites.upsert(BEBOP)
    before = favorites.all()

    assert favorites.toggle({"mal_id": 42, "title": "Hunter x Hunter"}) is True
    assert favorites.contains(42)
    assert favorites.toggle({"mal_id": 42, "title": "Hunter x Hunter"}) is False
    assert not favorites.contains(42)
    assert favorites.all() == before


def test_upsert_keeps_one_entry_per_id(store):
    favorites = FavoritesStore(store)
    favorites.upsert(NARUTO)
    favorites.upsert(dict(NARUTO, score=8.1))

    entries = favorites.all()
    assert len(entries) == 1
    assert entries[0]["score"] == 8.1
    assert "added_at" in entries[0]


def test_remove_reports_whether_anything_was_removed(store):
    favorites = FavoritesStore(store)
    favorites.upsert(NARUTO)

    assert favorites.remove(20) is True
    assert favorites.remove(20) is False
    assert favorites.all() == []


def test_comments_are_newest_first(store, clock):
    comments = CommentsStore(store, clock=clock)
    comments.add(20, "Believe it!", 9)
    clock.advance(60)
    comments.add(20, "  Filler arcs though.  ", 6)

    entries = comments.list(20)
    assert [c["text"] for c in entries] == ["Filler arcs though.", "Believe it!"]
    assert entries[0]["id"] > entries[1]["id"]
    assert comments.list(21) == []


@pytest.mark.parametrize("text,rating", [
    ("", 5),
    ("   ", 5),
    ("x" * 2001, 5),
    ("Great", 0),
    ("Great", 11),
    ("Great", "7"),
    ("Great", True),
])
def test_invalid_comments_are_rejected(store, text, rating):
    with pytest.raises(InvalidComment):
        CommentsStore(store).add(20, text, rating)
    assert CommentsStore(store).list(20) == []


def test_file_store_survives_reopen(tmp_path):
    url = f"sqlite:///{tmp_path / 'anishelf.db'}"
    store = PersistedStore(url).open()
    FavoritesStore(store).upsert(NARUTO)
    store.close()

    reopened = PersistedStore(url).open()
    assert FavoritesStore(reopened).contains(20)
    reopened.close()


def test_closed_store_raises():
    store = PersistedStore("sqlite://")
    with pytest.raises(StoreClosed):
        store.read_list("favorites")

    store.open()
    assert store.is_open
    store.close()
    with pytest.raises(StoreClosed):
        store.write_list("favorites", [])
