from anishelf_app.catalog.models import FilterState
from anishelf_app.catalog.refiner import ResultRefiner, refine

BEBOP = {"mal_id": 1, "title": "Cowboy Bebop", "type": "TV", "score": 8.1, "popularity": 50, "genres": ["Action"]}
MOVIE = {"mal_id": 2, "title": "Spirited Away", "type": "Movie", "score": 7.2, "popularity": 10, "genres": ["Comedy"]}
UNSCORED = {"mal_id": 3, "title": "New Show", "type": "TV", "score": None, "popularity": 0, "genres": ["Action", "Comedy"]}
FMAB = {"mal_id": 4, "title": "FMA: Brotherhood", "type": "tv", "score": 9.0, "popularity": 5, "genres": []}

RECORDS = [BEBOP, MOVIE, UNSCORED, FMAB]


def titles(records):
    return [r["title"] for r in records]


def test_type_filter_is_case_insensitive():
    result = refine(RECORDS, FilterState.create(type="tv"))
    assert titles(result) == ["FMA: Brotherhood", "Cowboy Bebop", "New Show"]


def test_genres_need_any_overlap():
    result = refine(RECORDS, FilterState.create(genres=["comedy"]))
    assert titles(result) == ["Spirited Away", "New Show"]


def test_genre_objects_are_understood():
    records = [dict(BEBOP, genres=[{"mal_id": 1, "name": "Action"}])]
    assert refine(records, FilterState.create(genres=["Action"])) == records


def test_min_score_treats_missing_score_as_zero():
    result = refine(RECORDS, FilterState.create(min_score=8))
    assert titles(result) == ["FMA: Brotherhood", "Cowboy Bebop"]


def test_popularity_sorts_ascending_with_unranked_last():
    result = refine(RECORDS, FilterState.create(sort_key="popularity"))
    assert titles(result) == ["FMA: Brotherhood", "Spirited Away", "Cowboy Bebop", "New Show"]


def test_sort_is_stable_on_ties():
    first = {"title": "A", "score": 7.0}
    second = {"title": "B", "score": 7.0}
    assert titles(refine([first, second], FilterState())) == ["A", "B"]
    assert titles(refine([second, first], FilterState())) == ["B", "A"]


def test_expressed_filters_are_skipped():
    state = FilterState.create(type="movie", sort_key="popularity")
    result = ResultRefiner().refine(RECORDS, state, expressed=frozenset({"type", "sort"}))
    assert result == RECORDS


def test_refine_is_idempotent():
    state = FilterState.create(type="tv", genres=["Action"], min_score=1, sort_key="popularity")
    once = refine(RECORDS, state)
    assert refine(once, state) == once


def test_input_is_not_mutated():
    records = list(RECORDS)
    refine(records, FilterState.create(sort_key="popularity"))
    assert records == RECORDS


def test_non_record_entries_are_dropped():
    assert refine([None, "junk", BEBOP], FilterState()) == [BEBOP]


def test_movie_with_minimum_score():
    records = [
        {"type": "TV", "score": 8},
        {"type": "Movie", "score": 9},
        {"type": "Movie", "score": 6},
    ]
    state = FilterState.create(type="movie", min_score=7.5)
    assert refine(records, state) == [{"type": "Movie", "score": 9}]


def test_missing_popularity_sorts_last():
    records = [{"popularity": None}, {"popularity": 5}, {"popularity": 2}]
    result = refine(records, FilterState.create(sort_key="popularity"))
    assert [r["popularity"] for r in result] == [2, 5, None]
