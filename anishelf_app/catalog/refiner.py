"""
Client-side filter/sort fallback for results the remote request could not
filter itself (curated lists, unresolved genre names).

Fixed precedence:
  1. type       - case-insensitive match on the record's `type`
  2. genres     - record genre names intersect the requested set
  3. min_score  - score >= min_score, missing score counts as 0
  4. sort       - stable; score desc (missing = 0) or popularity asc
                  (missing/unranked sorts last)

refine() never raises and is idempotent.
"""

from typing import Any, Dict, FrozenSet, Iterable, List

from .composer import coerce_min_score
from .models import AnimeType, FilterState, SortKey

UNRANKED_POPULARITY = 10 ** 9


def _score(record: Dict[str, Any]) -> float:
    score = record.get('score')
    return float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else 0.0


def _popularity(record: Dict[str, Any]) -> float:
    popularity = record.get('popularity')
    if not isinstance(popularity, (int, float)) or isinstance(popularity, bool) or popularity <= 0:
        return UNRANKED_POPULARITY
    return popularity


def _genre_names(record: Dict[str, Any]) -> FrozenSet[str]:
    names = set()
    for genre in record.get('genres') or []:
        name = genre.get('name') if isinstance(genre, dict) else genre
        if isinstance(name, str):
            names.add(name.strip().lower())
    return frozenset(names)


class ResultRefiner:
    """Applies the filters in `state` that are not listed in `expressed`."""

    def refine(
        self,
        records: Iterable[Dict[str, Any]],
        state: FilterState,
        expressed: FrozenSet[str] = frozenset(),
    ) -> List[Dict[str, Any]]:
        """
        Args:
            records: Raw result records
            state: Filter snapshot the results are for
            expressed: Filters the remote request already applied

        Returns:
            New list of records (input is not mutated)
        """
        results = [r for r in records if isinstance(r, dict)]

        if state.type is not AnimeType.ALL and 'type' not in expressed:
            wanted = state.type.value
            results = [r for r in results if str(r.get('type') or '').lower() == wanted]

        if state.genres and 'genres' not in expressed:
            wanted_genres = frozenset(g.strip().lower() for g in state.genres)
            results = [r for r in results if _genre_names(r) & wanted_genres]

        min_score = coerce_min_score(state.min_score)
        if min_score is not None and 'min_score' not in expressed:
            results = [r for r in results if _score(r) >= min_score]

        if 'sort' not in expressed:
            if state.sort_key is SortKey.POPULARITY:
                results.sort(key=_popularity)
            else:
                results.sort(key=_score, reverse=True)

        return results


_default_refiner = ResultRefiner()


def refine(records, state: FilterState, expressed: FrozenSet[str] = frozenset()) -> List[Dict[str, Any]]:
    """Module-level shortcut for ResultRefiner().refine(...)."""
    return _default_refiner.refine(records, state, expressed)
