"""Lightweight request validation helpers."""

from typing import Any, Dict, List, Optional, Tuple

from ..catalog.models import FilterState


Rule = Tuple[str, type, Optional[int]]

MAX_TERM_LENGTH = 200
MAX_GENRES = 20


def validate_fields(payload: Dict[str, Any], rules: List[Rule]) -> Optional[str]:
    """
    Validate required fields with optional max length.

    Args:
        payload: Incoming JSON dict.
        rules: List of (field, type, max_length or None).

    Returns:
        None if valid, or error message string.
    """
    for field, expected_type, max_len in rules:
        if field not in payload:
            return f"Missing required field: {field}"
        value = payload.get(field)
        if not isinstance(value, expected_type) or isinstance(value, bool) and expected_type is int:
            return f"Field '{field}' must be {expected_type.__name__}"
        if max_len is not None and len(str(value)) > max_len:
            return f"Field '{field}' exceeds max length {max_len}"
    return None


def sanitize_string(value: str, max_length: int = 500, allow_newlines: bool = False) -> str:
    """
    Sanitize a string by removing control characters and limiting length.

    Args:
        value: String to sanitize
        max_length: Maximum allowed length
        allow_newlines: Whether to allow newlines

    Returns:
        Sanitized string
    """
    if not isinstance(value, str):
        return ""

    # Remove control characters (except newlines if allowed)
    if allow_newlines:
        result = ''.join(c for c in value if c >= ' ' or c in '\n\r\t')
    else:
        result = ''.join(c for c in value if c >= ' ')

    return result[:max_length]


def filter_state_from_args(args) -> FilterState:
    """
    Build a FilterState from query-string args.

    ?q=naruto&type=tv&sort=popularity&genres=Action,Comedy&min_score=7.5
    Repeated `genres` params are accepted as well as a comma list.
    """
    genres: List[str] = []
    for raw in args.getlist('genres'):
        genres.extend(part for part in raw.split(','))
    genres = [sanitize_string(g, 50).strip() for g in genres][:MAX_GENRES]

    return FilterState.create(
        term=sanitize_string(args.get('q', ''), MAX_TERM_LENGTH),
        type=args.get('type'),
        sort_key=args.get('sort'),
        genres=genres,
        min_score=args.get('min_score'),
    )
