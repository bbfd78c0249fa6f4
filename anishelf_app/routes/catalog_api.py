"""
================================================================================
AniShelf - Catalog API Routes
================================================================================
Flask blueprint exposing the catalog pipeline to the web front end.

ENDPOINTS:
  GET /api/anime/search       - Free search (q, type, sort, genres, min_score)
  GET /api/anime/top          - Top anime, refined by the same filters
  GET /api/anime/seasonal     - Current season, refined by the same filters
  GET /api/anime/genres       - Genre taxonomy
  GET /api/anime/<id>         - Detail aggregate (anime + characters + recs)
  GET /api/anime/cache/stats  - Cache statistics

Every catalog response is {status, data?, message?, code}.
================================================================================
"""

from flask import Blueprint, jsonify, request

from ..catalog.models import QueryMode, QueryResult, ResultStatus
from ..extensions import get_catalog
from ..log import log
from ..rate_limit import limit_heavy, limit_light
from .validators import filter_state_from_args

catalog_bp = Blueprint('catalog_api', __name__, url_prefix='/api/anime')

HTTP_STATUS = {
    'ok': 200,
    'noop': 200,
    'query_too_short': 400,
    'rate_limited': 429,
    'transport_failure': 502,
    'aggregate_fetch_failed': 502,
}


def _respond(result: QueryResult):
    # An aggregate that failed on a 429 is reported as rate limited
    code = result.cause_code if result.cause_code == 'rate_limited' else result.code
    status = 200 if result.status is ResultStatus.READY else HTTP_STATUS.get(code, 500)
    return jsonify(result.to_dict()), status


def _run_list_query(mode: QueryMode):
    state = filter_state_from_args(request.args)
    catalog = get_catalog()
    result = catalog.run(catalog.service.run_query(state, mode))
    if result.status is ResultStatus.ERROR and result.code != 'query_too_short':
        log(f"Catalog {mode.value} query failed: {result.code} ({result.message})")
    return _respond(result)


@catalog_bp.route('/search')
@limit_heavy
def search():
    """Free search. Default filters with an empty term yield a neutral empty result."""
    return _run_list_query(QueryMode.SEARCH)


@catalog_bp.route('/top')
@limit_heavy
def top():
    """Top anime; a valid `q` switches to a search."""
    return _run_list_query(QueryMode.TOP)


@catalog_bp.route('/seasonal')
@limit_heavy
def seasonal():
    return _run_list_query(QueryMode.SEASONAL)


@catalog_bp.route('/genres')
@limit_heavy
def genres():
    """
    Genre taxonomy.

    Returns:
        {"status": "ready", "data": [{"mal_id": 1, "name": "Action"}, ...]}
    """
    catalog = get_catalog()
    names = catalog.run(catalog.service.load_genres())
    return jsonify(QueryResult.ready(names).to_dict())


@catalog_bp.route('/<int:mal_id>')
@limit_heavy
def detail(mal_id: int):
    """
    Detail aggregate.

    Returns:
        {
            "status": "ready",
            "data": {
                "primary": {...anime...},
                "related": {"characters": [...], "recommendations": [...]},
                "is_favorite": false
            }
        }
    """
    catalog = get_catalog()
    result = catalog.run(catalog.service.get_detail(mal_id))
    if result.status is ResultStatus.ERROR:
        log(f"Detail {mal_id} failed: {result.code} ({result.message})")
    return _respond(result)


@catalog_bp.route('/cache/stats')
@limit_light
def cache_stats():
    return jsonify(get_catalog().service.cache_stats())
