from flask import Blueprint, jsonify, request

from ..extensions import get_catalog
from ..log import log
from ..rate_limit import limit_light
from ..store import InvalidComment, MAX_COMMENT_LENGTH
from .validators import sanitize_string, validate_fields

library_bp = Blueprint('library_api', __name__, url_prefix='/api')


@library_bp.route('/favorites')
@limit_light
def get_favorites():
    """Get favorite anime."""
    return jsonify(get_catalog().service.favorites())


@library_bp.route('/favorites/toggle', methods=['POST'])
@limit_light
def toggle_favorite():
    """Add or remove an anime from favorites."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [
        ('mal_id', int, None),
        ('title', str, 500),
    ])
    if error:
        return jsonify({'error': error}), 400

    anime = {
        'mal_id': data['mal_id'],
        'title': sanitize_string(data['title'], 500),
        'cover_url': data.get('cover_url') if isinstance(data.get('cover_url'), str) else None,
        'score': data.get('score') if isinstance(data.get('score'), (int, float)) else None,
    }
    is_favorite = get_catalog().service.toggle_favorite(anime)
    log(f"{'Added' if is_favorite else 'Removed'} favorite: {anime['title']}")
    return jsonify({'status': 'ok', 'is_favorite': is_favorite})


@library_bp.route('/favorites/<int:mal_id>', methods=['DELETE'])
@limit_light
def delete_favorite(mal_id: int):
    """Remove an anime from favorites."""
    removed = get_catalog().service.remove_favorite(mal_id)
    if not removed:
        return jsonify({'error': 'Not a favorite'}), 404
    return jsonify({'status': 'ok'})


@library_bp.route('/anime/<int:mal_id>/comments', methods=['GET'])
@limit_light
def get_comments(mal_id: int):
    """Comments for an anime, newest first."""
    return jsonify(get_catalog().service.comments(mal_id))


@library_bp.route('/anime/<int:mal_id>/comments', methods=['POST'])
@limit_light
def add_comment(mal_id: int):
    """Add a comment with a 1-10 rating."""
    data = request.get_json(silent=True) or {}
    error = validate_fields(data, [
        ('text', str, MAX_COMMENT_LENGTH),
        ('rating', int, None),
    ])
    if error:
        return jsonify({'error': error}), 400

    try:
        entry = get_catalog().service.add_comment(
            mal_id,
            sanitize_string(data['text'], MAX_COMMENT_LENGTH, allow_newlines=True),
            data['rating']
        )
    except InvalidComment as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'status': 'ok', 'comment': entry}), 201
