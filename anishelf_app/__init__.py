# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import time
import secrets
import uuid
from typing import Any, Dict, Optional

from flask import Flask, g, request


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


def create_app(test_config: Optional[Dict[str, Any]] = None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # =============================================================================
    # CONFIGURATION
    # =============================================================================
    BASE_DIR = os.path.dirname(os.path.abspath(__file__))

    def get_or_create_secret_key() -> str:
        env_key = os.environ.get('SECRET_KEY')
        if env_key:
            return env_key
        key_file = os.path.join(BASE_DIR, '..', '.secret_key')
        if os.path.exists(key_file):
            with open(key_file, 'r') as f:
                return f.read().strip()
        new_key = secrets.token_hex(32)
        with open(key_file, 'w') as f:
            f.write(new_key)
        return new_key

    app.config.from_mapping(
        JIKAN_BASE_URL=os.environ.get('JIKAN_BASE_URL', 'https://api.jikan.moe/v4'),
        JIKAN_TIMEOUT=float(os.environ.get('JIKAN_TIMEOUT', '10')),
        JIKAN_RATE_LIMIT=int(os.environ.get('JIKAN_RATE_LIMIT', '60')),
        JIKAN_MAX_RETRIES=int(os.environ.get('JIKAN_MAX_RETRIES', '2')),
        JIKAN_TRANSPORT=None,
        SEARCH_DEBOUNCE_MS=int(os.environ.get('SEARCH_DEBOUNCE_MS', '500')),
        DETAIL_CACHE_TTL=float(os.environ.get('DETAIL_CACHE_TTL', '3600')),
        RESULT_LIMIT=int(os.environ.get('RESULT_LIMIT', '20')),
        DATABASE_URL=os.environ.get('DATABASE_URL'),
        DISABLE_RATE_LIMITING=_env_flag('DISABLE_RATE_LIMITING'),
        ASYNC_TIMEOUT=60.0,
    )
    if test_config is not None:
        app.config.update(test_config)
    if not app.config.get('SECRET_KEY'):
        app.config['SECRET_KEY'] = get_or_create_secret_key()
    app.json.sort_keys = False

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # =============================================================================
    # LOGGING and RATE LIMITING
    # =============================================================================
    from .log import log, debug_log_event
    from .rate_limit import init_rate_limiting

    init_rate_limiting(app)

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        duration_ms = None
        start_time = getattr(g, 'request_start', None)
        if start_time:
            duration_ms = int((time.time() - start_time) * 1000)
        debug_log_event({
            'event': 'request',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method,
            'path': request.path,
            'query': request.query_string.decode('utf-8', errors='ignore'),
            'status': response.status_code,
            'duration_ms': duration_ms,
            'remote_addr': request.remote_addr,
        })
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        debug_log_event({
            'event': 'exception',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method,
            'path': request.path,
            'error_type': error.__class__.__name__,
            'error': str(error)
        })

    # =============================================================================
    # CATALOG (store, async runtime, Jikan client, service)
    # =============================================================================
    from .extensions import CatalogExtension

    CatalogExtension(app)

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    from .routes.main_api import main_bp
    from .routes.catalog_api import catalog_bp
    from .routes.library_api import library_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(library_bp)

    app.config['HOST'] = os.environ.get('FLASK_HOST', '127.0.0.1')
    app.config['PORT'] = int(os.environ.get('FLASK_PORT', '5000'))
    app.config['DEBUG'] = _env_flag('FLASK_DEBUG')

    if not app.testing:
        log(f"AniShelf API on http://{app.config['HOST']}:{app.config['PORT']} "
            f"(Jikan: {app.config['JIKAN_BASE_URL']})")
        if app.config['DEBUG']:
            log("Debug mode is ON - do not use in production!")

    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
