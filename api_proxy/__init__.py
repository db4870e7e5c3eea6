"""
ApiProxy - Flask gateway forwarding client requests to backend apis
"""
from flask import Flask
import atexit
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.environ.get(name)!r}, using {default}")
        return float(default)


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.environ.get(name)!r}, using {default}")
        return int(default)


def create_app(config=None, data_adapter=None):
    """Create and configure the Flask application"""
    from api_proxy.features.proxy.blueprint import DEFAULT_MOUNT_PATH, bp as proxy_bp

    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['MAX_CONTENT_LENGTH'] = 20 * 1024 * 1024  # 20MB max request body
    # URL prefix the proxy is mounted under (e.g. /api/<api_name>/-/<path>)
    app.config['API_PROXY_MOUNT_PATH'] = os.environ.get('API_PROXY_MOUNT_PATH', DEFAULT_MOUNT_PATH)
    # JSON registry of backend apis, defaults to <instance>/apis_config.json
    app.config['API_PROXY_CONFIG'] = os.environ.get('API_PROXY_CONFIG')
    # Base URL of the "default" api (e.g. http://localhost:3030/v1)
    app.config['API_PROXY_DEFAULT_URL'] = os.environ.get('API_PROXY_DEFAULT_URL')
    app.config['API_PROXY_CONNECT_TIMEOUT'] = _env_float('API_PROXY_CONNECT_TIMEOUT', 10)
    app.config['API_PROXY_READ_TIMEOUT'] = _env_float('API_PROXY_READ_TIMEOUT', 60)
    app.config['API_PROXY_MAX_WORKERS'] = _env_int('API_PROXY_MAX_WORKERS', 16)
    # Number of trusted proxies in front of us; 0 keeps REMOTE_ADDR untouched
    app.config['API_PROXY_TRUSTED_HOPS'] = _env_int('API_PROXY_TRUSTED_HOPS', 0)

    if config:
        app.config.update(config)

    trusted_hops = app.config['API_PROXY_TRUSTED_HOPS']
    if trusted_hops:
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=trusted_hops, x_proto=trusted_hops)

    if data_adapter is None:
        from api_proxy.features.proxy.data_adapter import RequestsDataAdapter
        from api_proxy.models.api_config import ApiConfig

        config_path = app.config['API_PROXY_CONFIG'] or Path(app.instance_path) / 'apis_config.json'
        api_config = ApiConfig(config_path, default_url=app.config['API_PROXY_DEFAULT_URL'])
        data_adapter = RequestsDataAdapter(
            api_config,
            max_workers=app.config['API_PROXY_MAX_WORKERS'],
            timeout=(app.config['API_PROXY_CONNECT_TIMEOUT'], app.config['API_PROXY_READ_TIMEOUT']),
        )
        atexit.register(data_adapter.close)

        if not api_config.get_names():
            logger.warning(
                f"No backend apis configured; set API_PROXY_DEFAULT_URL or create {config_path}"
            )

    from api_proxy.features.proxy.middleware import ApiProxy
    app.extensions['api_proxy'] = ApiProxy(data_adapter)

    # Register blueprints
    mount_path = app.config['API_PROXY_MOUNT_PATH'].rstrip('/')
    app.register_blueprint(proxy_bp, url_prefix=mount_path)
    logger.info(f"Api proxy mounted at {mount_path or '/'}")

    return app
