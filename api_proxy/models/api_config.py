"""
Api registry mapping api names to backend base URLs
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

from api_proxy.features.proxy.services.paths import DEFAULT_API_NAME

logger = logging.getLogger(__name__)


class ApiNotConfiguredError(LookupError):
    """Raised when a request targets an api name with no registered backend"""

    status_code = 404
    error = 'Unknown api'

    def __init__(self, api_name: str):
        super().__init__(f"No backend configured for api '{api_name}'")
        self.api_name = api_name


class ApiConfig:
    """Model for the backend apis the proxy may forward to"""

    def __init__(self, config_path=None, default_url: Optional[str] = None):
        self._config_file = Path(config_path) if config_path else None
        self._default_url = default_url

    @staticmethod
    def _parse_url(url: str) -> Dict:
        """Turn a base URL into an api definition"""
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.hostname:
            raise ValueError(f"Invalid api base URL: {url!r}")
        return {
            'protocol': parsed.scheme,
            'host': parsed.hostname,
            'port': parsed.port,
            'prefix': parsed.path.rstrip('/'),
        }

    def _load_config(self) -> Dict:
        """Load api definitions from file"""
        if self._config_file is None or not self._config_file.exists():
            return {'apis': {}}
        try:
            with open(self._config_file, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading api config {self._config_file}: {e}")
            return {'apis': {}}

        if not isinstance(data, dict) or not isinstance(data.get('apis'), dict):
            logger.error(f"Api config {self._config_file} has no 'apis' mapping, ignoring it")
            return {'apis': {}}
        return data

    def get_all(self) -> Dict[str, Dict]:
        """Get all api definitions keyed by api name"""
        apis = {}
        for name, api in self._load_config()['apis'].items():
            if not isinstance(api, dict) or not api.get('host'):
                logger.warning(f"Skipping api '{name}': missing host")
                continue
            apis[name] = {
                'name': name,
                'protocol': api.get('protocol', 'http'),
                'host': api['host'],
                'port': api.get('port'),
                'prefix': (api.get('prefix') or '').rstrip('/'),
            }

        # Environment override for the default api
        if self._default_url:
            apis[DEFAULT_API_NAME] = dict(self._parse_url(self._default_url), name=DEFAULT_API_NAME)
        return apis

    def get_names(self) -> List[str]:
        return sorted(self.get_all())

    def get_by_name(self, api_name: Optional[str]) -> Optional[Dict]:
        """Get an api definition; None selects the default api"""
        return self.get_all().get(api_name or DEFAULT_API_NAME)

    def build_url(self, api_name: Optional[str], path: str) -> str:
        """Absolute backend URL for an api path"""
        api = self.get_by_name(api_name)
        if api is None:
            raise ApiNotConfiguredError(api_name or DEFAULT_API_NAME)

        netloc = api['host']
        if api['port']:
            netloc = f"{netloc}:{api['port']}"
        if not path.startswith('/'):
            path = '/' + path
        return f"{api['protocol']}://{netloc}{api['prefix']}{path}"
