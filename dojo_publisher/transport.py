from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
import urllib3

from . import messages
from .errors import ApiConnectionError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "Authorization"
JSON = "application/json"


def reason_phrase(response: requests.Response) -> str:
    try:
        return HTTPStatus(response.status_code).phrase
    except ValueError:
        return response.reason or ""


def _timeout(seconds: float) -> Optional[float]:
    # 0 disables the timeout
    return seconds if seconds and seconds > 0 else None


class HttpTransport:
    """Thin wrapper around a requests session.

    Adds the token and accept headers, applies the connect/read timeouts and
    turns network failures into ``ApiConnectionError``. Retrying is the
    caller's business; the adapter is mounted without urllib3 retries.
    """

    def __init__(self, base_url: str, api_key: str,
                 connect_timeout: float = 0, read_timeout: float = 0,
                 verify_ssl: bool = True) -> None:
        if connect_timeout < 0 or read_timeout < 0:
            raise ValueError("timeouts must not be negative")
        self.base = base_url.rstrip("/")
        self.timeout: Tuple[Optional[float], Optional[float]] = (_timeout(connect_timeout), _timeout(read_timeout))
        self.session = requests.Session()
        self.session.headers.update({API_KEY_HEADER: f"Token {api_key}", "Accept": JSON})
        self.session.verify = verify_ssl
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def url(self, path: str) -> str:
        return f"{self.base}{path}"

    def execute(self, method: str, path: str,
                params: Optional[Dict[str, Union[str, int]]] = None,
                **kwargs: Any) -> requests.Response:
        url = self.url(path)
        logger.debug("%s %s params=%s", method, url, params)
        try:
            r = self.session.request(method, url, params=params, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ApiConnectionError(messages.CONNECTION_FAILED) from e
        logger.debug("%s %s -> %s", method, url, r.status_code)
        return r

    def close(self) -> None:
        self.session.close()
