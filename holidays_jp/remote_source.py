"""Remote source client for the Cabinet Office holiday CSV.

GETで本体を取得し、HEADでETagのみを確認する。
"""

import logging
from typing import NamedTuple, Optional

import requests

from .error_handler import NetworkError, ConnectionTimeoutError, ValidationError
from .logging_config import log_performance
from .security import NetworkSecurityManager, validate_url_input


class FetchResult(NamedTuple):
    """Downloaded body with the cache-relevant response headers."""
    content: bytes
    etag: Optional[str]
    last_modified: Optional[str]
    status_code: int


class RemoteSourceClient:
    """HTTP client for the holiday data source."""

    def __init__(self, source_url: str, download_timeout: float = 30,
                 probe_timeout: float = 10, require_https: bool = True,
                 session: Optional[requests.Session] = None,
                 probe_session: Optional[requests.Session] = None):
        """
        Args:
            source_url: Default URL for fetch() and probe()
            download_timeout: Timeout for GET in seconds
            probe_timeout: Timeout for HEAD in seconds, shorter than download_timeout
            require_https: Reject plain http URLs
            session: Session for GET (default: NetworkSecurityManager session with retries)
            probe_session: Session for HEAD (default: NetworkSecurityManager session
                without retries, so one probe never exceeds probe_timeout)
        """
        self.source_url = source_url
        self.download_timeout = download_timeout
        self.probe_timeout = probe_timeout
        self.require_https = require_https
        self.session = session or NetworkSecurityManager.create_secure_session()
        self.probe_session = probe_session or NetworkSecurityManager.create_secure_session(total_retries=0)
        self.logger = logging.getLogger(__name__)

    @log_performance("fetch_holiday_csv")
    def fetch(self, url: Optional[str] = None) -> FetchResult:
        """Download the holiday CSV.

        Raises:
            NetworkError: connection failure, timeout or non-2xx status
        """
        target = self._validated(url)
        self.logger.info(f"祝日データを取得中: {target}")

        response = self._request(self.session, 'GET', target, self.download_timeout)

        result = FetchResult(
            content=response.content,
            etag=response.headers.get('ETag'),
            last_modified=response.headers.get('Last-Modified'),
            status_code=response.status_code
        )
        self.logger.info(f"祝日データ取得完了: {len(result.content)} bytes (ETag: {result.etag})")
        return result

    def probe(self, url: Optional[str] = None) -> Optional[str]:
        """Fetch only the current remote ETag with a HEAD request.

        Returns:
            The ETag header value, or None when the server sends none

        Raises:
            NetworkError: connection failure, timeout or non-2xx status
        """
        target = self._validated(url)
        response = self._request(self.probe_session, 'HEAD', target, self.probe_timeout)
        etag = response.headers.get('ETag')
        self.logger.debug(f"ETag確認: {target} -> {etag}")
        return etag

    def close(self):
        self.session.close()
        if self.probe_session is not self.session:
            self.probe_session.close()

    def _validated(self, url: Optional[str]) -> str:
        target = url or self.source_url
        try:
            return validate_url_input(target, require_https=self.require_https)
        except ValidationError as e:
            raise NetworkError(f"Invalid source URL: {e}", url=str(target), cause=e)

    def _request(self, session: requests.Session, method: str, url: str,
                 timeout: float) -> requests.Response:
        try:
            response = session.request(method, url, timeout=timeout, allow_redirects=True)
        except requests.exceptions.Timeout as e:
            raise ConnectionTimeoutError(url, timeout, cause=e)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Failed to reach holiday data source: {e}",
                               url=url, timeout=timeout, cause=e)

        if not 200 <= response.status_code < 300:
            raise NetworkError(
                f"HTTP error from holiday data source: {response.status_code} {response.reason}",
                url=url,
                timeout=timeout,
                status_code=response.status_code
            )

        return response
