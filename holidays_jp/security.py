"""
Security module for input validation and safe file/network access.

This module validates the URLs and file paths that come from configuration,
writes cache files atomically with restrictive permissions, and builds the
HTTP session used to reach the holiday data source.
"""

import os
import tempfile
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .error_handler import ValidationError, FileSystemError


class InputValidator:
    """
    Input validation for file paths and URLs taken from configuration.
    """

    # Maximum lengths for various inputs
    MAX_FILE_PATH_LENGTH = 1024
    MAX_URL_LENGTH = 2048

    @classmethod
    def validate_file_path(cls, file_path: Union[str, Path],
                           allow_create: bool = True,
                           require_exists: bool = False) -> Path:
        """
        Validate a file path and resolve it.

        Args:
            file_path: File path to validate
            allow_create: Whether to create missing parent directories
            require_exists: Whether the file must already exist

        Returns:
            Path: Validated and resolved file path

        Raises:
            ValidationError: If file path is invalid or unsafe
        """
        if not isinstance(file_path, (str, Path)):
            raise ValidationError(f"File path must be string or Path, got: {type(file_path)}",
                                  field="file_path", value=file_path)

        path_str = str(file_path)

        if not path_str.strip():
            raise ValidationError("File path cannot be empty", field="file_path", value=path_str)

        if len(path_str) > cls.MAX_FILE_PATH_LENGTH:
            raise ValidationError(f"File path too long: {len(path_str)} > {cls.MAX_FILE_PATH_LENGTH}",
                                  field="file_path", value=path_str)

        # Null bytes are rejected by the OS layer with an obscure error
        if '\x00' in path_str:
            raise ValidationError("File path contains null bytes", field="file_path")

        try:
            resolved_path = Path(path_str).expanduser().resolve()
        except (OSError, RuntimeError) as e:
            raise ValidationError(f"Cannot resolve file path: {e}", field="file_path", value=path_str)

        if resolved_path.exists() and resolved_path.is_dir():
            raise ValidationError(f"File path points to a directory: {resolved_path}",
                                  field="file_path", value=path_str)

        if require_exists and not resolved_path.exists():
            raise ValidationError(f"File does not exist: {resolved_path}",
                                  field="file_path", value=path_str)

        if allow_create and not resolved_path.parent.exists():
            try:
                resolved_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValidationError(f"Cannot create parent directory: {e}",
                                      field="file_path", value=path_str)

        if resolved_path.exists() and not os.access(resolved_path, os.R_OK):
            raise ValidationError(f"File not readable: {resolved_path}", field="file_path", value=path_str)

        return resolved_path

    @classmethod
    def validate_url(cls, url: str, require_https: bool = True) -> str:
        """
        Validate URL and enforce security requirements.

        Args:
            url: URL to validate
            require_https: Whether to require HTTPS protocol

        Returns:
            str: Validated URL

        Raises:
            ValidationError: If URL is invalid or insecure
        """
        if not isinstance(url, str):
            raise ValidationError(f"URL must be string, got: {type(url)}", field="url", value=url)

        url = url.strip()
        if not url:
            raise ValidationError("URL cannot be empty", field="url")

        if len(url) > cls.MAX_URL_LENGTH:
            raise ValidationError(f"URL too long: {len(url)} > {cls.MAX_URL_LENGTH}", field="url")

        parsed = urlparse(url)

        if parsed.scheme not in ['http', 'https']:
            raise ValidationError(f"Invalid URL scheme: {parsed.scheme}", field="url", value=url)

        if require_https and parsed.scheme != 'https':
            raise ValidationError(f"HTTPS required, got: {parsed.scheme}", field="url", value=url)

        suspicious_chars = ['<', '>', '"', "'", '`', ' ']
        if any(char in url for char in suspicious_chars):
            raise ValidationError(f"URL contains suspicious characters: {url}", field="url", value=url)

        if not parsed.netloc:
            raise ValidationError("URL missing hostname", field="url", value=url)

        return url


class SecureFileHandler:
    """
    File operations with restrictive permissions and atomic replacement.
    """

    SECURE_FILE_PERMISSIONS = 0o600  # rw-------
    READABLE_FILE_PERMISSIONS = 0o644  # rw-r--r--

    @classmethod
    def read_secure_file(cls, file_path: Union[str, Path]) -> str:
        """
        Read a UTF-8 text file after validating its path.

        Raises:
            ValidationError: If the path is invalid or the file is missing
            FileSystemError: If the file cannot be read or decoded
        """
        validated_path = InputValidator.validate_file_path(file_path, allow_create=False,
                                                           require_exists=True)
        try:
            return validated_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise FileSystemError(f"Cannot read file: {e}", file_path=str(validated_path), cause=e)

    @classmethod
    def write_secure_file(cls, file_path: Union[str, Path], content: str,
                          permissions: int = SECURE_FILE_PERMISSIONS) -> Path:
        """
        Write a UTF-8 text file atomically.

        The content goes to a uniquely named temp file in the same directory
        and is moved over the target with os.replace, so readers see either
        the old or the new file and concurrent writers never share a temp file.

        Returns:
            Path: The resolved path that was written

        Raises:
            ValidationError: If the path is invalid
            FileSystemError: If the file cannot be written
        """
        validated_path = InputValidator.validate_file_path(file_path, allow_create=True)
        temp_path = None

        try:
            fd, temp_name = tempfile.mkstemp(prefix=f".{validated_path.name}.", suffix=".tmp",
                                             dir=str(validated_path.parent))
            temp_path = Path(temp_name)
            with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            temp_path.chmod(permissions)
            os.replace(temp_path, validated_path)

        except OSError as e:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()
            raise FileSystemError(f"Cannot write file: {e}", file_path=str(validated_path), cause=e)

        return validated_path


def validate_file_path_input(file_path: Union[str, Path], **kwargs) -> Path:
    """Convenience function for file path validation."""
    return InputValidator.validate_file_path(file_path, **kwargs)


def validate_url_input(url: str, require_https: bool = True) -> str:
    """Convenience function for URL validation."""
    return InputValidator.validate_url(url, require_https)


class NetworkSecurityManager:
    """
    HTTP session factory with certificate verification and bounded retries.
    """

    USER_AGENT = 'holidays-jp/1.0'

    @staticmethod
    def create_secure_session(total_retries: int = 2) -> requests.Session:
        """
        Create an HTTP session with SSL verification enabled.

        Args:
            total_retries: Retries for GET on connection errors and 429/5xx.
                Use 0 for requests that must finish within a single timeout
                (the HEAD request for the ETag).

        Returns:
            requests.Session: Configured session
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=total_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update({
            'User-Agent': NetworkSecurityManager.USER_AGENT,
            'Accept': 'text/csv,text/plain,*/*',
            'Accept-Encoding': 'gzip, deflate',
        })

        session.verify = True

        return session
