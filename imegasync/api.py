"""API client for CloudImega."""

from __future__ import annotations

import logging
import mimetypes
import os
import random
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import httpx

from .config import config
from .exceptions import (
    ImegaAPIError,
    ImegaAuthenticationError,
    ImegaDownloadError,
    ImegaFileNotFoundError,
    ImegaInvalidResponseError,
    ImegaNetworkError,
    ImegaNotFoundError,
    ImegaPermissionError,
    ImegaRateLimitError,
    ImegaUploadError,
)
from .models import CloudFile, CloudFolder, FilesPage, FolderContents, User
from .utils import CHUNK_SIZE, DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_PREFIX = "/api/v1"


def _parse(factory: Callable[[Any], T], data: Any, what: str) -> T:
    """Build a model from response data, mapping malformed payloads."""
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ImegaInvalidResponseError(f"Malformed {what} response: {e!r}") from e



class ImegaClient:
    """Client for interacting with the CloudImega API."""

    def __init__(
        self,
        server_url: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        on_tokens_changed: Callable[[str | None, str | None], None] | None = None,
    ):
        """Initialize CloudImega API client.

        Args:
            server_url: Optional server URL (uses config if not provided)
            access_token: Optional session token (uses config if not provided)
            refresh_token: Optional refresh token (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
            on_tokens_changed: Optional callback(access_token, refresh_token)
                invoked after login, refresh and logout
        """
        self.server_url = (server_url or config.server_url).rstrip("/")
        self.access_token = access_token if access_token is not None else config.access_token
        self.refresh_token = (
            refresh_token if refresh_token is not None else config.refresh_token
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.on_tokens_changed = on_tokens_changed
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def is_authenticated(self) -> bool:
        """Whether a session token is available."""
        return bool(self.access_token)

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.server_url,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> ImegaClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        if not self.access_token:
            raise ImegaAuthenticationError("Not logged in")
        return {"Authorization": f"Bearer {self.access_token}"}

    def _set_tokens(self, access_token: str | None, refresh_token: str | None) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        if self.on_tokens_changed:
            self.on_tokens_changed(access_token, refresh_token)

    # =========================
    # Retry handling
    # =========================

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        # Retry on network errors and rate limits (transient failures)
        if isinstance(exception, (ImegaNetworkError, ImegaRateLimitError)):
            return True

        # Retry on server errors (5xx status codes)
        if isinstance(exception, ImegaAPIError) and exception.status_code is not None:
            return 500 <= exception.status_code < 600

        # Don't retry on client errors (authentication, permission, etc.)
        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _map_http_error(self, response: httpx.Response) -> ImegaAPIError:
        """Convert an error response into the matching exception.

        Args:
            response: HTTP response with a 4xx/5xx status

        Returns:
            Exception to raise
        """
        status_code = response.status_code

        if status_code == 401:
            return ImegaAuthenticationError(
                "Invalid or expired session", status_code=status_code
            )
        elif status_code == 403:
            return ImegaPermissionError(
                "Access forbidden - check your permissions", status_code=status_code
            )
        elif status_code == 404:
            return ImegaNotFoundError("Resource not found", status_code=status_code)
        elif status_code == 429:
            return ImegaRateLimitError(
                "Rate limit exceeded - please try again later", status_code=status_code
            )

        error_msg = f"API request failed with status {status_code}"
        # Try to extract more details from response body
        try:
            error_data = response.json()
        except ValueError:
            error_data = None
        if isinstance(error_data, dict):
            msg = (
                error_data.get("reason")
                or error_data.get("message")
                or error_data.get("error")
            )
            if msg:
                error_msg = f"{error_msg}: {msg}"
        return ImegaAPIError(error_msg, status_code=status_code)

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        return self._calculate_retry_delay(attempt)

    def _with_retries(self, send: Callable[[], httpx.Response]) -> httpx.Response:
        """Send a request, retrying transient failures with backoff.

        Args:
            send: Callable performing one attempt

        Returns:
            Successful response

        Raises:
            ImegaAPIError: If the request fails after all retries
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = send()
            except httpx.RequestError as e:
                error: ImegaAPIError = ImegaNetworkError(f"Network error: {e}")
                if self._should_retry(error, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug("Network error, retrying in %.1fs: %s", delay, e)
                    time.sleep(delay)
                    continue
                raise error from e

            if response.is_success:
                return response

            response.read()
            error = self._map_http_error(response)
            if self._should_retry(error, attempt):
                delay = self._retry_after(response, attempt)
                logger.debug(
                    "Request failed with %s, retrying in %.1fs",
                    response.status_code,
                    delay,
                )
                time.sleep(delay)
                continue
            raise error

        raise ImegaAPIError("Request failed after all retry attempts")

    def _with_session_refresh(self, call: Callable[[], T]) -> T:
        """Run an authenticated call, refreshing an expired session once.

        Args:
            call: Callable performing the authenticated operation

        Returns:
            Result of the call

        Raises:
            ImegaAuthenticationError: If the session cannot be refreshed
        """
        try:
            return call()
        except ImegaAuthenticationError:
            if not self.refresh_token:
                raise
            logger.debug("Session expired, refreshing token")
            self.refresh_session()
            return call()

    def _request(
        self,
        method: str,
        endpoint: str,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path below /api/v1
            authenticated: Whether to send the session token
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data ({} for empty responses)

        Raises:
            ImegaAPIError: If the request fails after all retries
        """
        url = f"{API_PREFIX}/{endpoint.lstrip('/')}"
        client = self._get_client()

        def _once() -> Any:
            headers = self._auth_headers() if authenticated else {}
            response = self._with_retries(
                lambda: client.request(method, url, headers=headers, **kwargs)
            )
            if not response.content:
                return {}
            content_type = response.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                raise ImegaInvalidResponseError(
                    f"Unexpected response type: {content_type}"
                )
            try:
                return response.json()
            except ValueError as e:
                raise ImegaInvalidResponseError(
                    "Invalid JSON response from server"
                ) from e

        if not authenticated:
            return _once()
        return self._with_session_refresh(_once)

    # =========================
    # Authentication
    # =========================

    def login(self, email: str, password: str) -> User:
        """Log in and store the session tokens.

        Args:
            email: User email
            password: User password

        Returns:
            Logged-in user
        """
        data = self._request(
            "POST",
            "/auth/login",
            authenticated=False,
            json={"email": email, "password": password},
        )
        if not isinstance(data, dict):
            raise ImegaInvalidResponseError("Login response missing session token")
        access_token = data.get("accessToken") or data.get("token")
        if not access_token or "user" not in data:
            raise ImegaInvalidResponseError("Login response missing session token")
        self._set_tokens(access_token, data.get("refreshToken"))
        return _parse(User.from_api_response, data["user"], "login")

    def logout(self) -> None:
        """Forget the current session."""
        self._set_tokens(None, None)

    def refresh_session(self) -> None:
        """Exchange the refresh token for a new session.

        Raises:
            ImegaAuthenticationError: If no refresh token is available or the
                server rejects it; the session is cleared in that case
        """
        if not self.refresh_token:
            raise ImegaAuthenticationError("No refresh token available")
        try:
            data = self._request(
                "POST",
                "/auth/refresh",
                authenticated=False,
                json={"refreshToken": self.refresh_token},
            )
        except ImegaAPIError as e:
            self.logout()
            raise ImegaAuthenticationError("Session refresh failed") from e

        access_token = None
        if isinstance(data, dict):
            access_token = data.get("accessToken") or data.get("token")
        if not access_token:
            self.logout()
            raise ImegaAuthenticationError("Session refresh returned no token")
        self._set_tokens(access_token, data.get("refreshToken", self.refresh_token))

    def get_profile(self) -> User:
        """Get the logged-in user's profile."""
        return _parse(
            User.from_api_response, self._request("GET", "/auth/profile"), "profile"
        )

    def validate_session(self) -> bool:
        """Check that the stored session is still accepted.

        Invalid sessions are logged out.

        Returns:
            True if the session is valid
        """
        if not self.is_authenticated:
            return False
        try:
            self.get_profile()
        except ImegaAuthenticationError:
            self.logout()
            return False
        return True

    # =========================
    # Files and folders
    # =========================

    def list_files(
        self,
        folder_id: str | None = None,
        page: int = 1,
        per_page: int = 100,
    ) -> FilesPage:
        """List files, one page at a time.

        Args:
            folder_id: Only files in this folder (None for all)
            page: Page number (1-based)
            per_page: Page size

        Returns:
            Page of files
        """
        params: dict[str, Any] = {"page": page, "perPage": per_page}
        if folder_id is not None:
            params["folderId"] = folder_id
        return _parse(
            FilesPage.from_api_response,
            self._request("GET", "/files", params=params),
            "file list",
        )

    def get_folder_contents(self, folder_id: str) -> FolderContents:
        """Get one folder with its direct child files and folders."""
        return _parse(
            FolderContents.from_api_response,
            self._request("GET", f"/folders/{folder_id}"),
            "folder",
        )

    def get_root_folder(self) -> FolderContents:
        """Get the root folder contents."""
        return _parse(
            FolderContents.from_api_response,
            self._request("GET", "/folders/root"),
            "folder",
        )

    def create_folder(self, name: str, parent_id: str | None = None) -> CloudFolder:
        """Create a new folder.

        Args:
            name: Name of the new folder
            parent_id: ID of parent folder (None for root)

        Returns:
            Created folder
        """
        data: dict[str, Any] = {"name": name}
        if parent_id is not None:
            data["parentId"] = parent_id
        return _parse(
            CloudFolder.from_api_response,
            self._request("POST", "/folders", json=data),
            "folder",
        )

    def _detect_mime_type(self, file_path: Path) -> str:
        """Detect MIME type of a file from its extension."""
        mime_type, _ = mimetypes.guess_type(str(file_path))
        return mime_type or "application/octet-stream"

    def upload_file(self, file_path: Path, folder_id: str | None = None) -> CloudFile:
        """Upload a file to CloudImega.

        Args:
            file_path: Local path to the file
            folder_id: ID of the destination folder (None for root)

        Returns:
            Created file record

        Raises:
            ImegaFileNotFoundError: If the local file does not exist
            ImegaUploadError: If the server response is unusable
        """
        if not file_path.is_file():
            raise ImegaFileNotFoundError(str(file_path))

        content = file_path.read_bytes()
        files = {"file": (file_path.name, content, self._detect_mime_type(file_path))}
        data = {"folderId": folder_id} if folder_id is not None else None

        result = self._request("POST", "/files", files=files, data=data)
        if not isinstance(result, dict) or "id" not in result:
            raise ImegaUploadError(f"Upload of '{file_path.name}' returned no file record")
        return _parse(CloudFile.from_api_response, result, "upload")

    def download_file(
        self,
        file_id: str,
        destination: Path,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> Path:
        """Download a file.

        The content is streamed into a temporary file next to the
        destination and renamed into place, so an interrupted download never
        leaves a truncated file behind.

        Args:
            file_id: Remote file ID
            destination: Local path to write
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            Path where the file was saved
        """
        url = f"{API_PREFIX}/files/{file_id}/download"
        client = self._get_client()
        destination.parent.mkdir(parents=True, exist_ok=True)

        def _once() -> Path:
            request = client.build_request("GET", url, headers=self._auth_headers())
            response = self._with_retries(lambda: client.send(request, stream=True))
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{destination.name}.", suffix=".part", dir=destination.parent
            )
            try:
                total_size = int(response.headers.get("Content-Length", 0))
                bytes_downloaded = 0
                with os.fdopen(fd, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if progress_callback:
                            progress_callback(bytes_downloaded, total_size)
                os.replace(tmp_name, destination)
            except httpx.RequestError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise ImegaNetworkError(f"Network error during download: {e}") from e
            except OSError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise ImegaDownloadError(f"Failed to write file: {e}") from e
            finally:
                response.close()
            return destination

        return self._with_session_refresh(_once)

    def delete_file(self, file_id: str) -> None:
        """Delete a file."""
        self._request("DELETE", f"/files/{file_id}")
