"""Thin Redmine REST client shared by the source reader and the target writer."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import utils

if TYPE_CHECKING:
    from .models import TargetSettings, TransferConfig, TransferOptions

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

API_KEY_HEADER: Final[str] = "X-Redmine-API-Key"
USER_AGENT: Final[str] = "redmine-issue-transfer"
DEFAULT_TIMEOUT: Final[tuple[float, float]] = (30.0, 60.0)
RETRY_STATUSES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
RETRY_METHODS: Final[frozenset[str]] = frozenset({"GET"})
MAX_LOGGED_BODY: Final[int] = 500

SOURCE_KEY_ENV_VAR: Final[str] = "REDMINE_SOURCE_API_KEY"
TARGET_KEY_ENV_VAR: Final[str] = "REDMINE_TARGET_API_KEY"
_DEFAULT_SOURCE_KEY_PASS_PATH: Final[str] = "redmine/source/api_key"
_DEFAULT_TARGET_KEY_PASS_PATH: Final[str] = "redmine/target/api_key"


class ResponseKind(Enum):
    """Coarse classification of an HTTP status code."""

    SUCCESS = "success"
    CLIENT_ERROR = "client error"
    SERVER_ERROR = "server error"
    UNEXPECTED = "unexpected status"


def classify_status(status_code: int) -> ResponseKind:
    if 200 <= status_code < 300:
        return ResponseKind.SUCCESS
    if 400 <= status_code < 500:
        return ResponseKind.CLIENT_ERROR
    if 500 <= status_code < 600:
        return ResponseKind.SERVER_ERROR
    return ResponseKind.UNEXPECTED


def describe_failure(action: str, response: requests.Response) -> str:
    """Log-ready description of a failed call, distinct per response kind."""
    body = (response.text or "")[:MAX_LOGGED_BODY]
    kind = classify_status(response.status_code)
    if kind is ResponseKind.CLIENT_ERROR:
        return f"{action} rejected by server ({kind.value} {response.status_code}): {body}"
    if kind is ResponseKind.SERVER_ERROR:
        return f"{action} failed on server ({kind.value} {response.status_code}): {body}"
    return f"{action} returned {kind.value} {response.status_code}: {body}"


def get_source_api_key(pass_path: str | None = None) -> str | None:
    """Get the source API key from a pass path, REDMINE_SOURCE_API_KEY or the default pass entry."""
    return utils.get_api_key(pass_path, SOURCE_KEY_ENV_VAR, _DEFAULT_SOURCE_KEY_PASS_PATH)


def get_target_api_key(pass_path: str | None = None) -> str | None:
    """Get the caller's target API key from a pass path, REDMINE_TARGET_API_KEY or the default pass entry."""
    return utils.get_api_key(pass_path, TARGET_KEY_ENV_VAR, _DEFAULT_TARGET_KEY_PASS_PATH)


class RedmineClient:
    """Authenticated access to one Redmine instance.

    Every request carries the API key header and the same timeout. GETs are
    retried on transient failures; POST and PUT are sent exactly once since a
    replay would create duplicate issues, notes or uploads.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        session: requests.Session | None = None,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
    ) -> None:
        self.base_url: str = base_url.rstrip("/")
        self._api_key: str = api_key
        self._session: requests.Session = session or requests.Session()
        self._timeout: tuple[float, float] = timeout

        # Only GETs are replayed; transient statuses come back as responses once retries run out
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_seconds,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=RETRY_METHODS,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def url(self, path: str) -> str:
        """Absolute URL for an API path; absolute URLs pass through unchanged."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def redact(self, text: str) -> str:
        return utils.redact(text, [self._api_key])

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {API_KEY_HEADER: self._api_key, "User-Agent": USER_AGENT}
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> requests.Response:
        return self._session.request(
            "GET", self.url(path), params=params, headers=self._headers(), timeout=self._timeout
        )

    def post(
        self,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        data: bytes | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        extra = {"Content-Type": "application/json"} if json is not None else {}
        extra.update(headers or {})
        return self._session.request(
            "POST",
            self.url(path),
            params=params,
            json=json,
            data=data,
            headers=self._headers(extra),
            timeout=self._timeout,
        )

    def put(self, path: str, *, json: dict[str, Any]) -> requests.Response:
        return self._session.request(
            "PUT",
            self.url(path),
            json=json,
            headers=self._headers({"Content-Type": "application/json", "Accept": "application/json"}),
            timeout=self._timeout,
        )


def get_source_client(
    config: TransferConfig, options: TransferOptions, session: requests.Session | None = None
) -> RedmineClient:
    """Client for the source instance, authenticated with the configured key."""
    return RedmineClient(
        config.source_url,
        config.source_api_key,
        session=session,
        timeout=options.timeout,
        max_retries=options.max_retries,
        backoff_seconds=options.backoff_seconds,
    )


def get_target_client(
    settings: TargetSettings, options: TransferOptions, session: requests.Session | None = None
) -> RedmineClient:
    """Client for the target instance, authenticated as the calling user."""
    return RedmineClient(
        settings.base_url,
        settings.api_key,
        session=session,
        timeout=options.timeout,
        max_retries=options.max_retries,
        backoff_seconds=options.backoff_seconds,
    )
