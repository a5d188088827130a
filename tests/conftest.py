"""
Pytest configuration and fixtures.

This module configures pytest behavior for different test types:
- Integration tests: Skipped unless the source Redmine is configured, and
  failed on any warnings from the code under test
- Unit tests: Run against an in-memory stand-in for the Redmine REST API

Each FakeRedmine exposes a ``session`` mock whose ``request`` method routes
calls by HTTP method and path, so the real RedmineClient, reader, mapper and
writer run unchanged against it.
"""

from __future__ import annotations

import json as jsonlib
import logging
import os
import re
from typing import TYPE_CHECKING, Any
from unittest.mock import Mock
from urllib.parse import urlparse

import pytest
from typing_extensions import override

from redmine_issue_transfer.models import TargetSettings, TransferConfig, TransferOptions
from redmine_issue_transfer.orchestrator import TransferOrchestrator

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

SOURCE_URL = "https://source.example"
TARGET_URL = "https://target.example"

INTEGRATION_ENV_VARS = ("REDMINE_TEST_SOURCE_URL", "REDMINE_TEST_SOURCE_VERSION_ID")

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Custom logging handler to capture warnings during integration tests."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        _integration_test_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def check_integration_test_env_vars(request: pytest.FixtureRequest) -> None:
    """Skip integration tests when the source Redmine to read from is not configured."""
    if request.node.get_closest_marker("integration") is None:
        return
    missing = [name for name in INTEGRATION_ENV_VARS if not os.environ.get(name)]
    if missing:
        pytest.skip(f"Integration test requires environment variables: {', '.join(missing)}")


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(request: pytest.FixtureRequest) -> Generator[None]:
    """
    Automatically fail integration tests if any WARNING level logs are emitted from the code under test.

    A transfer against a healthy source is expected to run without warnings; in
    the test context every logger.warning() or logger.error() is treated as a failure.
    """
    if request.node.get_closest_marker("integration") is None:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []

    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Generator[None]:  # type: ignore[misc]
    """Mark a passed integration test as failed if warnings were logged during its call phase."""
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        warning_records = _integration_test_warnings.pop(item.nodeid, [])
        if warning_records:
            messages = [
                f"{record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            ]
            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {msg}" for msg in messages
            )


def make_response(status_code: int = 200, json_body: Any = None, content: bytes = b"") -> Mock:
    """A requests.Response look-alike."""
    response = Mock()
    response.status_code = status_code
    response.content = content
    if json_body is None:
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        response.text = content.decode("utf-8", errors="replace")
    else:
        response.json.return_value = json_body
        response.text = jsonlib.dumps(json_body)
    return response


class FakeRedmine:
    """Minimal Redmine REST API kept in memory."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self.issues: dict[int, dict[str, Any]] = {}
        self.files: dict[str, bytes] = {}
        self.trackers: list[dict[str, Any]] = []
        self.project_trackers: dict[int, list[dict[str, Any]]] = {}
        self.statuses: list[dict[str, Any]] = []
        self.priorities: list[dict[str, Any]] = []
        self.categories: dict[int, list[dict[str, Any]]] = {}
        self.users: list[dict[str, Any]] = []
        self.uploads: dict[str, tuple[str, bytes]] = {}
        self.attached: dict[int, list[dict[str, Any]]] = {}
        self.notes: dict[int, list[str]] = {}
        self.requests: list[tuple[str, str, dict[str, Any]]] = []
        self._queued: dict[tuple[str, str], list[Any]] = {}
        self._always: dict[tuple[str, str], Any] = {}
        self._next_id = 1000

        self.session = Mock()
        self.session.request.side_effect = self.request

    # -- test helpers -------------------------------------------------------

    def add_issue(
        self,
        issue_id: int,
        *,
        parent_id: int | None = None,
        attachments: list[dict[str, Any]] | None = None,
        journals: list[dict[str, Any]] | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        issue: dict[str, Any] = {
            "id": issue_id,
            "subject": f"Issue {issue_id}",
            "description": f"Description of {issue_id}",
            "tracker": {"id": 10, "name": "Ошибка"},
            "status": {"id": 20, "name": "Новая"},
            "priority": {"id": 30, "name": "Нормальный"},
            "done_ratio": 0,
            "attachments": attachments or [],
            "journals": journals or [],
        }
        if parent_id is not None:
            issue["parent"] = {"id": parent_id}
        issue.update(fields)
        self.issues[issue_id] = issue
        return issue

    def add_file(self, name: str, content: bytes) -> dict[str, Any]:
        """Register downloadable content and return a matching attachment record."""
        url = f"{self.base_url}/attachments/download/{len(self.files) + 1}/{name}"
        self.files[url] = content
        return {
            "id": len(self.files),
            "filename": name,
            "content_url": url,
            "content_type": "text/plain",
            "description": f"About {name}",
        }

    def fail(self, method: str, path: str, *outcomes: int | Exception) -> None:
        """Answer the next calls with these statuses or exceptions, then behave normally."""
        self._queued.setdefault((method, path), []).extend(outcomes)

    def fail_always(self, method: str, path: str, outcome: int | Exception) -> None:
        self._always[(method, path)] = outcome

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [kwargs for m, p, kwargs in self.requests if m == method and p == path]

    # -- dispatch -----------------------------------------------------------

    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: Any = None,
    ) -> Mock:
        path = urlparse(url).path
        self.requests.append((method, path, {"params": params, "json": json, "data": data, "headers": headers}))

        key = (method, path)
        outcome = self._queued[key].pop(0) if self._queued.get(key) else self._always.get(key)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return make_response(outcome, {"errors": [f"forced {outcome}"]})

        if url in self.files:
            return make_response(200, content=self.files[url])
        return self._route(method, path, params or {}, json or {}, data)

    def _route(  # noqa: PLR0911, PLR0912 - one branch per endpoint
        self, method: str, path: str, params: dict[str, Any], body: dict[str, Any], data: bytes | None
    ) -> Mock:
        if method == "GET" and path == "/issues.json":
            offset, limit = int(params.get("offset", 0)), int(params.get("limit", 25))
            page = list(self.issues.values())[offset : offset + limit]
            return make_response(200, {"issues": page, "total_count": len(self.issues)})

        if match := re.fullmatch(r"/issues/(\d+)\.json", path):
            issue = self.issues.get(int(match.group(1)))
            if issue is None:
                return make_response(404, {"errors": ["not found"]})
            if method == "GET":
                return make_response(200, {"issue": issue})
            if method == "PUT":
                return self._update_issue(issue, body["issue"])

        if method == "POST" and path == "/issues.json":
            self._next_id += 1
            issue = {"id": self._next_id, **body["issue"]}
            self.issues[self._next_id] = issue
            return make_response(201, {"issue": issue})

        if method == "POST" and path == "/uploads.json":
            token = f"token-{len(self.uploads) + 1}"
            self.uploads[token] = (params["filename"], data or b"")
            return make_response(201, {"upload": {"id": len(self.uploads), "token": token}})

        for pattern, records, key in (
            (r"/trackers/(\d+)\.json", self.trackers, "tracker"),
            (r"/issue_statuses/(\d+)\.json", self.statuses, "issue_status"),
            (r"/users/(\d+)\.json", self.users, "user"),
        ):
            if match := re.fullmatch(pattern, path):
                record = next((r for r in records if r["id"] == int(match.group(1))), None)
                if record is None:
                    return make_response(404, {"errors": ["not found"]})
                return make_response(200, {key: record})

        if path == "/trackers.json":
            return make_response(200, {"trackers": self.trackers})
        if path == "/issue_statuses.json":
            return make_response(200, {"issue_statuses": self.statuses})
        if path == "/enumerations/issue_priorities.json":
            return make_response(200, {"issue_priorities": self.priorities})
        if path == "/users.json":
            name = params.get("name")
            return make_response(200, {"users": [u for u in self.users if name in (None, u["login"])]})

        if match := re.fullmatch(r"/projects/(\d+)\.json", path):
            project_id = int(match.group(1))
            return make_response(200, {"project": {"id": project_id, "trackers": self.project_trackers.get(project_id, [])}})

        if match := re.fullmatch(r"/projects/(\d+)/issue_categories\.json", path):
            categories = self.categories.setdefault(int(match.group(1)), [])
            if method == "GET":
                return make_response(200, {"issue_categories": categories})
            category = {"id": 500 + len(categories), "name": body["issue_category"]["name"]}
            categories.append(category)
            return make_response(201, {"issue_category": category})

        return make_response(404, {"errors": ["no route"]})

    def _update_issue(self, issue: dict[str, Any], fields: dict[str, Any]) -> Mock:
        if "parent_issue_id" in fields:
            issue["parent"] = {"id": fields["parent_issue_id"]}
        if "uploads" in fields:
            self.attached.setdefault(issue["id"], []).extend(fields["uploads"])
        if "notes" in fields:
            self.notes.setdefault(issue["id"], []).append(fields["notes"])
        return make_response(204, content=b"")


@pytest.fixture
def config() -> TransferConfig:
    return TransferConfig(
        source_url=SOURCE_URL,
        source_api_key="source-key",
        source_version_id=7,
        target_project_id=3,
        target_version_id=11,
        fallback_assignee_id=5,
    )


@pytest.fixture
def target_settings() -> TargetSettings:
    return TargetSettings(host_name="target.example", protocol="https", api_key="target-key")


@pytest.fixture
def options() -> TransferOptions:
    return TransferOptions(backoff_seconds=0.0)


@pytest.fixture
def source() -> FakeRedmine:
    fake = FakeRedmine(SOURCE_URL)
    fake.trackers = [{"id": 10, "name": "Ошибка"}, {"id": 11, "name": "Задача"}]
    fake.statuses = [{"id": 20, "name": "Новая"}, {"id": 21, "name": "Closed"}]
    fake.priorities = [{"id": 30, "name": "Нормальный"}, {"id": 31, "name": "Высокий"}]
    return fake


@pytest.fixture
def target() -> FakeRedmine:
    fake = FakeRedmine(TARGET_URL)
    fake.trackers = [{"id": 1, "name": "Bug"}, {"id": 2, "name": "Task"}, {"id": 3, "name": "Feature"}]
    fake.project_trackers = {3: [{"id": 1, "name": "Bug"}, {"id": 2, "name": "Task"}]}
    fake.statuses = [
        {"id": 1, "name": "New", "is_closed": False},
        {"id": 2, "name": "In Progress", "is_closed": False},
        {"id": 5, "name": "Closed", "is_closed": True},
    ]
    fake.priorities = [
        {"id": 1, "name": "Low"},
        {"id": 2, "name": "Normal", "is_default": True},
        {"id": 3, "name": "High"},
    ]
    fake.users = [{"id": 5, "login": "fallback"}, {"id": 8, "login": "jdoe"}]
    return fake


@pytest.fixture
def make_orchestrator(
    config: TransferConfig,
    target_settings: TargetSettings,
    options: TransferOptions,
    source: FakeRedmine,
    target: FakeRedmine,
) -> Callable[..., TransferOrchestrator]:
    def factory(run_options: TransferOptions | None = None) -> TransferOrchestrator:
        return TransferOrchestrator.from_settings(
            config,
            target_settings,
            run_options or options,
            source_session=source.session,
            target_session=target.session,
        )

    return factory
