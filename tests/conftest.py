"""Shared pytest fixtures for source-tracking tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from source_tracking.config import Config
from source_tracking.tracking.errors import RemoteQueryError
from source_tracking.tracking.models import SourceMemberRecord
from source_tracking.tracking.remote_ledger import clear_instances

load_dotenv()

ORG_ID = "00D000000000001"
USERNAME = "dev@example.com"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live org",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live org"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeOrgClient:
    """Minimal OrgClient replacement for testing.

    Holds remote change records in memory and filters them by revision the
    way the real query does.
    """

    def __init__(self, records: list[SourceMemberRecord] | None = None):
        self.records: list[SourceMemberRecord] = list(records or [])
        self.calls: list[dict] = []
        self.fail_with: Exception | None = None
        self.config = Config(
            instance_url="https://example.my.salesforce.com",
            username=USERNAME,
            access_token="token",
            org_id=ORG_ID,
        )

    def add(
        self,
        member_type: str,
        member_name: str,
        revision: int,
        deleted: bool = False,
    ) -> None:
        """Record a remote change at *revision*."""
        self.records.append(
            SourceMemberRecord(
                member_type=member_type,
                member_name=member_name,
                revision_counter=revision,
                is_name_obsolete=deleted,
            )
        )

    def query_source_members(
        self,
        from_revision: int | None = None,
        to_revision: int | None = None,
    ) -> list[SourceMemberRecord]:
        self.calls.append(
            {"from_revision": from_revision, "to_revision": to_revision}
        )
        if self.fail_with is not None:
            raise self.fail_with
        return [
            r
            for r in self.records
            if (from_revision is None or r.revision_counter > from_revision)
            and (to_revision is None or r.revision_counter <= to_revision)
        ]

    def validate_connection(self) -> str:
        return "60.0"


def write_file(root: Path, relative: str, content: str = "") -> Path:
    """Create *relative* under *root* with *content*, making parents."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _reset_remote_registry():
    """Remote ledgers are process-wide singletons; isolate every test."""
    clear_instances()
    yield
    clear_instances()


@pytest.fixture
def fake_client() -> FakeOrgClient:
    return FakeOrgClient()


@pytest.fixture
def failing_client() -> FakeOrgClient:
    client = FakeOrgClient()
    client.fail_with = RemoteQueryError("boom", status_code=500)
    return client


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory with an empty ``force-app`` package."""
    root = tmp_path / "project"
    (root / "force-app" / "main" / "default").mkdir(parents=True)
    return root


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        instance_url="https://example.my.salesforce.com",
        username=USERNAME,
        access_token="secret-token",
        org_id=ORG_ID,
    )


@pytest.fixture
def mock_tracker():
    """Create a mock SourceTracking instance for tool tests."""
    from source_tracking.tracking.orchestrator import SourceTracking

    return MagicMock(spec=SourceTracking)


@pytest.fixture
def write():
    """Expose ``write_file`` to tests as a fixture."""
    return write_file
