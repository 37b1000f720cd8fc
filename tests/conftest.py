import os

import pytest
from fastapi.testclient import TestClient

from scanners.av.app import app, get_scanner
from scanners.av.config import Settings, get_settings
from scanners.av.engine import ScanInvocation


class FakeScanner:
    """Stands in for clamscan; records what it was asked to scan."""

    def __init__(self, exit_code=0, stdout="", stderr="", error=None):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.calls: list[str] = []
        self.modes: list[int] = []

    async def invoke(self, path: str) -> ScanInvocation:
        self.calls.append(path)
        self.modes.append(os.stat(path).st_mode)
        return ScanInvocation(
            command_line=f'clamscan --no-summary --infected --suppress-ok-results "{path}"',
            exit_code=self.exit_code,
            stdout=self.stdout,
            stderr=self.stderr,
            error=self.error,
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def settings(upload_dir):
    return Settings(upload_dir=upload_dir, scan_timeout_seconds=5)


@pytest.fixture
def scanner():
    return FakeScanner()


@pytest.fixture
def client(settings, scanner):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_scanner] = lambda: scanner
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
