# Common pytest fixtures.
# The project root (directory that contains `dojo_publisher/`) is put on sys.path
# so the tests also run from a plain checkout.

import os
import sys
import pytest

PROJECT_ROOT = os.getenv("PROJECT_ROOT") or os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from dojo_publisher.client import DefectDojoClient  # noqa: E402
from dojo_publisher.retry import RetryExecutor  # noqa: E402


@pytest.fixture()
def dojo_base_url():
    return "https://dojo.test"


@pytest.fixture()
def dojo_token(monkeypatch):
    # Code paths that read DEFECTDOJO_TOKEN must not fail
    monkeypatch.setenv("DEFECTDOJO_TOKEN", "test-token")
    return "test-token"


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def retry(sleeps):
    # Records backoff delays instead of sleeping
    return RetryExecutor(sleep=sleeps.append)


@pytest.fixture()
def client(dojo_base_url, dojo_token, retry):
    c = DefectDojoClient(dojo_base_url, dojo_token, connect_timeout=1, read_timeout=1, retry=retry)
    yield c
    c.close()


@pytest.fixture()
def report(tmp_path):
    fp = tmp_path / "report.json"
    fp.write_text('{"site": []}')
    return fp
