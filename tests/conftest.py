"""Shared test setup.

Custom resource handlers import their bundle siblings (cfn_response,
dns_records) as top-level modules, the way Lambda loads them.
"""
import sys
from pathlib import Path

import pytest

CUSTOM_RESOURCES_DIR = Path(__file__).resolve().parent.parent / "assets" / "custom_resources"
if str(CUSTOM_RESOURCES_DIR) not in sys.path:
    sys.path.insert(0, str(CUSTOM_RESOURCES_DIR))


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so no test can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-west-2")
