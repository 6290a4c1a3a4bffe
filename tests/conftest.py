"""
Pytest configuration and fixtures for the mailbox checker.
"""

import pytest

from helpers import make_address
from mailcheck.models import Credential


@pytest.fixture
def addresses():
    return [make_address(i) for i in range(5)]


@pytest.fixture
def credentials():
    return [Credential("id-a", "token-a", quota_limit=10), Credential("id-b", "token-b", quota_limit=10)]
