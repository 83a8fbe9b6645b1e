"""
Threat Combat Test Configuration
================================

Pytest fixtures and configuration for unit tests.
"""

import os

# Settings are read once at import; keep hashing cheap and limits off
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-the-threatcombat-suite")

from types import SimpleNamespace
from uuid import uuid4

import pytest

from threatcombat.api.access.rbac import Role


@pytest.fixture
def chapter_a():
    return uuid4()


@pytest.fixture
def chapter_b():
    return uuid4()


@pytest.fixture
def make_principal():
    """Build a lightweight principal with a role and chapter."""
    def _make(role: Role, chapter_id=None):
        return SimpleNamespace(id=uuid4(), role=role, chapter_id=chapter_id)
    return _make
