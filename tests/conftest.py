"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (FastAPI TestClient, mocked dependencies)
    - unit/       : Unit tests (pure functions and services over in-memory mocks)
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("NATS_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.component.mocks import (
    MockDuesRepository,
    MockEmailClient,
    MockEventBus,
    MockPaymentProcessor,
)
from tests.fixtures import (
    NOW,
    fixed_clock,
    make_member,
    make_membership,
    make_organization,
    make_plan,
)


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "component: marks tests as component tests")


# =============================================================================
# Mocks
# =============================================================================

@pytest.fixture
def mock_repository() -> MockDuesRepository:
    return MockDuesRepository()


@pytest.fixture
def mock_processor() -> MockPaymentProcessor:
    return MockPaymentProcessor()


@pytest.fixture
def mock_email() -> MockEmailClient:
    return MockEmailClient()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def clock():
    return fixed_clock(NOW)


# =============================================================================
# Seed Data
# =============================================================================

@pytest.fixture
def organization(mock_repository):
    return mock_repository.add_organization(make_organization())


@pytest.fixture
def plan(mock_repository, organization):
    return mock_repository.add_plan(make_plan(organization.organization_id))


@pytest.fixture
def member(mock_repository, organization):
    return mock_repository.add_member(make_member(organization.organization_id))


@pytest.fixture
def membership(mock_repository, organization, member, plan):
    return mock_repository.add_membership(
        make_membership(organization.organization_id, member.member_id, plan.plan_id)
    )


@pytest.fixture
def seed(mock_repository, organization, plan):
    """Add a member with a membership; overrides apply to the membership"""

    def _seed(member_overrides=None, **membership_overrides):
        new_member = mock_repository.add_member(
            make_member(organization.organization_id, **(member_overrides or {}))
        )
        new_membership = mock_repository.add_membership(
            make_membership(
                organization.organization_id,
                new_member.member_id,
                plan.plan_id,
                **membership_overrides,
            )
        )
        return new_member, new_membership

    return _seed
