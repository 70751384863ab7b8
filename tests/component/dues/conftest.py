"""
Component Test Fixtures for Dues Service

FastAPI TestClient over the dues app with every service wired to the
in-memory mocks. The lifespan is not run, so no database or NATS
connection is attempted.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from microservices.dues_service.dues_service import DuesService
from microservices.dues_service.factory import DuesServices
from microservices.dues_service.onboarding_service import OnboardingService
from microservices.dues_service.overdue_sweep import OverdueSweepService
from microservices.dues_service.payer_service import PayerService

CRON_SECRET = "test-cron-secret"


@pytest.fixture
def services(mock_repository, mock_processor, mock_email, mock_event_bus, clock):
    shared = dict(event_bus=mock_event_bus, email_client=mock_email, clock=clock)
    dues = DuesService(mock_repository, **shared)
    return DuesServices(
        repository=mock_repository,
        dues=dues,
        payer=PayerService(mock_repository, processor=mock_processor, **shared),
        sweep=OverdueSweepService(mock_repository, **shared),
        onboarding=OnboardingService(mock_repository, dues_service=dues, processor=mock_processor, **shared),
    )


@pytest.fixture
def cron_secret():
    return CRON_SECRET


@pytest.fixture
def client(services, cron_secret):
    """Create FastAPI test client with mocked dependencies"""
    with patch("microservices.dues_service.main.services", services), \
         patch("microservices.dues_service.main.event_bus", None):

        from microservices.dues_service.main import app, get_cron_secret

        app.dependency_overrides = {get_cron_secret: lambda: cron_secret}
        yield TestClient(app, raise_server_exceptions=False)
        app.dependency_overrides = {}


@pytest.fixture
def uninitialized_client():
    """Client for an app whose lifespan never ran"""
    with patch("microservices.dues_service.main.services", None):
        from microservices.dues_service.main import app

        app.dependency_overrides = {}
        yield TestClient(app, raise_server_exceptions=False)
