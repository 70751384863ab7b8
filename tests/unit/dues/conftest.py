"""
Unit Test Fixtures for Dues Service

Services wired to the in-memory repository, recording collaborators and a
fixed clock.
"""

import pytest

from microservices.dues_service.dues_service import DuesService
from microservices.dues_service.onboarding_service import OnboardingService
from microservices.dues_service.overdue_sweep import OverdueSweepService
from microservices.dues_service.payer_service import PayerService


@pytest.fixture
def shared_deps(mock_event_bus, mock_email, clock):
    return {"event_bus": mock_event_bus, "email_client": mock_email, "clock": clock}


@pytest.fixture
def dues_service(mock_repository, shared_deps):
    return DuesService(mock_repository, **shared_deps)


@pytest.fixture
def payer_service(mock_repository, mock_processor, shared_deps):
    return PayerService(mock_repository, processor=mock_processor, **shared_deps)


@pytest.fixture
def sweep_service(mock_repository, shared_deps):
    return OverdueSweepService(mock_repository, **shared_deps)


@pytest.fixture
def onboarding_service(mock_repository, mock_processor, dues_service, shared_deps):
    return OnboardingService(
        mock_repository,
        dues_service=dues_service,
        processor=mock_processor,
        **shared_deps,
    )
