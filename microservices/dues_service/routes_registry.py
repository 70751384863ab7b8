"""
Dues Service Routes Registry

Defines service metadata and routes exposed by the dues API.
"""

SERVICE_METADATA = {
    "service_name": "dues_service",
    "version": "1.0.0",
    "tags": ["v1", "dues", "billing", "membership", "microservice"],
    "capabilities": [
        "payment_recording",
        "payment_reconciliation",
        "payer_assignment",
        "billing_frequency",
        "overdue_sweep",
        "onboarding",
        "manual_payment_switch",
        "overdue_report",
        "eligibility_report",
    ],
}

BASE_PATH = "/api/v1/dues"

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": f"{BASE_PATH}/health", "methods": ["GET"], "description": "Service health check (API v1)"},

    # Service info
    {"path": f"{BASE_PATH}/info", "methods": ["GET"], "description": "Service information"},

    # Payments
    {"path": f"{BASE_PATH}/payments", "methods": ["POST"], "description": "Record payment"},
    {"path": f"{BASE_PATH}/payments/preview", "methods": ["POST"], "description": "Preview payment"},

    # Memberships
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}", "methods": ["GET"], "description": "Get membership"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/payer", "methods": ["POST"], "description": "Assign payer"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/payer", "methods": ["DELETE"], "description": "Remove payer"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/billing-frequency", "methods": ["POST"], "description": "Change billing frequency"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/agreement", "methods": ["POST"], "description": "Mark agreement signed"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/switch-to-manual", "methods": ["POST"], "description": "Switch to manual payments"},

    # Reports
    {"path": f"{BASE_PATH}/organizations/{{organization_id}}/reports/overdue", "methods": ["GET"], "description": "Overdue memberships report"},
    {"path": f"{BASE_PATH}/organizations/{{organization_id}}/reports/approaching-eligibility", "methods": ["GET"], "description": "Approaching eligibility report"},

    # Onboarding
    {"path": f"{BASE_PATH}/onboarding", "methods": ["POST"], "description": "Orchestrate onboarding"},
    {"path": f"{BASE_PATH}/onboarding/{{invite_id}}/payments", "methods": ["POST"], "description": "Record onboarding payment"},

    # Scheduled jobs
    {"path": f"{BASE_PATH}/cron/overdue-sweep", "methods": ["POST"], "description": "Run overdue sweep"},
]


def get_route_summary():
    """Route metadata for service discovery"""
    route_paths = [r["path"] for r in ROUTES]
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join(route_paths[:10]),
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "BASE_PATH", "get_route_summary"]
