"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from datetime import datetime, timezone

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Lifespan (DB connect) does not run."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """The OTP rate limiter is process-global; isolate tests from each other."""
    from utils.rate_limiter import rate_limiter
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def rent_details_payload():
    return {
        "scenario": "rent",
        "landlord_name": "Asha Rao",
        "tenant_name": "Vikram Shah",
        "property_address": "12 MG Road, Bengaluru",
        "rent_amount": 25000,
        "rent_period": "October 2026",
        "landlord_mobile_number": "9876543210",
    }


@pytest.fixture
def make_invoice_doc():
    """Factory for a stored invoice document as Motor would return it (tz-aware datetimes)."""
    def _make(**overrides):
        now = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
        doc = {
            "id": "inv-internal-1",
            "public_invoice_id": "QB-RENT-AB12CD34",
            "invoice_number": "RENT-202610-CD34",
            "user_id": "user-1",
            "details": {
                "scenario": "rent",
                "landlord_name": "Asha Rao",
                "tenant_name": "Vikram Shah",
                "property_address": "12 MG Road, Bengaluru",
                "rent_amount": 25000.0,
                "rent_period": "October 2026",
                "landlord_mobile_number": "9876543210",
                "invoice_date": now,
            },
            "subtotal": 25000.0,
            "tax_amount": 0.0,
            "grand_total": 25000.0,
            "signature_token": "a1b2c3d4e5f6",
            "signature_status": "awaiting_signature",
            "signature_requested_at": now,
            "signed_at": None,
            "signature_data_url": None,
            "created_at": now,
            "updated_at": now,
            "view_count": 0,
        }
        doc.update(overrides)
        return doc
    return _make


@pytest.fixture
def auth_headers():
    """Bearer header for user-1, signed with the service's JWT settings."""
    from auth import create_access_token
    token = create_access_token({"user_id": "user-1", "email": "owner@example.com"})
    return {"Authorization": f"Bearer {token}"}
