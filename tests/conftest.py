"""
sastabazar Test Configuration and Fixtures

This module provides:
- Test environment variables (set before any application import)
- In-memory stores and fake gateway SDK clients
- A fully wired PaymentContainer and FastAPI TestClient
- Auth header fixtures for customer and admin callers
"""

import os
import sys

# Make the project root and the shared fakes importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test_secret_key_for_testing_only_32chars!"
os.environ["AWS_REGION"] = "ap-south-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["DYNAMODB_ORDERS_TABLE"] = "sastabazar-orders-test"
os.environ["DYNAMODB_CARTS_TABLE"] = "sastabazar-carts-test"
os.environ["DYNAMODB_PRODUCTS_TABLE"] = "sastabazar-products-test"

from typing import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from sastabazar.core.config import Settings
from sastabazar.core.dependencies import assemble_container
from sastabazar.core.security import create_access_token
from sastabazar.main import create_app
from sastabazar.services.payment_gateway import RazorpayGateway, StripeGateway

from fakes import (
    ADMIN_ID,
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
    STRIPE_WEBHOOK_SECRET,
    FakeCartStore,
    FakeOrderStore,
    FakeProductStore,
    FakeRazorpayClient,
    FakeStripeSdk,
)


# =============================================================================
# Settings and Collaborators
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        CLIENT_URL="http://localhost:5173",
        ENABLED_GATEWAYS=["razorpay", "stripe"],
        RAZORPAY_KEY_ID="rzp_test_key",
        RAZORPAY_KEY_SECRET=RAZORPAY_KEY_SECRET,
        RAZORPAY_WEBHOOK_SECRET=RAZORPAY_WEBHOOK_SECRET,
        STRIPE_SECRET_KEY="sk_test_key",
        STRIPE_PUBLISHABLE_KEY="pk_test_key",
        STRIPE_WEBHOOK_SECRET=STRIPE_WEBHOOK_SECRET,
        GATEWAY_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def order_store(cart_store, product_store) -> FakeOrderStore:
    return FakeOrderStore(cart_store, product_store)


@pytest.fixture
def cart_store() -> FakeCartStore:
    return FakeCartStore()


@pytest.fixture
def product_store() -> FakeProductStore:
    store = FakeProductStore()
    store.seed("prod_kurta", "Cotton Kurta", "999", stock=10)
    store.seed("prod_mug", "Steel Mug", "250", stock=5)
    store.seed("prod_retired", "Retired Lamp", "400", stock=3, is_active=False)
    return store


@pytest.fixture
def razorpay_client() -> FakeRazorpayClient:
    return FakeRazorpayClient()


@pytest.fixture
def stripe_sdk() -> FakeStripeSdk:
    return FakeStripeSdk()


@pytest.fixture
def razorpay_gateway(settings, razorpay_client) -> RazorpayGateway:
    return RazorpayGateway.from_settings(settings, client=razorpay_client)


@pytest.fixture
def stripe_gateway(settings, stripe_sdk) -> StripeGateway:
    return StripeGateway.from_settings(settings, sdk=stripe_sdk)


@pytest.fixture
def container(settings, order_store, cart_store, product_store, razorpay_gateway, stripe_gateway):
    return assemble_container(
        settings,
        order_db=order_store,
        cart_db=cart_store,
        product_db=product_store,
        razorpay=razorpay_gateway,
        stripe=stripe_gateway,
    )


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def app(container):
    return create_app(container=container)


@pytest.fixture
def client(app) -> Generator:
    """Synchronous test client; lifespan is not run so test logging stays intact."""
    yield TestClient(app)


# =============================================================================
# Authentication Fixtures
# =============================================================================

@pytest.fixture
def customer() -> dict:
    return {"user_id": CUSTOMER_ID, "email": "asha@example.com", "role": "customer"}


@pytest.fixture
def admin() -> dict:
    return {"user_id": ADMIN_ID, "email": "ops@example.com", "role": "admin"}


@pytest.fixture
def auth_headers() -> dict:
    token = create_access_token(CUSTOMER_ID, email="asha@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers() -> dict:
    token = create_access_token(OTHER_CUSTOMER_ID)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token(ADMIN_ID, role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def mock_dynamodb():
    """Mock boto3 DynamoDB resource; every Table() call returns the same mock table"""
    mock = MagicMock()
    mock.Table.return_value = MagicMock()
    return mock
