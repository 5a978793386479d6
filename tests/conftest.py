"""
Pytest configuration and shared fixtures.

This file adds the project root to the Python path so that tests can import
from the domain, repositories, services and api packages, and wires the
services over the in-memory store from fakes.py.
"""

import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest  # noqa: E402

from api.dependencies import build_commerce_services  # noqa: E402
from domain.order import ShippingAddress  # noqa: E402
from fakes import (  # noqa: E402
    FakeClock,
    InMemoryDocumentStore,
    ScriptedGateway,
    gateway_registry,
    product_doc,
)
from repositories.product_repository import PRODUCTS  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def services(store, gateway, clock):
    return build_commerce_services(store, gateway_registry(gateway), clock=clock)


@pytest.fixture
def catalog(store):
    """A small catalog: P (100/80/70), bleach, an inactive and an unpriced product."""

    store.seed(PRODUCTS, "P", product_doc("Disinfectant 5L", "100.00", "80.00", "70.00", stock=100))
    store.seed(PRODUCTS, "bleach", product_doc("Bleach 1L", "50.00", "45.00", stock=3))
    store.seed(PRODUCTS, "retired", product_doc("Old Mop", "30.00", "25.00", is_active=False))
    store.seed(PRODUCTS, "unpriced", product_doc("Mystery Tool", None, None, category="tools"))
    return store


@pytest.fixture
def address():
    return ShippingAddress(street="123 Rizal St", city="Makati", province="Metro Manila", postal_code="1200")
