"""
Pytest configuration and fixtures.
"""
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from invoicexl.config import get_settings
from invoicexl.main import app


@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the API."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_invoice_text() -> str:
    """A small food-service invoice with a catch-weight item."""
    return (
        "ACME FOOD SUPPLY\n"
        "2 CS WIDGET 12345 5.00 10.00\n"
        "84 CS WIDGET 6739153 58.57 117.14\n"
        "84.000 T/WT= 84.000\n"
        "SUBTOTAL 127.14\n"
        "SALES TAX 10.17\n"
        "INVOICE TOTAL 137.31"
    )


@pytest.fixture(autouse=True)
def reset_settings():
    """Clear cached settings before and after each test for proper isolation."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
