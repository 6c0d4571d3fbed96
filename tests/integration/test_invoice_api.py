"""
Integration tests for invoice API endpoints.

Tests extraction, total finding and amount parsing through the HTTP layer,
including error responses.
"""
import pytest
from fastapi.testclient import TestClient

from invoicexl.config import get_settings


class TestExtractEndpoint:
    """Tests for POST /api/v1/invoices/extract."""

    def test_extract_from_text(self, client: TestClient, sample_invoice_text: str):
        """Test full extraction from invoice text alone."""
        response = client.post("/api/v1/invoices/extract", json={"text": sample_invoice_text})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "valid"
        assert data["totals"]["total_cents"] == 13731
        assert data["totals"]["subtotal_cents"] == 12714
        assert data["totals"]["tax_cents"] == 1017
        assert len(data["line_items"]) == 2
        assert data["line_items"][1]["correction_applied"] == "catch_weight"
        assert data["confidence"]["score"] == 100
        assert data["confidence"]["is_valid"] is True
        assert data["debug"] == {}

    def test_extract_with_debug(self, client: TestClient, sample_invoice_text: str):
        """Test debug output is included on request."""
        response = client.post(
            "/api/v1/invoices/extract",
            json={"text": sample_invoice_text, "options": {"include_debug": True}},
        )

        assert response.status_code == 200
        debug = response.json()["debug"]
        assert debug["run_id"]
        assert debug["total_finder"]["total_cents"] == 13731

    def test_extract_with_supplied_line_items(self, client: TestClient):
        """Test caller-supplied line items and a synthetic adjustment."""
        response = client.post(
            "/api/v1/invoices/extract",
            json={
                "text": "SUBTOTAL 100.00\nINVOICE TOTAL 115.00",
                "line_items": [
                    {
                        "description": "WIDGET",
                        "quantity": "1",
                        "unit_price": "100.00",
                        "line_total_cents": 10000,
                    },
                ],
            },
        )

        assert response.status_code == 200
        data = response.json()
        synthetic = [a for a in data["adjustments"] if a["is_synthetic"]]
        assert len(synthetic) == 1
        assert synthetic[0]["amount_cents"] == 1500
        assert synthetic[0]["category"] == "fee"

    def test_extract_with_salvage_disabled(self, client: TestClient):
        """Test that disabling salvage leaves a failed invoice for review."""
        response = client.post(
            "/api/v1/invoices/extract",
            json={
                "text": "SUBTOTAL 100.00\nGROUP TOTAL 40.00\nINVOICE TOTAL 108.00",
                "options": {"enable_salvage": False},
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["totals"]["total_cents"] == 10800
        assert data["state"] == "totals_checked"
        assert data["needs_review"] is True


class TestExtractErrors:
    """Tests for extraction error responses."""

    def test_empty_text(self, client: TestClient):
        """Test whitespace-only text is rejected."""
        response = client.post("/api/v1/invoices/extract", json={"text": "   \n "})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] is True
        assert data["error_code"] == "IXL-101"

    def test_text_too_large(self, client: TestClient, monkeypatch: pytest.MonkeyPatch):
        """Test text over the configured limit is rejected."""
        monkeypatch.setenv("MAX_TEXT_CHARS", "10")
        get_settings.cache_clear()

        response = client.post("/api/v1/invoices/extract", json={"text": "INVOICE TOTAL 108.00"})

        assert response.status_code == 413
        data = response.json()
        assert data["error_code"] == "IXL-102"
        assert data["details"]["max_size"] == 10

    def test_missing_text(self, client: TestClient):
        """Test payload validation errors use the InvoiceXL format."""
        response = client.post("/api/v1/invoices/extract", json={})

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "IXL-100"
        assert any("text" in error for error in data["details"]["errors"])

    def test_invalid_layout_hints(self, client: TestClient):
        """Test negative line numbers are rejected."""
        response = client.post(
            "/api/v1/invoices/extract",
            json={"text": "INVOICE TOTAL 108.00", "layout_hints": {"totals_start_line": -1}},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "IXL-100"


class TestTotalEndpoint:
    """Tests for POST /api/v1/invoices/total."""

    def test_group_total_not_elected(self, client: TestClient):
        """Test the finder elects the invoice total over a group total."""
        response = client.post(
            "/api/v1/invoices/total",
            json={"text": "SUBTOTAL 100.00\nGROUP TOTAL 40.00\nINVOICE TOTAL 108.00"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["total_cents"] == 10800
        assert data["used_group_fallback"] is False
        assert "label_adjacency" in data["strategies"]
        assert data["top_groups"][0]["value_cents"] == 10800

    def test_group_fallback(self, client: TestClient):
        """Test a group total is used only as a capped last resort."""
        response = client.post("/api/v1/invoices/total", json={"text": "GROUP TOTAL 40.00"})

        data = response.json()
        assert data["total_cents"] == 4000
        assert data["used_group_fallback"] is True
        assert data["confidence"] == 20

    def test_empty_text(self, client: TestClient):
        response = client.post("/api/v1/invoices/total", json={"text": ""})

        assert response.status_code == 422
        assert response.json()["error_code"] == "IXL-101"


class TestAmountsEndpoint:
    """Tests for POST /api/v1/amounts/parse."""

    def test_parse_amounts(self, client: TestClient):
        """Test mixed printed forms parse to signed cents."""
        response = client.post(
            "/api/v1/amounts/parse",
            json={"values": ["$1,234.56", "(5.00)", "abc", 12.5]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 4
        assert [r["cents"] for r in data["results"]] == [123456, -500, 0, 1250]
        assert [r["is_valid"] for r in data["results"]] == [True, True, False, True]
        assert data["results"][1]["is_negative"] is True

    def test_empty_list_rejected(self, client: TestClient):
        response = client.post("/api/v1/amounts/parse", json={"values": []})

        assert response.status_code == 422
        assert response.json()["error_code"] == "IXL-100"
