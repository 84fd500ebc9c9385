from __future__ import annotations

import json
from unittest.mock import patch

from emissor_ipm.utils.registry import (
    STATUS_EMITTED,
    STATUS_FAILED,
    _backup_corrupt,
    find_invoice,
    list_invoices,
    mark_emitted,
    mark_failed,
)


def _patched(rp):
    return (
        patch("emissor_ipm.utils.registry._registry_path", return_value=rp),
        patch("emissor_ipm.utils.registry._locked"),
    )


def test_mark_emitted(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        entry = mark_emitted("inv-1", invoice_number="1234", verification_code="ABC", test_mode=True)
        assert entry["status"] == STATUS_EMITTED
        assert entry["invoice_number"] == "1234"
        assert entry["retry_count"] == 0
        assert entry["test_mode"] is True
        assert entry["issued_at"]

        stored = json.loads(rp.read_text())
        assert stored[0]["invoice_id"] == "inv-1"


def test_mark_failed_bumps_retry(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        mark_failed("inv-1", "timeout")
        entry = mark_failed("inv-1", "HTTP 500")
        assert entry["status"] == STATUS_FAILED
        assert entry["error"] == "HTTP 500"
        assert entry["retry_count"] == 2
        assert len(list_invoices()) == 1


def test_emitted_after_failure_clears_error(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        mark_failed("inv-1", "timeout")
        entry = mark_emitted("inv-1", invoice_number="99")
        assert entry["status"] == STATUS_EMITTED
        assert entry["error"] == ""
        assert entry["retry_count"] == 1


def test_none_values_not_stored(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        mark_emitted("inv-1", invoice_number="1", pdf_url="file:///a.xml")
        entry = mark_emitted("inv-1", invoice_number="1")
        assert entry["pdf_url"] == "file:///a.xml"
        assert "verification_code" not in entry


def test_find_invoice(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        mark_emitted("inv-1", invoice_number="1")
        assert find_invoice("inv-1")["invoice_number"] == "1"
        assert find_invoice("nonexistent") is None


def test_list_invoices_by_status(tmp_path):
    rp = tmp_path / "invoices.json"
    p1, p2 = _patched(rp)
    with p1, p2:
        mark_emitted("inv-1", invoice_number="1")
        mark_failed("inv-2", "boom")
        assert [e["invoice_id"] for e in list_invoices(STATUS_FAILED)] == ["inv-2"]
        assert len(list_invoices()) == 2


def test_empty_registry(tmp_path):
    p1, p2 = _patched(tmp_path / "invoices.json")
    with p1, p2:
        assert list_invoices() == []


def test_corrupt_registry_backed_up(tmp_path):
    rp = tmp_path / "invoices.json"
    rp.write_text("{not valid json")
    p1, p2 = _patched(rp)
    with p1, p2:
        assert list_invoices() == []
    backups = list(tmp_path.glob("invoices.json.corrupt.*"))
    assert len(backups) == 1
    assert backups[0].read_text() == "{not valid json"


def test_backup_corrupt_renames(tmp_path):
    rp = tmp_path / "invoices.json"
    rp.write_text("x")
    backup = _backup_corrupt(rp)
    assert not rp.exists()
    assert backup.read_text() == "x"


def test_real_lock(tmp_path):
    rp = tmp_path / "data" / "invoices.json"
    with patch("emissor_ipm.utils.registry._registry_path", return_value=rp):
        mark_failed("inv-1", "boom")
        assert find_invoice("inv-1")["retry_count"] == 1
    assert (tmp_path / "data" / "invoices.json").exists()
