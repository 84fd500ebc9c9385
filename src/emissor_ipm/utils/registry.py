"""Local emission registry. Remembers the outcome of every invoice submitted.

Entries are keyed by invoice id and carry the status (emitted / failed), the
number returned by IPM, the last error and how many attempts failed.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from filelock import FileLock

from emissor_ipm import config as _config

logger = logging.getLogger(__name__)

STATUS_EMITTED = "emitted"
STATUS_FAILED = "failed"


def _registry_path() -> Path:
    return _config.get_data_dir() / "invoices.json"


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def _backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Registro corrompido salvo em %s", backup)
    return backup


@contextmanager
def _locked() -> Iterator[None]:
    """Hold an exclusive file lock during registry read-modify-write."""
    rp = _registry_path()
    rp.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(rp.with_suffix(".lock")):
        yield


def _load() -> list[dict[str, Any]]:
    rp = _registry_path()
    if not rp.exists():
        return []
    try:
        return json.loads(rp.read_text())
    except (json.JSONDecodeError, ValueError):
        _backup_corrupt(rp)
        return []


def _save(entries: list[dict[str, Any]]) -> None:
    rp = _registry_path()
    rp.parent.mkdir(parents=True, exist_ok=True)
    tmp = rp.with_suffix(".tmp")
    tmp.write_text(json.dumps(entries, indent=2, ensure_ascii=False) + "\n")
    os.replace(tmp, rp)


def _upsert(invoice_id: str, bump_retry: bool = False, **changes: Any) -> dict[str, Any]:
    with _locked():
        entries = _load()
        entry = next((e for e in entries if e.get("invoice_id") == invoice_id), None)
        if entry is None:
            entry = {"invoice_id": invoice_id, "retry_count": 0, "created_at": _now()}
            entries.append(entry)
        entry.update({k: v for k, v in changes.items() if v is not None})
        if bump_retry:
            entry["retry_count"] = entry.get("retry_count", 0) + 1
        entry["updated_at"] = _now()
        _save(entries)
        return entry


def list_invoices(status: str | None = None) -> list[dict[str, Any]]:
    """Return all registered invoices, optionally filtered by status."""
    with _locked():
        entries = _load()
    if status:
        entries = [e for e in entries if e.get("status") == status]
    return entries


def find_invoice(invoice_id: str) -> dict[str, Any] | None:
    return next((e for e in list_invoices() if e.get("invoice_id") == invoice_id), None)


def mark_emitted(
    invoice_id: str,
    *,
    invoice_number: str | None,
    verification_code: str | None = None,
    pdf_url: str | None = None,
    test_mode: bool = False,
) -> dict[str, Any]:
    return _upsert(
        invoice_id,
        status=STATUS_EMITTED,
        invoice_number=invoice_number,
        verification_code=verification_code,
        pdf_url=pdf_url,
        test_mode=test_mode,
        issued_at=_now(),
        error="",
    )


def mark_failed(invoice_id: str, error: str) -> dict[str, Any]:
    """Record a failed attempt and bump its retry count."""
    return _upsert(invoice_id, bump_retry=True, status=STATUS_FAILED, error=error)
