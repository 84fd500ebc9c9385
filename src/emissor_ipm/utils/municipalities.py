"""Build the normalized municipality CSV by joining the TOM table with IBGE data.

Inputs:
  * the TOM table (dados.gov.br "Tabela de Órgãos e Municípios") exported as
    CSV with MUNI_CD, MUNI_NM, MUNI_UF_SG[, MUNI_DT_CRIACAO, MUNI_DT_EXTINCAO]
  * the IBGE JSON from /api/v1/localidades/municipios
Rows are matched by UF + name without diacritics; unmatched rows keep an
empty IBGE code so they can be fixed by hand.
"""

from __future__ import annotations

import csv
import json
import logging
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from emissor_ipm.utils.reference_data import MUNICIPALITY_CSV_HEADER

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d/%m/%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class JoinStats:
    total: int
    matched: int
    unmatched: int


def remove_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def make_key(uf: str, name: str) -> str:
    """UF|NAME with accents, hyphens and apostrophes flattened."""
    norm = remove_diacritics(name).upper()
    norm = re.sub(r"[-'`’]", " ", norm)
    norm = " ".join(norm.split())
    return f"{uf.strip().upper()}|{norm}"


def normalize_date(raw: str | None) -> str:
    """Convert d/m/Y (or ISO) dates to YYYY-MM-DD; anything else becomes ""."""
    raw = (raw or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return ""


def _ibge_uf(item: dict) -> str:
    micro = ((item.get("microrregiao") or {}).get("mesorregiao") or {}).get("UF") or {}
    imediata = (
        ((item.get("regiao-imediata") or {}).get("regiao-intermediaria") or {}).get("UF") or {}
    )
    return micro.get("sigla") or imediata.get("sigla") or ""


def index_ibge(items: Iterable[dict]) -> dict[str, dict]:
    index: dict[str, dict] = {}
    for item in items:
        uf = _ibge_uf(item)
        if uf:
            index.setdefault(make_key(uf, item.get("nome", "")), item)
    return index


def join_ibge_tom(tom_rows: Iterable[dict], ibge_items: Iterable[dict]) -> tuple[list[dict], JoinStats]:
    """Join TOM rows (any header case) with IBGE municipalities."""
    index = index_ibge(ibge_items)
    rows = []
    matched = unmatched = 0

    for raw in tom_rows:
        row = {(k or "").strip().upper(): (v or "").strip() for k, v in raw.items()}
        tom_code, name, uf = row.get("MUNI_CD"), row.get("MUNI_NM"), row.get("MUNI_UF_SG")
        if not (tom_code and name and uf):
            continue

        ibge = index.get(make_key(uf, name))
        if ibge is not None:
            matched += 1
        else:
            unmatched += 1
        rows.append({
            "ibge_code": str(ibge["id"]) if ibge else "",
            "name": ibge["nome"] if ibge else name,
            "uf": uf.upper(),
            "tom_code": tom_code,
            "created_at": normalize_date(row.get("MUNI_DT_CRIACAO")),
            "extinguished_at": normalize_date(row.get("MUNI_DT_EXTINCAO")),
        })

    return rows, JoinStats(total=matched + unmatched, matched=matched, unmatched=unmatched)


def write_municipalities_csv(rows: Iterable[dict], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=MUNICIPALITY_CSV_HEADER)
        writer.writeheader()
        writer.writerows(rows)


def _tom_reader(f) -> csv.DictReader:
    # dados.gov.br exports use ";"; hand-edited copies often use ","
    header = f.readline()
    f.seek(0)
    delimiter = ";" if header.count(";") > header.count(",") else ","
    return csv.DictReader(f, delimiter=delimiter)


def build_municipality_table(tom_csv: Path, ibge_json: Path, out: Path) -> JoinStats:
    """Read both sources, join them and write the normalized CSV to *out*."""
    ibge_items = json.loads(ibge_json.read_text(encoding="utf-8"))
    with tom_csv.open(encoding="utf-8-sig", newline="") as f:
        rows, stats = join_ibge_tom(_tom_reader(f), ibge_items)
    write_municipalities_csv(rows, out)
    logger.info(
        "Tabela de municipios gravada em %s: %d linhas, %d sem codigo IBGE",
        out,
        stats.total,
        stats.unmatched,
    )
    return stats
