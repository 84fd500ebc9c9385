from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Municipality:
    """Brazilian municipality with its IBGE code and IPM TOM code."""

    ibge_code: str  # 7 digits, e.g. 4204301 for Concórdia-SC
    name: str
    uf: str
    tom_code: str  # 4 digits, e.g. 8083 for Concórdia-SC
    created_at: str | None = None  # ISO date
    extinguished_at: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> Municipality:
        """Create a Municipality from a normalized CSV row."""
        return cls(
            ibge_code=(row.get("ibge_code") or "").strip(),
            name=row["name"].strip(),
            uf=row["uf"].strip().upper(),
            tom_code=row["tom_code"].strip(),
            created_at=(row.get("created_at") or "").strip() or None,
            extinguished_at=(row.get("extinguished_at") or "").strip() or None,
        )
