from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

from emissor_ipm.models.tax_config import (
    TaxRateConfig,
    validate_item_rate_source,
)
from emissor_ipm.services.exceptions import ConfigurationError

APP_NAME = "emissor-ipm"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Only checks sources available before .env is loaded (shell env var, dev layout,
    an existing platformdirs directory).
    """
    from_env = os.environ.get("EMISSOR_IPM_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/emissor_ipm/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("EMISSOR_IPM_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("EMISSOR_IPM_DATA_DIR", "data", kind="data")


BRT = timezone(timedelta(hours=-3))

# TOM code used when a city is not found in the municipality reference (Concórdia-SC)
MUNICIPALITY_FALLBACK_TOM = "8083"

CLIENT_MODES = ("file", "api")

IPM_TIMEOUT = 30

TAX_ENV_PREFIX = "IPM_TAX_"


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def _tax_settings_raw() -> dict:
    path = get_config_dir() / "tax.yaml"
    data = load_yaml(path) if path.is_file() else {}
    for key, value in os.environ.items():
        if key.startswith(TAX_ENV_PREFIX):
            data[key[len(TAX_ENV_PREFIX):].lower()] = value
    return data


@dataclass(frozen=True)
class TaxSettings:
    rates: TaxRateConfig
    item_rate_source: str  # 'issuer' or 'configured'


def load_tax_settings() -> TaxSettings:
    """Load config/tax.yaml plus IPM_TAX_* overrides, reading the file once.

    Raises ConfigurationError when a rate is missing or invalid, or when
    item_rate_source is missing or unknown.
    """
    raw = _tax_settings_raw()
    rates = TaxRateConfig.from_dict(raw)
    source = raw.get("item_rate_source")
    if source is None:
        raise ConfigurationError("item_rate_source ausente em tax.yaml")
    return TaxSettings(rates=rates, item_rate_source=validate_item_rate_source(str(source)))


def get_service_types_path() -> Path:
    return get_config_dir() / "service_types.yaml"


def get_municipalities_path() -> Path:
    return get_config_dir() / "municipalities.csv"


def get_output_dir() -> Path:
    """Directory where the file client writes NFS-e XML."""
    from_env = os.environ.get("IPM_OUTPUT_DIR")
    if from_env:
        return Path(from_env)
    return get_data_dir() / "xml-output"


# --- Gateway settings ---


@dataclass(frozen=True)
class GatewaySettings:
    mode: str
    api_url: str | None = None
    username: str | None = None
    password: str | None = None
    timeout: int = IPM_TIMEOUT


def load_gateway_settings() -> GatewaySettings:
    """Read IPM_CLIENT_MODE and, for api mode, the URL and credentials.

    Raises ConfigurationError for an unknown mode or incomplete api settings.
    """
    mode = os.environ.get("IPM_CLIENT_MODE", "file").strip().lower()
    if mode not in CLIENT_MODES:
        raise ConfigurationError(f"IPM_CLIENT_MODE '{mode}' nao reconhecido. Use 'file' ou 'api'.")
    if mode == "file":
        return GatewaySettings(mode=mode)

    missing = [k for k in ("IPM_API_URL", "IPM_USERNAME", "IPM_PASSWORD") if not os.environ.get(k)]
    if missing:
        raise ConfigurationError(f"Modo api requer: {', '.join(missing)}")
    try:
        timeout = int(os.environ.get("IPM_TIMEOUT", IPM_TIMEOUT))
    except ValueError:
        raise ConfigurationError("IPM_TIMEOUT deve ser um inteiro") from None
    return GatewaySettings(
        mode=mode,
        api_url=os.environ["IPM_API_URL"],
        username=os.environ["IPM_USERNAME"],
        password=os.environ["IPM_PASSWORD"],
        timeout=timeout,
    )
