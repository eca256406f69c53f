"""Configuration layers.

Global settings come from a YAML file with environment overrides; step
settings come from the invocation (CLI options). ``effective_settings`` merges
the two field by field with ``resolve``: the step value wins unless it is
unset.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, TypeVar

import yaml  # type: ignore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE = {"1", "true", "yes", "y", "on"}


def _parse_bool(v: Any, default: bool) -> bool:
    if v is None or (isinstance(v, str) and not v.strip()):
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in _TRUE


def _parse_int(v: Any, default: int) -> int:
    if v is None or (isinstance(v, str) and not v.strip()):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValueError(f"Expected an integer, got {v!r}")


def parse_base_url(url: Optional[str]) -> Optional[str]:
    """Trim, drop trailing slashes; blank becomes None."""
    if url is None:
        return None
    url = url.strip().rstrip("/")
    return url or None


def resolve(local: Optional[T], fallback: T) -> T:
    """Per-field layering: the local value unless it is unset (None or blank string)."""
    if local is None:
        return fallback
    if isinstance(local, str) and not local.strip():
        return fallback
    return local


def resolve_timeout(local: Optional[int], fallback: int) -> int:
    if local is None or local < 0:
        return fallback
    return local


@dataclass
class GlobalSettings:
    url: Optional[str] = None
    api_key: Optional[str] = None
    auto_create_products: bool = False
    auto_create_engagements: bool = False
    reupload_scan: bool = False
    connection_timeout: int = 0
    read_timeout: int = 0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        self.url = parse_base_url(self.url)
        self.connection_timeout = max(self.connection_timeout, 0)
        self.read_timeout = max(self.read_timeout, 0)


@dataclass
class StepSettings:
    """What one pipeline step asks for. Unset overrides fall back to the global settings."""
    artifact: Optional[str] = None
    scan_type: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    engagement_id: Optional[str] = None
    engagement_name: Optional[str] = None
    source_code_url: Optional[str] = None
    commit_hash: Optional[str] = None
    branch_tag: Optional[str] = None
    # overrides
    url: Optional[str] = None
    api_key: Optional[str] = None
    auto_create_products: Optional[bool] = None
    auto_create_engagements: Optional[bool] = None
    reupload_scan: Optional[bool] = None
    connection_timeout: Optional[int] = None
    read_timeout: Optional[int] = None


@dataclass(frozen=True)
class EffectiveSettings:
    url: str
    api_key: str
    auto_create_products: bool
    auto_create_engagements: bool
    reupload_scan: bool
    connection_timeout: int
    read_timeout: int
    verify_ssl: bool


def effective_settings(step: StepSettings, glob: GlobalSettings) -> EffectiveSettings:
    url = resolve(parse_base_url(step.url), glob.url)
    if not url:
        raise ValueError("Missing DefectDojo URL (defectdojo.url, DEFECTDOJO_URL or --url).")
    api_key = (resolve(step.api_key, glob.api_key) or "").strip()
    if not api_key:
        raise ValueError("Missing DefectDojo API key (defectdojo.api_key, DEFECTDOJO_TOKEN or --api_key).")
    return EffectiveSettings(
        url=url,
        api_key=api_key,
        auto_create_products=resolve(step.auto_create_products, glob.auto_create_products),
        auto_create_engagements=resolve(step.auto_create_engagements, glob.auto_create_engagements),
        reupload_scan=resolve(step.reupload_scan, glob.reupload_scan),
        connection_timeout=resolve_timeout(step.connection_timeout, glob.connection_timeout),
        read_timeout=resolve_timeout(step.read_timeout, glob.read_timeout),
        verify_ssl=glob.verify_ssl,
    )


def load_global_settings(config_path: Optional[str] = None,
                         environ: Optional[Mapping[str, str]] = None) -> GlobalSettings:
    """Load the ``defectdojo`` section of a YAML file, then apply ``DEFECTDOJO_*`` overrides."""
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if config_path:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse configuration {config_path}: {exc}")
    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration {config_path}: expected a mapping at the top level")
    dd = data.get("defectdojo", {}) or {}
    if not isinstance(dd, dict):
        raise ValueError(f"Invalid configuration {config_path}: 'defectdojo' must be a mapping")
    known = {f.name for f in fields(GlobalSettings)}
    unknown = set(dd) - known
    if unknown:
        logger.warning("Ignoring unknown defectdojo settings: %s", ", ".join(sorted(unknown)))

    return GlobalSettings(
        url=env.get("DEFECTDOJO_URL") or dd.get("url"),
        api_key=env.get("DEFECTDOJO_TOKEN") or dd.get("api_key"),
        auto_create_products=_parse_bool(env.get("DEFECTDOJO_AUTO_CREATE_PRODUCTS"),
                                         _parse_bool(dd.get("auto_create_products"), False)),
        auto_create_engagements=_parse_bool(env.get("DEFECTDOJO_AUTO_CREATE_ENGAGEMENTS"),
                                            _parse_bool(dd.get("auto_create_engagements"), False)),
        reupload_scan=_parse_bool(env.get("DEFECTDOJO_REUPLOAD_SCAN"),
                                  _parse_bool(dd.get("reupload_scan"), False)),
        connection_timeout=_parse_int(env.get("DEFECTDOJO_CONNECTION_TIMEOUT"),
                                      _parse_int(dd.get("connection_timeout"), 0)),
        read_timeout=_parse_int(env.get("DEFECTDOJO_READ_TIMEOUT"),
                                _parse_int(dd.get("read_timeout"), 0)),
        verify_ssl=_parse_bool(env.get("DEFECTDOJO_VERIFY_SSL"), _parse_bool(dd.get("verify_ssl"), True)),
    )
