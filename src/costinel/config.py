from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import yaml

from costinel.alerts.rules import Above, parse_conditions
from costinel.ingest.products import SiteConfig
from costinel.utils.errors import ConfigurationError
from costinel.utils.types import Subject

log = structlog.get_logger("config")

IN_STOCK = Above(value=0.0, message="In stock")

# ---- environment ----

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class Settings:
    config_path: Path = Path("costinel.yaml")
    default_cooldown_s: float = 3600.0
    fetch_max_attempts: int = 3
    fetch_retry_delay_s: float = 2.0
    fetch_timeout_s: float = 30.0
    check_interval_s: float = 0.0       # 0 -> single pass and exit
    log_level: str = "info"
    chrome_path: Optional[str] = None
    cooldown_redis_url: Optional[str] = None
    console_alerts: bool = False


def settings_from_env() -> Settings:
    return Settings(
        config_path=Path(os.getenv("COSTINEL_CONFIG", "costinel.yaml")),
        default_cooldown_s=_env_float("DEFAULT_COOLDOWN_S", 3600.0),
        fetch_max_attempts=max(1, int(_env_float("FETCH_MAX_ATTEMPTS", 3))),
        fetch_retry_delay_s=_env_float("FETCH_RETRY_DELAY_S", 2.0),
        fetch_timeout_s=_env_float("FETCH_TIMEOUT_S", 30.0),
        check_interval_s=_env_float("CHECK_INTERVAL_S", 0.0),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        chrome_path=os.getenv("CHROME_PATH") or None,
        cooldown_redis_url=os.getenv("COOLDOWN_REDIS_URL") or None,
        console_alerts=_env_bool("CONSOLE_ALERTS"),
    )

# ---- subjects file ----

@dataclass(slots=True)
class MonitorConfig:
    stocks: list[Subject] = field(default_factory=list)
    products: list[Subject] = field(default_factory=list)
    sites: dict[str, SiteConfig] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.stocks and not self.products


def _cooldown(raw: Mapping[str, Any], where: str) -> Optional[float]:
    v = raw.get("cooldown")
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
        raise ConfigurationError(f"{where}: cooldown must be a non-negative number of seconds")
    return float(v)


def _stock(raw: Mapping[str, Any]) -> Subject:
    code = str(raw.get("code") or "").strip()
    if not code:
        raise ConfigurationError("stock entry without 'code'")
    conditions = parse_conditions(raw.get("conditions"))
    if not conditions:
        raise ConfigurationError(f"stock {code}: at least one condition is required")
    return Subject(
        id=code.upper(),
        name=str(raw.get("name") or code),
        kind="stock",
        conditions=conditions,
        cooldown_s=_cooldown(raw, code),
    )


def _product(raw: Mapping[str, Any]) -> Subject:
    url = str(raw.get("url") or "").strip()
    if not url:
        raise ConfigurationError("product entry without 'url'")
    conditions = parse_conditions(raw.get("conditions")) or (IN_STOCK,)
    return Subject(
        id=url,
        name=str(raw.get("name") or url),
        kind="product",
        conditions=conditions,
        cooldown_s=_cooldown(raw, url),
        url=url,
        site=raw.get("site"),
    )


def _site(host: str, raw: Mapping[str, Any]) -> SiteConfig:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"site {host}: entry must be a mapping")
    selector = raw.get("selector") or raw.get("stock_selector")
    if not selector:
        raise ConfigurationError(f"site {host}: 'selector' is required")
    try:
        wait_s = float(raw.get("wait_s", 3.0))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"site {host}: wait_s must be a number") from e
    return SiteConfig(
        selector=str(selector),
        out_of_stock_text=str(raw.get("out_of_stock_text", "Out of Stock")),
        wait_s=wait_s,
    )


def _guarded(raw: Any, build, kind: str) -> Subject:
    """
    Build a subject; an entry that names itself but is otherwise broken is
    kept as an invalid subject so the pass reports it as a config error.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{kind} entry must be a mapping")
    try:
        return build(raw)
    except ConfigurationError as e:
        ident = str(raw.get("code") or raw.get("url") or "").strip()
        if not ident:
            raise
        log.warning("subject_invalid", subject=ident, err=str(e))
        return Subject(
            id=ident.upper() if kind == "stock" else ident,
            name=str(raw.get("name") or ident),
            kind=kind,
            url=raw.get("url"),
            site=raw.get("site"),
            config_error=str(e),
        )


def parse_config(data: Mapping[str, Any]) -> MonitorConfig:
    if not isinstance(data, Mapping):
        raise ConfigurationError("config root must be a mapping")
    cfg = MonitorConfig(
        stocks=[_guarded(s, _stock, "stock") for s in data.get("stocks") or []],
        products=[_guarded(p, _product, "product") for p in data.get("products") or []],
        sites={str(h): _site(str(h), s) for h, s in (data.get("sites") or {}).items()},
    )
    for group in (cfg.stocks, cfg.products):
        ids = [s.id for s in group]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ConfigurationError(f"duplicate subjects: {', '.join(dupes)}")
    return cfg


def load_config(path: Path) -> MonitorConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"config file {path} is not valid YAML: {e}") from e
    return parse_config(data)
