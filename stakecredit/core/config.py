"""Configuration loading utilities for YAML-based application settings."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .logging_config import get_logger


logger = get_logger(__name__)
_BASE_DIR = Path(__file__).resolve().parent.parent
_CONFIG_PATH = _BASE_DIR / "config.yml"

_DEFAULT_INSTALLMENT_COUNTS = (3, 4, 6, 12, 18, 24, 36)


@dataclass(frozen=True)
class ProtocolPolicy:
    """Protocol-wide credit policy knobs read from the ``protocol`` section."""

    initial_score: int = 500
    min_score: int = 0
    max_score: int = 1000
    score_on_time: int = 5
    score_completion: int = 20
    score_late_recovered: int = -20
    score_default: int = -50
    min_deposit_minor: int = 10_000_000
    min_lock_days: int = 7
    max_lock_days: int = 365
    min_interval_days: int = 15
    max_interval_days: int = 90
    grace_period_days: int = 15
    penalty_rate_bps: int = 1000
    collateral_ratio_bps: int = 10000
    allowed_installment_counts: Tuple[int, ...] = _DEFAULT_INSTALLMENT_COUNTS
    max_contracts_per_year: int = 5
    default_asset: str = "USDC"


@dataclass(frozen=True)
class BenefitTierSettings:
    """Raw benefit tier values; resolved into ``Benefits`` by the resolver."""

    tier: str = "STANDARD"
    fee_rate_bps: int = 700
    limit_multiplier_bps: int = 10000
    cashback_rate_bps: int = 0
    min_score: int = 0
    penalty_rate_bps: Optional[int] = None
    allowed_installments: Tuple[int, ...] = _DEFAULT_INSTALLMENT_COUNTS


@dataclass(frozen=True)
class AppSettings:
    """Application settings loaded from YAML configuration file."""

    app_name: str
    debug: bool
    host: str
    port: int
    log_level: str
    protocol: ProtocolPolicy
    default_benefits: BenefitTierSettings
    owner_benefits: Dict[str, BenefitTierSettings] = field(default_factory=dict)
    access_allow_all: bool = True
    access_owners: Tuple[str, ...] = ()
    keeper_enabled: bool = False
    keeper_poll_interval_sec: int = 60


def _to_bool(value: Any, default: bool = False) -> bool:
    """Convert value to bool with a default fallback."""
    try:
        if isinstance(value, bool):
            return value
        return value.strip().lower() in {"1", "true", "yes", "on"}
    except (AttributeError, ValueError):
        logger.warning("Invalid boolean value '%s'. Using default=%s", value, default)
        return default


def _to_int(value: Any, default: int) -> int:
    """Convert value to int with a default fallback."""
    try:
        if isinstance(value, bool):
            raise ValueError("boolean is not an integer setting")
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer value '%s'. Using default=%s", value, default)
        return default


def _to_list(value: Any) -> list[str]:
    """Convert list-like or comma-separated value to list[str]."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def _to_int_tuple(value: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    """Convert list-like or comma-separated value to a sorted tuple of ints."""
    items = _to_list(value)
    if not items:
        return default
    try:
        return tuple(sorted({int(item) for item in items}))
    except ValueError:
        logger.warning("Invalid integer list '%s'. Using default=%s", value, default)
        return default


def _read_config(path: Optional[Union[str, Path]] = None) -> dict:
    """Read and parse YAML configuration."""
    config_path = Path(path) if path is not None else _CONFIG_PATH
    try:
        with config_path.open("r", encoding="utf-8") as config_file:
            config_data = yaml.safe_load(config_file) or {}
        if not isinstance(config_data, dict):
            logger.warning("Config file %s is not a mapping. Falling back to defaults.", config_path)
            return {}
        logger.info("Configuration loaded from %s", config_path)
        return config_data
    except FileNotFoundError:
        logger.warning("Config file not found at %s. Falling back to defaults.", config_path)
        return {}
    except yaml.YAMLError:
        logger.exception("Failed to parse config file %s. Falling back to defaults.", config_path)
        return {}


def _section(config: dict, name: str) -> dict:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        logger.warning("Config section '%s' is not a mapping. Ignoring it.", name)
        return {}
    return value


def _load_protocol(protocol_cfg: dict) -> ProtocolPolicy:
    defaults = ProtocolPolicy()
    min_score = _to_int(protocol_cfg.get("min_score", defaults.min_score), defaults.min_score)
    max_score = _to_int(protocol_cfg.get("max_score", defaults.max_score), defaults.max_score)
    if not 0 <= min_score < max_score <= 0xFFFF:
        logger.warning(
            "Invalid score bounds min=%s max=%s. Using defaults.",
            min_score,
            max_score,
        )
        min_score, max_score = defaults.min_score, defaults.max_score

    initial_score = _to_int(protocol_cfg.get("initial_score", defaults.initial_score), defaults.initial_score)
    if not min_score <= initial_score <= max_score:
        logger.warning("initial_score=%s outside score bounds. Using default.", initial_score)
        initial_score = defaults.initial_score

    values: Dict[str, Any] = {
        "initial_score": initial_score,
        "min_score": min_score,
        "max_score": max_score,
        "allowed_installment_counts": _to_int_tuple(
            protocol_cfg.get("allowed_installment_counts"),
            defaults.allowed_installment_counts,
        ),
        "default_asset": str(protocol_cfg.get("default_asset", defaults.default_asset)).strip().upper()
        or defaults.default_asset,
    }
    for key in (
        "score_on_time",
        "score_completion",
        "score_late_recovered",
        "score_default",
        "min_deposit_minor",
        "min_lock_days",
        "max_lock_days",
        "min_interval_days",
        "max_interval_days",
        "grace_period_days",
        "penalty_rate_bps",
        "collateral_ratio_bps",
        "max_contracts_per_year",
    ):
        default = getattr(defaults, key)
        values[key] = _to_int(protocol_cfg.get(key, default), default)
    return ProtocolPolicy(**values)


def _load_tier(tier_cfg: Any, fallback: BenefitTierSettings) -> BenefitTierSettings:
    if not isinstance(tier_cfg, dict):
        logger.warning("Benefit tier entry '%s' is not a mapping. Using fallback tier.", tier_cfg)
        return fallback
    penalty = tier_cfg.get("penalty_rate_bps", fallback.penalty_rate_bps)
    return BenefitTierSettings(
        tier=str(tier_cfg.get("tier", fallback.tier)).strip().upper() or fallback.tier,
        fee_rate_bps=_to_int(tier_cfg.get("fee_rate_bps", fallback.fee_rate_bps), fallback.fee_rate_bps),
        limit_multiplier_bps=_to_int(
            tier_cfg.get("limit_multiplier_bps", fallback.limit_multiplier_bps),
            fallback.limit_multiplier_bps,
        ),
        cashback_rate_bps=_to_int(
            tier_cfg.get("cashback_rate_bps", fallback.cashback_rate_bps),
            fallback.cashback_rate_bps,
        ),
        min_score=_to_int(tier_cfg.get("min_score", fallback.min_score), fallback.min_score),
        penalty_rate_bps=None if penalty is None else _to_int(penalty, 0),
        allowed_installments=_to_int_tuple(
            tier_cfg.get("allowed_installments"),
            fallback.allowed_installments,
        ),
    )


def load_settings(path: Optional[Union[str, Path]] = None) -> AppSettings:
    """Load and validate application settings from `config.yml`."""
    config = _read_config(path)
    app_cfg = _section(config, "app")
    protocol_cfg = _section(config, "protocol")
    benefits_cfg = _section(config, "benefits")
    access_cfg = _section(config, "access")
    keeper_cfg = _section(config, "keeper")

    protocol = _load_protocol(protocol_cfg)
    default_tier = _load_tier(benefits_cfg.get("default", {}), BenefitTierSettings())
    owner_tiers: Dict[str, BenefitTierSettings] = {}
    owners_cfg = benefits_cfg.get("owners") or {}
    if isinstance(owners_cfg, dict):
        for owner, tier_cfg in owners_cfg.items():
            owner_tiers[str(owner).strip()] = _load_tier(tier_cfg, default_tier)
    else:
        logger.warning("benefits.owners is not a mapping. Ignoring per-owner tiers.")

    return AppSettings(
        app_name=str(app_cfg.get("name", "Stake Credit API")),
        debug=_to_bool(app_cfg.get("debug", False), False),
        host=str(app_cfg.get("host", "127.0.0.1")),
        port=_to_int(app_cfg.get("port", 8000), 8000),
        log_level=str(app_cfg.get("log_level", "INFO")).strip().upper() or "INFO",
        protocol=protocol,
        default_benefits=default_tier,
        owner_benefits=owner_tiers,
        access_allow_all=_to_bool(access_cfg.get("allow_all", True), True),
        access_owners=tuple(_to_list(access_cfg.get("owners", []))),
        keeper_enabled=_to_bool(keeper_cfg.get("enabled", False), False),
        keeper_poll_interval_sec=max(1, _to_int(keeper_cfg.get("poll_interval_sec", 60), 60)),
    )
