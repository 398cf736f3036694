"""
Sniper Policy

Declarative, immutable configuration for detection, entry filters,
execution, auto-sell and safety limits.

A policy is built from defaults deep-merged with an optional preset and
user overrides, validated, then frozen. Changing any value means building
a new policy and restarting the engine with it.
"""

import copy
import json
import yaml
import logging
from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path

from ..exceptions import ConfigurationException

logger = logging.getLogger(__name__)

KNOWN_POOLS = ("bonk-usd1", "bonk-sol", "pump", "raydium")


@dataclass(frozen=True)
class TimingConfig:
    """Block timing"""
    snipe_block_zero: bool = False
    min_block_delay: int = 0
    max_block_delay: int = 5


@dataclass(frozen=True)
class EntryFilters:
    """Entry filters; 0 as a lower bound means unconstrained"""
    min_holders: int = 0
    max_holders: int = 1000
    min_dev_holdings_pct: float = 0.0
    max_dev_holdings_pct: float = 90.0
    min_transaction_count: int = 0
    min_liquidity_usd: float = 1000.0
    max_liquidity_usd: float = 1_000_000.0
    min_market_cap_usd: float = 0.0
    max_market_cap_usd: float = 500_000.0  # 0 disables the cap


@dataclass(frozen=True)
class ExecutionConfig:
    """Buy sizing"""
    buy_amount_sol: float = 0.1
    buy_amount_usd1: float = 10.0
    use_usd1: bool = True
    slippage_bps: int = 1500
    priority_fee_lamports: int = 100_000


@dataclass(frozen=True)
class AutoSellConfig:
    """Exit conditions"""
    enabled: bool = True
    take_profit_pct: float = 100.0
    stop_loss_pct: float = 50.0
    trailing_stop_enabled: bool = False
    trailing_stop_pct: float = 20.0
    sell_after_blocks: int = 0   # 0 = disabled
    sell_after_seconds: float = 0.0  # 0 = disabled
    sell_on_dev_sell: bool = False
    sell_percent_on_trigger: float = 100.0


@dataclass(frozen=True)
class SafetyConfig:
    """Budgets and kill switches"""
    max_concurrent_snipes: int = 3
    daily_budget_sol: float = 1.0
    max_single_snipe_sol: float = 0.5
    emergency_stop_enabled: bool = True
    cooldown_between_snipes_sec: float = 5.0
    blacklist_tokens: Tuple[str, ...] = ()
    blacklist_creators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TargetingConfig:
    """Which pools and creators to consider"""
    target_pools: Tuple[str, ...] = ("bonk-usd1", "bonk-sol")
    only_verified_devs: bool = False
    require_social_links: bool = False
    require_website: bool = False


@dataclass(frozen=True)
class AdvancedConfig:
    """Anti-rug and retry behaviour"""
    anti_rug_enabled: bool = True
    anti_rug_max_dev_sell_pct: float = 50.0
    anti_rug_min_liquidity_pct: float = 30.0
    bundle_enabled: bool = False  # declarative: for external bundle-submitting gateways, no effect here
    retry_on_fail: bool = True
    max_retries: int = 2
    retry_delay_sec: float = 0.5
    execution_timeout_sec: float = 15.0


@dataclass(frozen=True)
class MonitorConfig:
    """Post-launch sniper monitoring window"""
    enabled: bool = True
    window_blocks: int = 6
    window_seconds: float = 0.0  # > 0 overrides window_blocks
    max_supply_pct_threshold: float = 3.0
    max_sol_amount_threshold: float = 5.0
    sell_percentage: float = 100.0
    ignore_wallets: Tuple[str, ...] = ()


_SECTIONS = {
    "timing": TimingConfig,
    "filters": EntryFilters,
    "execution": ExecutionConfig,
    "auto_sell": AutoSellConfig,
    "safety": SafetyConfig,
    "targeting": TargetingConfig,
    "advanced": AdvancedConfig,
    "monitor": MonitorConfig,
}


@dataclass(frozen=True)
class SniperPolicy:
    """Complete sniper policy"""
    version: str = "1.0"
    enabled: bool = False

    timing: TimingConfig = field(default_factory=TimingConfig)
    filters: EntryFilters = field(default_factory=EntryFilters)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    auto_sell: AutoSellConfig = field(default_factory=AutoSellConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    targeting: TargetingConfig = field(default_factory=TargetingConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain dictionary (tuples become lists)"""
        data = asdict(self)
        for section in _SECTIONS:
            for key, value in data[section].items():
                if isinstance(value, tuple):
                    data[section][key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SniperPolicy":
        """Create from dictionary; unknown keys are rejected"""
        unknown = set(data) - set(_SECTIONS) - {"version", "enabled"}
        if unknown:
            raise ConfigurationException("Unknown policy sections", keys=sorted(unknown))

        sections = {}
        for name, section_cls in _SECTIONS.items():
            sections[name] = _build_section(section_cls, data.get(name) or {}, name)

        return cls(
            version=str(data.get("version", "1.0")),
            enabled=bool(data.get("enabled", False)),
            **sections
        )

    def validate(self) -> List[str]:
        """Validate policy, return list of errors"""
        errors = []
        ex = self.execution
        sell = self.auto_sell
        safety = self.safety
        f = self.filters

        if ex.buy_amount_sol <= 0 and ex.buy_amount_usd1 <= 0:
            errors.append("buy amount must be > 0 (SOL or USD1)")
        if ex.use_usd1 and ex.buy_amount_usd1 <= 0:
            errors.append("buy_amount_usd1 must be > 0 when use_usd1 is set")
        if not ex.use_usd1 and ex.buy_amount_sol <= 0:
            errors.append("buy_amount_sol must be > 0 when use_usd1 is off")
        if ex.slippage_bps < 100 or ex.slippage_bps > 5000:
            errors.append("slippage_bps must be between 100 and 5000")
        if ex.priority_fee_lamports < 0:
            errors.append("priority_fee_lamports must be >= 0")

        if sell.take_profit_pct <= 0:
            errors.append("take_profit_pct must be > 0")
        if sell.stop_loss_pct <= 0 or sell.stop_loss_pct > 100:
            errors.append("stop_loss_pct must be between 0 and 100")
        if sell.trailing_stop_pct <= 0 or sell.trailing_stop_pct > 100:
            errors.append("trailing_stop_pct must be between 0 and 100")
        if sell.sell_percent_on_trigger <= 0 or sell.sell_percent_on_trigger > 100:
            errors.append("sell_percent_on_trigger must be between 0 and 100")
        if sell.sell_after_blocks < 0 or sell.sell_after_seconds < 0:
            errors.append("sell_after_blocks / sell_after_seconds must be >= 0")

        if safety.max_concurrent_snipes < 1:
            errors.append("max_concurrent_snipes must be >= 1")
        if safety.daily_budget_sol <= 0:
            errors.append("daily_budget_sol must be > 0")
        if safety.max_single_snipe_sol <= 0:
            errors.append("max_single_snipe_sol must be > 0")
        if safety.cooldown_between_snipes_sec < 0:
            errors.append("cooldown_between_snipes_sec must be >= 0")

        if not self.targeting.target_pools:
            errors.append("target_pools must not be empty")
        for pool in self.targeting.target_pools:
            if pool not in KNOWN_POOLS:
                errors.append(f"unknown target pool: {pool}")

        if self.timing.min_block_delay < 0:
            errors.append("min_block_delay must be >= 0")
        if self.timing.min_block_delay > self.timing.max_block_delay:
            errors.append("min_block_delay must be <= max_block_delay")
        if f.min_holders > f.max_holders:
            errors.append("min_holders must be <= max_holders")
        if f.min_dev_holdings_pct > f.max_dev_holdings_pct:
            errors.append("min_dev_holdings_pct must be <= max_dev_holdings_pct")
        if f.min_liquidity_usd > f.max_liquidity_usd:
            errors.append("min_liquidity_usd must be <= max_liquidity_usd")
        if f.max_market_cap_usd and f.min_market_cap_usd > f.max_market_cap_usd:
            errors.append("min_market_cap_usd must be <= max_market_cap_usd")

        if self.advanced.max_retries < 0:
            errors.append("max_retries must be >= 0")
        if self.advanced.execution_timeout_sec <= 0:
            errors.append("execution_timeout_sec must be > 0")

        mon = self.monitor
        if mon.window_blocks < 0 or mon.window_seconds < 0:
            errors.append("monitor window must be >= 0")
        if mon.sell_percentage <= 0 or mon.sell_percentage > 100:
            errors.append("monitor sell_percentage must be between 0 and 100")

        return errors

    def ensure_valid(self) -> "SniperPolicy":
        errors = self.validate()
        if errors:
            raise ConfigurationException("Invalid sniper policy", errors=errors)
        return self


def _build_section(section_cls, values: Dict[str, Any], name: str):
    allowed = {f.name: f for f in fields(section_cls)}
    unknown = set(values) - set(allowed)
    if unknown:
        raise ConfigurationException(f"Unknown keys in policy section '{name}'", keys=sorted(unknown))

    kwargs = {}
    for key, value in values.items():
        if isinstance(value, (list, set, frozenset)):
            value = tuple(value)
        kwargs[key] = value
    return section_cls(**kwargs)


# ============================================
# PRESETS
# ============================================
PRESETS: Dict[str, Dict[str, Any]] = {
    "aggressive": {
        "timing": {"snipe_block_zero": True, "max_block_delay": 2},
        "filters": {"min_holders": 0, "min_liquidity_usd": 500.0},
        "execution": {"buy_amount_sol": 0.5, "slippage_bps": 2500},
        "auto_sell": {"take_profit_pct": 200.0, "stop_loss_pct": 70.0},
        "safety": {"max_concurrent_snipes": 5, "daily_budget_sol": 5.0},
    },
    "conservative": {
        "timing": {"snipe_block_zero": False, "min_block_delay": 3, "max_block_delay": 10},
        "filters": {"min_holders": 10, "min_liquidity_usd": 5000.0, "min_transaction_count": 5},
        "execution": {"buy_amount_sol": 0.05, "slippage_bps": 1000},
        "auto_sell": {
            "take_profit_pct": 50.0,
            "stop_loss_pct": 30.0,
            "trailing_stop_enabled": True,
            "trailing_stop_pct": 15.0,
        },
        "safety": {"max_concurrent_snipes": 2, "daily_budget_sol": 0.5},
        "targeting": {"only_verified_devs": True, "require_social_links": True},
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override applied recursively"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def build_policy(preset: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> SniperPolicy:
    """
    Defaults <- preset <- overrides, then validate.

    Raises:
        ConfigurationException: unknown preset or invalid result
    """
    data = SniperPolicy().to_dict()
    if preset:
        if preset not in PRESETS:
            raise ConfigurationException("Unknown policy preset", preset=preset, available=sorted(PRESETS))
        data = deep_merge(data, PRESETS[preset])
    if overrides:
        data = deep_merge(data, overrides)
    return SniperPolicy.from_dict(data).ensure_valid()


class PolicyManager:
    """
    Loads and saves sniper policies as YAML or JSON.

    Usage:
        manager = PolicyManager("config/sniper.yaml")
        policy = manager.load(preset="conservative")
        manager.save(policy)
    """

    def __init__(self, policy_path: Optional[str] = None):
        self.policy_path = Path(policy_path) if policy_path else None

    def _read(self) -> Dict[str, Any]:
        path = self.policy_path
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationException("Cannot read policy file", path=str(path), error=str(e)) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationException("Policy file must contain a mapping", path=str(path))
        return data

    def load(self, preset: Optional[str] = None) -> SniperPolicy:
        """Load policy from file (if any) on top of defaults and preset"""
        overrides: Dict[str, Any] = {}
        if self.policy_path is not None:
            if not self.policy_path.exists():
                raise ConfigurationException("Policy file not found", path=str(self.policy_path))
            overrides = self._read()
            # A preset named in the file applies unless the caller chose one
            preset = preset or overrides.pop("preset", None)
            overrides.pop("preset", None)

        policy = build_policy(preset, overrides)
        logger.info(
            f"✅ Sniper policy loaded (preset={preset or 'default'}, "
            f"pools={','.join(policy.targeting.target_pools)}, enabled={policy.enabled})"
        )
        return policy

    def save(self, policy: SniperPolicy):
        """Save policy to file"""
        if self.policy_path is None:
            raise ConfigurationException("No policy path configured")

        data = policy.to_dict()
        self.policy_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.policy_path, 'w', encoding='utf-8') as f:
            if self.policy_path.suffix in ['.yaml', '.yml']:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False)
        logger.info(f"Sniper policy saved to {self.policy_path}")
