"""
Engine Configuration Schema.

Defines the structure and defaults for the reconciliation engine: match
tolerance, alert lookahead, blocked credit rules, retry policy and run lock
behaviour.  Values are loaded from YAML at startup (see ``loader.py``) or
built in code for tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from gst_kernel.domain.dtos import BlockedCreditRule, PurchaseCategory
from gst_kernel.domain.values import Currency, Money
from gst_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        # YAML parses 1.00 as float; route through str to keep the literal.
        return Decimal(str(value))
    return Decimal(value) if not isinstance(value, Decimal) else value


@dataclass(frozen=True)
class EngineConfig:
    """
    Configuration for one deployment of the reconciliation engine.

        config = EngineConfig(
            match_tolerance_absolute=Decimal("0.50"),
            blocked_credit_rules=(BlockedCreditRule("capital_goods", "motor_vehicle"),),
        )
    """

    # Matching: a declared amount matches when |declared - tax| is within
    # min(absolute, percent% of tax).
    match_tolerance_absolute: Decimal = Decimal("1.00")
    match_tolerance_percent: Decimal = Decimal("1")

    # Alerts
    alert_lookahead_days: int = 7

    # Eligibility
    blocked_credit_rules: tuple[BlockedCreditRule, ...] = field(default_factory=tuple)

    currency: str = "INR"

    # Collaborator retry (orchestrator only)
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.2
    retry_max_delay_seconds: float = 2.0

    # None fails fast with ReconciliationInProgressError; a number waits.
    lock_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "match_tolerance_absolute", _to_decimal(self.match_tolerance_absolute)
        )
        object.__setattr__(
            self, "match_tolerance_percent", _to_decimal(self.match_tolerance_percent)
        )
        object.__setattr__(self, "currency", Currency(self.currency).code)

        if self.match_tolerance_absolute < 0:
            raise ValueError("match_tolerance_absolute cannot be negative")
        if not Decimal("0") <= self.match_tolerance_percent <= Decimal("100"):
            raise ValueError(
                f"match_tolerance_percent must be between 0 and 100, "
                f"got {self.match_tolerance_percent}"
            )
        if self.alert_lookahead_days < 0:
            raise ValueError("alert_lookahead_days cannot be negative")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ValueError("retry delays cannot be negative")
        if self.lock_timeout_seconds is not None and self.lock_timeout_seconds < 0:
            raise ValueError("lock_timeout_seconds cannot be negative")

        keys = [(rule.category, rule.reason) for rule in self.blocked_credit_rules]
        if len(keys) != len(set(keys)):
            duplicates = sorted({f"{c.value}:{r}" for c, r in keys if keys.count((c, r)) > 1})
            logger.warning(
                "engine_config_duplicate_blocked_rules",
                extra={"duplicates": duplicates},
            )
            raise ValueError(f"blocked_credit_rules contains duplicates: {duplicates}")

        logger.debug(
            "engine_config_initialized",
            extra={
                "match_tolerance_absolute": str(self.match_tolerance_absolute),
                "match_tolerance_percent": str(self.match_tolerance_percent),
                "alert_lookahead_days": self.alert_lookahead_days,
                "blocked_rule_count": len(self.blocked_credit_rules),
                "currency": self.currency,
            },
        )

    def tolerance_for(self, tax_total: Money) -> Money:
        """Allowed |declared - recorded| difference for an invoice's tax."""
        absolute = Money.of(self.match_tolerance_absolute, tax_total.currency)
        relative = tax_total * (self.match_tolerance_percent / Decimal("100"))
        return absolute if absolute <= relative else relative

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the stock GST defaults and no blocked rules."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a parsed YAML document)."""
        logger.info(
            "engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if "blocked_credit_rules" in data:
            data["blocked_credit_rules"] = tuple(
                BlockedCreditRule(
                    category=PurchaseCategory.parse(rule["category"]),
                    reason=rule["reason"],
                )
                if isinstance(rule, dict)
                else rule
                for rule in data["blocked_credit_rules"] or ()
            )
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown engine config keys: {sorted(unknown)}")
        return cls(**data)
