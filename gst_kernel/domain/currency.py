"""
ISO 4217 currencies accepted on purchases, statements and ledger entries.

Amounts on Indian GST returns are in rupees to two decimals; the other
entries exist for businesses that record foreign-currency invoices and for
tests of precision handling (JPY has no minor unit, KWD has three).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def rounding_tolerance(self) -> Decimal:
        """One minor unit, e.g. 0.01 for INR."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Lookup of supported currencies and their minor-unit precision."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            CurrencyInfo("INR", 2, "Indian Rupee"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("AED", 2, "UAE Dirham"),
            CurrencyInfo("SGD", 2, "Singapore Dollar"),
            CurrencyInfo("AUD", 2, "Australian Dollar"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        )
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code)

    @classmethod
    def _require(cls, code: str) -> CurrencyInfo:
        info = cls._CURRENCIES.get(code)
        if info is None:
            raise ValueError(f"Unknown currency: {code}")
        return info

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        return cls._require(code).decimal_places

    @classmethod
    def get_rounding_tolerance(cls, code: str) -> Decimal:
        return cls._require(code).rounding_tolerance
