"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the foundational value types for every ITC computation:
    Currency, Money and TaxBreakdown. These replace primitive types
    (Decimal, str) wherever amounts appear in domain logic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module and every engine.

Invariants enforced:
    - All monetary amounts are Money value objects backed by Decimal,
      never float.
    - Currency codes are validated against CurrencyRegistry.
    - A tax breakdown is either intra-state (CGST+SGST) or inter-state
      (IGST), never both, and no component is negative.

Failure modes:
    - TypeError when a float is handed to Money.
    - ValueError on invalid amounts or currencies, or when arithmetic
      mixes currencies.
    - NegativeAmountError / InvalidTaxSplitError from TaxBreakdown.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from gst_kernel.domain.currency import CurrencyRegistry
from gst_kernel.exceptions import InvalidTaxSplitError, NegativeAmountError

DEFAULT_CURRENCY = "INR"


def _to_amount(value: Decimal | str | int) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Money amount must not be a float; pass a str or Decimal")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {value}")
    return value


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Validated and normalized (uppercased) on construction.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if self.code else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def rounding_tolerance(self) -> Decimal:
        return CurrencyRegistry.get_rounding_tolerance(self.code)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    A Decimal amount tied to its currency.

    Floats are refused outright.  Arithmetic keeps full precision; amounts
    are only quantized when ``round()`` is called (the ledger rounds every
    figure it writes).  Mixing currencies in arithmetic or comparison
    raises ValueError.
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_amount(self.amount))
        match self.currency:
            case Currency():
                pass
            case str():
                object.__setattr__(self, "currency", Currency(self.currency))
            case _:
                raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(
        cls,
        amount: Decimal | str | int,
        currency: str | Currency = DEFAULT_CURRENCY,
    ) -> Money:
        """
        ``Money.of("1800")`` is 1800 rupees.

        Raises:
            TypeError: ``amount`` is a float.
            ValueError: unparseable amount or unknown currency.
        """
        return cls(_to_amount(amount), currency)

    @classmethod
    def zero(cls, currency: str | Currency = DEFAULT_CURRENCY) -> Money:
        return cls(Decimal(0), currency)

    @property
    def is_zero(self) -> bool:
        return self.amount.is_zero()

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Quantize to the currency's minor unit (paise for INR)."""
        exponent = Decimal(1).scaleb(-self.currency.decimal_places)
        return Money(self.amount.quantize(exponent, rounding=rounding), self.currency)

    def _same_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} amounts in different currencies: "
                f"{self.currency} and {other.currency}"
            )

    @staticmethod
    def _scalar(value: Decimal | int | str) -> Decimal | None:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, str)) and not isinstance(value, bool):
            return Decimal(str(value))
        return None

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        scalar = self._scalar(factor)
        if scalar is None:
            return NotImplemented
        return Money(self.amount * scalar, self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor: Decimal | int | str) -> Money:
        scalar = self._scalar(divisor)
        if scalar is None:
            return NotImplemented
        return Money(self.amount / scalar, self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        return other.__lt__(self) if isinstance(other, Money) else NotImplemented

    def __ge__(self, other: Money) -> bool:
        return other.__le__(self) if isinstance(other, Money) else NotImplemented

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


def sum_money(amounts: Iterable[Money], currency: str | Currency = DEFAULT_CURRENCY) -> Money:
    """Sum a sequence of Money, returning zero in ``currency`` when empty."""
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total


@dataclass(frozen=True, slots=True)
class TaxBreakdown:
    """
    GST components of an invoice.

    Exactly one of {CGST+SGST} (intra-state supply) or {IGST} (inter-state
    supply) may be non-zero. A zero-rated invoice has all three at zero.
    """

    cgst: Money
    sgst: Money
    igst: Money

    def __post_init__(self) -> None:
        for name in ("cgst", "sgst", "igst"):
            value = getattr(self, name)
            if value.is_negative:
                raise NegativeAmountError(name, str(value.amount))
        if self.igst.currency != self.cgst.currency or self.sgst.currency != self.cgst.currency:
            raise ValueError("Tax components must share one currency")
        intra = not self.cgst.is_zero or not self.sgst.is_zero
        if intra and not self.igst.is_zero:
            raise InvalidTaxSplitError(
                str(self.cgst.amount), str(self.sgst.amount), str(self.igst.amount)
            )

    @classmethod
    def intra_state(
        cls,
        cgst: Decimal | str | int,
        sgst: Decimal | str | int,
        currency: str = DEFAULT_CURRENCY,
    ) -> TaxBreakdown:
        return cls(
            cgst=Money.of(cgst, currency),
            sgst=Money.of(sgst, currency),
            igst=Money.zero(currency),
        )

    @classmethod
    def inter_state(
        cls,
        igst: Decimal | str | int,
        currency: str = DEFAULT_CURRENCY,
    ) -> TaxBreakdown:
        return cls(
            cgst=Money.zero(currency),
            sgst=Money.zero(currency),
            igst=Money.of(igst, currency),
        )

    @property
    def currency(self) -> Currency:
        return self.cgst.currency

    @property
    def total(self) -> Money:
        return self.cgst + self.sgst + self.igst

    @property
    def is_inter_state(self) -> bool:
        return not self.igst.is_zero
