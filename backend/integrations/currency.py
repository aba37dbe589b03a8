"""Fixed-point money values and the ISO 4217 currency lookup table."""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

from integrations.exceptions import ProviderDataError

logger = logging.getLogger(__name__)

# Minor units (decimal places) per ISO 4217 code for the currencies the
# upstream reports. Codes not listed fall back to the table's default.
ISO_MINOR_UNITS: dict[str, int] = {
    "AUD": 2,
    "BHD": 3,
    "BRL": 2,
    "CAD": 2,
    "CHF": 2,
    "CLP": 0,
    "CNY": 2,
    "CZK": 2,
    "DKK": 2,
    "EUR": 2,
    "GBP": 2,
    "HKD": 2,
    "HUF": 2,
    "IDR": 2,
    "ILS": 2,
    "INR": 2,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "MXN": 2,
    "NOK": 2,
    "NZD": 2,
    "OMR": 3,
    "PHP": 2,
    "PLN": 2,
    "SEK": 2,
    "SGD": 2,
    "THB": 2,
    "TND": 3,
    "TRY": 2,
    "TWD": 2,
    "USD": 2,
    "VND": 0,
    "ZAR": 2,
}


@dataclass(frozen=True)
class Money:
    """An amount in a single currency."""

    amount: Decimal
    currency: str

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


class CurrencyTable:
    """Lookup table of known currencies and their minor units.

    Constructed once per process and handed to the components that parse
    upstream amounts.
    """

    def __init__(self, minor_units: dict[str, int], default_currency: str):
        self._minor_units = {code.upper(): digits for code, digits in minor_units.items()}
        default_currency = default_currency.upper()
        if default_currency not in self._minor_units:
            raise ValueError(f"Default currency {default_currency!r} is not in the currency table")
        self._default = default_currency

    @classmethod
    def iso(cls, default_currency: str = "USD") -> "CurrencyTable":
        """Build a table from the bundled ISO 4217 minor units."""
        return cls(ISO_MINOR_UNITS, default_currency)

    @property
    def default_currency(self) -> str:
        return self._default

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.upper() in self._minor_units

    def resolve(self, code: str | None) -> str:
        """Return the canonical code, or the default for missing/unknown codes."""
        if not code:
            return self._default
        normalized = code.strip().upper()
        if normalized in self._minor_units:
            return normalized
        logger.warning(
            "Unknown currency code %r, falling back to %s", code, self._default
        )
        return self._default

    def money(self, amount, code: str | None) -> Money:
        """Parse an upstream numeric amount into a fixed-point Money value.

        Raises:
            ProviderDataError: If the amount is missing or not a number.
        """
        currency = self.resolve(code)
        if amount is None:
            raise ProviderDataError("Transaction amount is missing")
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise ProviderDataError(f"Unparseable amount {amount!r}") from e
        if not value.is_finite():
            raise ProviderDataError(f"Unparseable amount {amount!r}")

        exponent = Decimal(1).scaleb(-self._minor_units[currency])
        return Money(value.quantize(exponent, rounding=ROUND_HALF_EVEN), currency)
