"""Money and key helpers for the Stripe adapter.

Registration totals are stored as :class:`~decimal.Decimal`; Stripe wants an
integer count of the currency's smallest unit. That is cents for most
currencies, but the "zero-decimal" currencies below (JPY, KRW, ...) are
charged in whole units.
"""

from decimal import ROUND_HALF_UP, Decimal

_OBFUSCATE_VISIBLE_CHARS = 4

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a Decimal amount to the integer minor-unit amount expected by Stripe.

    ``Decimal("95.00")`` in USD becomes ``9500``; zero-decimal currencies such as
    JPY are returned unscaled. Fractions of the smallest unit are rounded half up.

    Args:
        amount: The monetary amount as a :class:`~decimal.Decimal`.
        currency: An ISO 4217 currency code (case-insensitive).

    Returns:
        The amount as an integer in the smallest currency unit.
    """
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    """Convert an integer minor-unit amount from Stripe back to a Decimal.

    This is the inverse of :func:`to_minor_units`.

    Args:
        amount: The integer amount in the smallest currency unit as returned by Stripe.
        currency: An ISO 4217 currency code (case-insensitive).

    Returns:
        The amount as a :class:`~decimal.Decimal` suitable for a ``DecimalField``.
    """
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(str(amount))
    return Decimal(str(amount)) / 100


def obfuscate_key(key: str) -> str:
    """Obfuscate an API key or session id so it can be safely written to logs.

    Returns the last four characters prefixed with ``"****"``.  Values shorter than
    four characters are fully masked.
    """
    if len(key) < _OBFUSCATE_VISIBLE_CHARS:
        return "****"
    return "****" + key[-_OBFUSCATE_VISIBLE_CHARS:]
