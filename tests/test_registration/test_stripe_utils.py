from decimal import Decimal

import pytest

from django_registrar.registration.stripe_utils import (
    ZERO_DECIMAL_CURRENCIES,
    from_minor_units,
    obfuscate_key,
    to_minor_units,
)


def test_zero_decimal_currencies_is_frozenset():
    assert isinstance(ZERO_DECIMAL_CURRENCIES, frozenset)
    assert "JPY" in ZERO_DECIMAL_CURRENCIES
    assert "USD" not in ZERO_DECIMAL_CURRENCIES


# ---------------------------------------------------------------------------
# to_minor_units
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "currency", "expected"),
    [
        (Decimal("95.00"), "USD", 9500),
        (Decimal("0.50"), "usd", 50),
        (Decimal("0.01"), "GBP", 1),
        (Decimal("0.00"), "EUR", 0),
        (Decimal("1500"), "JPY", 1500),
        (Decimal("1500"), "jpy", 1500),
    ],
    ids=["usd", "lowercase", "penny", "zero", "jpy", "jpy-lowercase"],
)
def test_to_minor_units(amount, currency, expected):
    assert to_minor_units(amount, currency) == expected


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(Decimal("10.005"), "USD") == 1001
    assert to_minor_units(Decimal("99.5"), "JPY") == 100


# ---------------------------------------------------------------------------
# from_minor_units
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("amount", "currency", "expected"),
    [
        (9500, "USD", Decimal("95.00")),
        (1, "eur", Decimal("0.01")),
        (0, "USD", Decimal("0")),
        (1500, "JPY", Decimal("1500")),
    ],
)
def test_from_minor_units(amount, currency, expected):
    assert from_minor_units(amount, currency) == expected


# ---------------------------------------------------------------------------
# obfuscate_key
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["", "a", "abc"])
def test_obfuscate_key_short_keys_fully_masked(key):
    assert obfuscate_key(key) == "****"


def test_obfuscate_key_keeps_last_four():
    assert obfuscate_key("sk_test_abcdef1234") == "****1234"
