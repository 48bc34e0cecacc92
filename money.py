import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from models import Granularity

logger = logging.getLogger(__name__)

# Weeks per display unit. 4.33 is a fixed average, not calendar-exact.
WEEKS_PER_UNIT: dict[Granularity, Decimal] = {
    Granularity.weekly: Decimal("1"),
    Granularity.monthly: Decimal("4.33"),
    Granularity.yearly: Decimal("52"),
}


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def scale_weekly(weekly_cents: int, granularity: Granularity) -> int:
    """Weekly cents expressed in ``granularity`` units, rounded half-up."""
    return round_cents(Decimal(weekly_cents) * WEEKS_PER_UNIT[granularity])


def to_weekly(display_cents: int, granularity: Granularity) -> int:
    """Inverse of :func:`scale_weekly`; used when saving an edited amount."""
    return round_cents(Decimal(display_cents) / WEEKS_PER_UNIT[granularity])


def parse_amount(value: Union[str, int, float], *, allow_negative: bool = True) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        clean = str(value)
    else:
        clean = str(value).strip().replace("$", "").replace(" ", "")
        clean = clean.replace(",", "")
    if not clean:
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = round_cents(amount * 100)
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def parse_amount_or_zero(value: Optional[Union[str, int, float]]) -> int:
    if value is None:
        return 0
    try:
        return parse_amount(value)
    except ValueError:
        logger.debug(f"parse_amount: invalid input={value!r} resolved=0")
        return 0


def format_currency(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"
