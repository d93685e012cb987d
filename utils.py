# utils.py
from datetime import date, timedelta, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from zoneinfo import ZoneInfo

DEFAULT_TZ = "Asia/Kolkata"
CENT = Decimal("0.01")


def utcnow():
    return datetime.now(timezone.utc)


def local_today(tz_name=DEFAULT_TZ):
    return datetime.now(ZoneInfo(tz_name)).date()


def as_local_date(value, tz_name=DEFAULT_TZ):
    """Calendar day of a date or an aware datetime.

    Aware datetimes are converted to the business timezone first so a
    delivery at 00:30 IST is not filed under the previous UTC day. Naive
    datetimes are rejected, their day is ambiguous.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise TypeError("naive datetime, attach a timezone or pass a date")
        return value.astimezone(ZoneInfo(tz_name)).date()
    if isinstance(value, date):
        return value
    raise TypeError(f"expected date or datetime, got {type(value).__name__}")


def parse_date(raw):
    # yyyy-mm-dd, as date inputs send it
    return datetime.strptime(raw, "%Y-%m-%d").date()


def sunday_weekday(d: date):
    # 0 = Sunday ... 6 = Saturday
    return (d.weekday() + 1) % 7


def month_range_for_date(d: date):
    start = d.replace(day=1)
    end = (start + timedelta(days=32)).replace(day=1) - timedelta(days=1)
    return start, end


def to_money(value):
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
