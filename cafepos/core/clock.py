from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC; the DateTime columns carry no zone."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_day() -> date:
    """The café's local calendar day, used to group orders."""
    return date.today()
