import datetime

TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def utc_today() -> datetime.date:
    return utc_now().date()


def to_utc_datetime(value) -> datetime.datetime | None:
    """Aware values are converted to UTC; naive values and stored strings are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc_datetime(parsed)


def to_utc_date(value) -> datetime.date | None:
    """Projects any timestamp-ish value onto its UTC calendar day."""
    if value is None:
        return None
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.datetime):
        return to_utc_datetime(value).date()
    text = str(value).strip()
    if not text:
        return None
    if len(text) == 10:
        try:
            return datetime.date.fromisoformat(text)
        except ValueError:
            return None
    dt = to_utc_datetime(text)
    return dt.date() if dt else None


def format_ts(value: datetime.datetime) -> str:
    return to_utc_datetime(value).strftime(TS_FORMAT)
