import calendar
from datetime import date, timedelta

from vault_assistant.models import DateRange

MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

MONTH_ABBREVIATIONS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}


def month_number(name: str) -> int | None:
    key = name.strip().lower().rstrip(".")
    if key in MONTHS:
        return MONTHS.index(key) + 1
    return MONTH_ABBREVIATIONS.get(key)


def month_range(year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(start=date(year, month, 1), end=date(year, month, last_day))


def shift_months(value: date, months: int) -> date:
    """Move ``value`` by whole months, clamping the day to the target month."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def infer_year(month: int, today: date) -> int:
    # A named month later than the current one refers to last year
    if month > today.month:
        return today.year - 1
    return today.year


def quarter_range(year: int, quarter: int) -> DateRange:
    first_month = (quarter - 1) * 3 + 1
    start = date(year, first_month, 1)
    end = month_range(year, first_month + 2).end
    return DateRange(start=start, end=end)


def relative_range(amount: int, unit: str, today: date) -> DateRange:
    unit = unit.lower().rstrip("s")
    if unit == "day":
        start = today - timedelta(days=amount)
    elif unit == "week":
        start = today - timedelta(weeks=amount)
    elif unit == "month":
        start = shift_months(today, -amount)
    elif unit == "year":
        start = shift_months(today, -12 * amount)
    else:
        raise ValueError(f"unsupported unit '{unit}'")
    return DateRange(start=start, end=today)


def period_range(period: str, today: date) -> DateRange | None:
    """Resolve a keyword period tag such as ``last_month`` against ``today``."""
    if period == "today":
        return DateRange(start=today, end=today)
    if period == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(start=yesterday, end=yesterday)
    if period == "this_week":
        start = today - timedelta(days=today.weekday())
        return DateRange(start=start, end=today)
    if period == "last_week":
        this_monday = today - timedelta(days=today.weekday())
        start = this_monday - timedelta(days=7)
        return DateRange(start=start, end=this_monday - timedelta(days=1))
    if period == "this_month":
        return DateRange(start=today.replace(day=1), end=today)
    if period == "last_month":
        previous = shift_months(today.replace(day=1), -1)
        return month_range(previous.year, previous.month)
    if period == "this_quarter":
        quarter = (today.month - 1) // 3 + 1
        return DateRange(start=quarter_range(today.year, quarter).start, end=today)
    if period == "last_quarter":
        quarter = (today.month - 1) // 3
        year = today.year
        if quarter == 0:
            quarter = 4
            year -= 1
        return quarter_range(year, quarter)
    if period == "this_year":
        return DateRange(start=date(today.year, 1, 1), end=today)
    if period == "last_year":
        return DateRange(start=date(today.year - 1, 1, 1), end=date(today.year - 1, 12, 31))
    return None


def year_range(year: int) -> DateRange:
    return DateRange(start=date(year, 1, 1), end=date(year, 12, 31))


def format_long_date(value: date) -> str:
    return f"{calendar.month_name[value.month]} {value.day}, {value.year}"
