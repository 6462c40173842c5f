"""Event-date extraction and the "Em DD/MM/YYYY, " prefix of long-term memories."""

import re
from datetime import datetime, timedelta
from typing import Optional

from finmem.models.schemas import utc_now

MONTHS = {
    "janeiro": 1, "jan": 1,
    "fevereiro": 2, "fev": 2,
    "março": 3, "marco": 3, "mar": 3,
    "abril": 4, "abr": 4,
    "maio": 5, "mai": 5,
    "junho": 6, "jun": 6,
    "julho": 7, "jul": 7,
    "agosto": 8, "ago": 8,
    "setembro": 9, "set": 9,
    "outubro": 10, "out": 10,
    "novembro": 11, "nov": 11,
    "dezembro": 12, "dez": 12,
}

NUMERIC_DATE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4})\b")
WRITTEN_DATE = re.compile(r"\b(\d{1,2})\s+de\s+(\w+)\s+de\s+(\d{4})\b", re.IGNORECASE)
DATE_PREFIX = re.compile(r"^Em \d{2}/\d{2}/\d{4}, ")

RELATIVE_DAYS = (
    ("anteontem", -2),
    ("ontem", -1),
    ("hoje", 0),
)


def _safe_date(year: int, month: int, day: int, reference: datetime) -> Optional[datetime]:
    try:
        return reference.replace(year=year, month=month, day=day)
    except ValueError:
        return None


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = moment.day
    while True:
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1


def extract_event_date(content: str, now: Optional[datetime] = None) -> datetime:
    """
    Date the content refers to.

    Recognises DD/MM/YYYY, DD-MM-YYYY, "DD de <mês> de YYYY" and relative
    terms (hoje, ontem, semana passada, mês passado, ...). Defaults to now.
    """
    now = now or utc_now()
    if not content:
        return now

    match = NUMERIC_DATE.search(content)
    if match:
        day, month, year = (int(part) for part in match.groups())
        found = _safe_date(year, month, day, now)
        if found:
            return found

    match = WRITTEN_DATE.search(content)
    if match:
        month = MONTHS.get(match.group(2).lower())
        if month:
            found = _safe_date(int(match.group(3)), month, int(match.group(1)), now)
            if found:
                return found

    lowered = content.lower()
    for word, offset in RELATIVE_DAYS:
        if re.search(rf"\b{word}\b", lowered):
            return now + timedelta(days=offset)

    if "esta semana" in lowered or "nesta semana" in lowered:
        return now
    if "semana passada" in lowered:
        return now - timedelta(days=7)
    if "mês passado" in lowered or "mes passado" in lowered:
        return _shift_months(now, -1)
    if "ano passado" in lowered:
        return _shift_months(now, -12)

    return now


def format_date(moment: datetime) -> str:
    return moment.strftime("%d/%m/%Y")


def ensure_date_prefix(content: str, event_date: datetime) -> str:
    """Prefix content with "Em DD/MM/YYYY, ", replacing an existing prefix."""
    prefix = f"Em {format_date(event_date)}, "
    if DATE_PREFIX.match(content):
        return DATE_PREFIX.sub(prefix, content, count=1)
    return prefix + content


def strip_date_prefix(content: str) -> str:
    return DATE_PREFIX.sub("", content, count=1)


def process_date_in_content(
    content: str, now: Optional[datetime] = None
) -> tuple[str, datetime]:
    """Extract the event date and return (prefixed content, event date)."""
    event_date = extract_event_date(content, now)
    return ensure_date_prefix(content, event_date), event_date
