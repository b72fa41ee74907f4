from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

# Pinned to English so the badge reads the same whatever the host locale is
_MONTHS = ("January", "February", "March", "April", "May", "June",
           "July", "August", "September", "October", "November", "December")
_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_NAME_DIRECTIVE = re.compile(r"%[%aAbB]")


def day_suffix(day: int) -> str:
    if day in (1, 21, 31):
        return "st"
    if day in (2, 22):
        return "nd"
    if day in (3, 23):
        return "rd"
    return "th"


def format_date(value: datetime, date_format: str) -> str:
    """strftime, with `{day}` as the unpadded day of month and English %a/%A/%b/%B names."""

    def english_name(match: re.Match) -> str:
        directive = match.group(0)
        if directive in ("%b", "%B"):
            month = _MONTHS[value.month - 1]
            return month if directive == "%B" else month[:3]
        if directive in ("%a", "%A"):
            weekday = _WEEKDAYS[value.weekday()]
            return weekday if directive == "%A" else weekday[:3]
        return directive

    pattern = _NAME_DIRECTIVE.sub(english_name, date_format.replace("{day}", str(value.day)))
    return value.strftime(pattern)


def _count(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def humanize_days(days: int, max_unit: str = "week", min_unit: str = "day", precision: int = 1) -> str:
    """
    '3 days', '1 week', '2 weeks', or with precision 2 '1 week, 3 days'.
    Units below `min_unit` are dropped; when nothing is left the result is '0 weeks'.
    """
    if days <= 0:
        return "today"

    parts = []
    remaining = days
    if max_unit == "week":
        weeks, remaining = divmod(days, 7)
        if weeks:
            parts.append(_count(weeks, "week"))
    if min_unit == "day" and remaining:
        parts.append(_count(remaining, "day"))
    if not parts:
        return _count(0, min_unit)
    return ", ".join(parts[:max(precision, 1)])


class OverlayTextFormatter:
    """
    Turns an expiration date into the badge text.

    `date` mode:      "LEAVING MAR 3RD"
    `days_left` mode: "LEAVING 2 WEEKS"
    """

    def __init__(
        self,
        text: str = "Leaving",
        mode: str = "date",
        date_format: str = "%b {day}",
        day_suffix: bool = True,
        uppercase: bool = True,
        days_left_max_unit: str = "week",
        days_left_min_unit: str = "day",
        days_left_precision: int = 1,
    ):
        self.text = text
        self.mode = mode.lower()
        self.date_format = date_format
        self.day_suffix = day_suffix
        self.uppercase = uppercase
        self.days_left_max_unit = days_left_max_unit.lower()
        self.days_left_min_unit = days_left_min_unit.lower()
        self.days_left_precision = days_left_precision

    @classmethod
    def from_config(cls, config: dict) -> "OverlayTextFormatter":
        overlay = config.get("overlay", {})
        return cls(
            text=overlay.get("text", "Leaving"),
            mode=overlay.get("text_mode", "date"),
            date_format=overlay.get("date_format", "%b {day}"),
            day_suffix=overlay.get("day_suffix", True),
            uppercase=overlay.get("uppercase", True),
            days_left_max_unit=overlay.get("days_left_max_unit", "week"),
            days_left_min_unit=overlay.get("days_left_min_unit", "day"),
            days_left_precision=int(overlay.get("days_left_precision", 1)),
        )

    def format(self, expiration: datetime, now: Optional[datetime] = None) -> str:
        if self.mode == "days_left":
            now = now or datetime.now(timezone.utc)
            days_left = (expiration.date() - now.date()).days
            humanized = humanize_days(
                days_left, self.days_left_max_unit, self.days_left_min_unit, self.days_left_precision
            )
            overlay_text = " ".join(part for part in (self.text, humanized) if part)
        elif self.mode == "date":
            formatted = format_date(expiration, self.date_format)
            overlay_text = " ".join(part for part in (self.text, formatted) if part)
            if self.day_suffix:
                overlay_text += day_suffix(expiration.day)
        else:
            raise ValueError(f"Unknown overlay text mode: {self.mode}")

        if self.uppercase:
            overlay_text = overlay_text.upper()
        return overlay_text
