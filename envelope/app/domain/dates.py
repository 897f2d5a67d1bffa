from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from envelope.app.domain.errors import ValidationError


def server_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class UserDateContext:
    """The caller's notion of "today" and "current month"."""

    year: int
    month: int
    today: date
    from_client: bool

    @property
    def period(self) -> Tuple[int, int]:
        return self.year, self.month


def resolve_user_date(
    user_date: Optional[date] = None,
    user_year: Optional[int] = None,
    user_month: Optional[int] = None,
    *,
    today: Optional[date] = None,
) -> UserDateContext:
    if user_month is not None and not 1 <= user_month <= 12:
        raise ValidationError("userMonth must be between 1 and 12")
    explicit_period = user_year is not None and user_month is not None
    if user_date is not None:
        if explicit_period:
            return UserDateContext(user_year, user_month, user_date, True)
        return UserDateContext(user_date.year, user_date.month, user_date, True)
    # a month without a day only picks the period; "today" stays the server's
    now = today or server_today()
    if explicit_period:
        return UserDateContext(user_year, user_month, now, False)
    return UserDateContext(now.year, now.month, now, False)


def period_of(value: date) -> Tuple[int, int]:
    return value.year, value.month


def previous_period(year: int, month: int) -> Tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def validate_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if year < 1900 or year > 9999:
        raise ValidationError("year out of range")


def ensure_not_future(txn_date: date, ctx: UserDateContext, *, backstop: bool) -> None:
    """
    Reject dates after the caller's today.

    Without a client date the server date is used with one day of slack for
    callers ahead of UTC; with backstop disabled nothing is checked.
    """
    if ctx.from_client:
        if txn_date > ctx.today:
            raise ValidationError("transaction date cannot be in the future")
        return
    if backstop and txn_date > ctx.today + timedelta(days=1):
        raise ValidationError("transaction date cannot be in the future")
