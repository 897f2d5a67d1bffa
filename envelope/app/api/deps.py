# envelope/app/api/deps.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from envelope.app.db import get_db
from envelope.app.domain.dates import UserDateContext, resolve_user_date
from envelope.app.domain.errors import UnauthorizedError
from envelope.app.models import User


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Dev/pilot auth dependency.

    Reads identity from headers:
      - X-User-Email (preferred; will auto-provision user record if missing)
      - X-User-Id    (fallback; must already exist)

    db must be injected via Depends(get_db) so FastAPI doesn't treat Session
    as a Pydantic field.
    """
    email = request.headers.get("X-User-Email")
    user_id = request.headers.get("X-User-Id")
    if not email and not user_id:
        raise UnauthorizedError("Missing X-User-Email or X-User-Id header")

    if email:
        normalized = email.strip().lower()
        if not normalized:
            raise UnauthorizedError("Invalid X-User-Email header")

        user = db.execute(select(User).where(User.email == normalized)).scalars().first()
        if not user:
            user = User(email=normalized, name=normalized.split("@")[0])
            db.add(user)
            db.commit()
            db.refresh(user)
        return user

    user = db.get(User, user_id)
    if not user:
        raise UnauthorizedError("Unknown X-User-Id")
    return user


class UserDateIn(BaseModel):
    """Optional client calendar context carried by mutating requests."""

    model_config = ConfigDict(populate_by_name=True)

    user_date: Optional[date] = Field(None, alias="userDate")
    user_year: Optional[int] = Field(None, alias="userYear")
    user_month: Optional[int] = Field(None, alias="userMonth", ge=1, le=12)

    def context(self) -> UserDateContext:
        return resolve_user_date(self.user_date, self.user_year, self.user_month)


def user_date_query(
    user_date: Optional[date] = Query(None, alias="userDate"),
    user_year: Optional[int] = Query(None, alias="userYear"),
    user_month: Optional[int] = Query(None, alias="userMonth", ge=1, le=12),
) -> UserDateContext:
    return resolve_user_date(user_date, user_year, user_month)
