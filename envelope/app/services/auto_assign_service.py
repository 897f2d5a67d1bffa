"""
Named auto-assign presets.

A preset is a list of (category, amount) lines stored under one name per
budget. Applying it adds every amount to its category's assigned for the
period, exactly like a batch assign.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from envelope.app.domain import money
from envelope.app.domain.contracts import (
    AutoAssignConfigurationContract,
    AutoAssignItemContract,
    AutoAssignSummary,
)
from envelope.app.domain.dates import UserDateContext
from envelope.app.domain.errors import ConflictError, NotFoundError, ValidationError
from envelope.app.models import AutoAssignConfiguration, Category, User, utcnow
from envelope.app.services import category_service
from envelope.app.services.store import (
    card_for_payment_category,
    category_in_budget,
    require_budget,
    unit_of_work,
)

logger = logging.getLogger(__name__)


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("configuration name is required")
    if len(cleaned) > 200:
        raise ValidationError("configuration name is too long")
    return cleaned


def _lines(db: Session, budget_id: str, name: str) -> List[AutoAssignConfiguration]:
    return (
        db.execute(
            select(AutoAssignConfiguration)
            .where(AutoAssignConfiguration.budget_id == budget_id, AutoAssignConfiguration.name == name)
            .order_by(AutoAssignConfiguration.position, AutoAssignConfiguration.created_at)
        )
        .scalars()
        .all()
    )


def _require_lines(db: Session, budget_id: str, name: str) -> List[AutoAssignConfiguration]:
    lines = _lines(db, budget_id, name)
    if not lines:
        raise NotFoundError("auto-assign configuration not found")
    return lines


def _validate_items(db: Session, budget_id: str, items: List[Dict[str, Any]]) -> List[Tuple[Category, Decimal]]:
    if not items:
        raise ValidationError("a configuration needs at least one item")
    seen = set()
    validated = []
    for item in items:
        category = category_in_budget(db, item.get("category_id"), budget_id)
        if category.id in seen:
            raise ValidationError("a category can appear only once per configuration")
        if category.is_hidden:
            raise ValidationError("hidden categories cannot be used in auto-assign configurations")
        if card_for_payment_category(db, category.id) is not None:
            raise ValidationError("credit card payment categories cannot be auto-assigned")
        amount = money.to_decimal(item.get("amount"))
        if money.to_cents(amount) <= 0:
            raise ValidationError("auto-assign amounts must be positive")
        seen.add(category.id)
        validated.append((category, amount))
    return validated


def _insert_lines(db: Session, budget_id: str, name: str, items: List[Tuple[Category, Decimal]]) -> None:
    for position, (category, amount) in enumerate(items):
        db.add(
            AutoAssignConfiguration(
                budget_id=budget_id,
                name=name,
                category_id=category.id,
                amount=amount,
                position=position,
            )
        )
    db.flush()


def _to_contract(lines: List[AutoAssignConfiguration]) -> AutoAssignConfigurationContract:
    first = lines[0]
    return AutoAssignConfigurationContract(
        name=first.name,
        budget_id=first.budget_id,
        items=[AutoAssignItemContract.model_validate(line) for line in lines],
        created_at=min(line.created_at for line in lines),
        updated_at=max(line.updated_at for line in lines),
    )


def summaries(db: Session, budget_id: str) -> List[AutoAssignSummary]:
    rows = (
        db.execute(
            select(AutoAssignConfiguration)
            .where(AutoAssignConfiguration.budget_id == budget_id)
            .order_by(AutoAssignConfiguration.name, AutoAssignConfiguration.position)
        )
        .scalars()
        .all()
    )
    grouped: Dict[str, List[AutoAssignConfiguration]] = {}
    for row in rows:
        grouped.setdefault(row.name, []).append(row)
    return [
        AutoAssignSummary(
            name=name,
            budget_id=budget_id,
            item_count=len(lines),
            total_amount=money.as_float(money.add(*[line.amount for line in lines])),
            created_at=min(line.created_at for line in lines),
            updated_at=max(line.updated_at for line in lines),
        )
        for name, lines in grouped.items()
    ]


def list_configurations(db: Session, user: User, budget_id: str) -> List[AutoAssignSummary]:
    require_budget(db, budget_id, user)
    return summaries(db, budget_id)


def get_configuration(db: Session, user: User, budget_id: str, name: str) -> AutoAssignConfigurationContract:
    require_budget(db, budget_id, user)
    return _to_contract(_require_lines(db, budget_id, name))


def create_configuration(
    db: Session,
    user: User,
    budget_id: str,
    name: str,
    items: List[Dict[str, Any]],
) -> AutoAssignConfigurationContract:
    require_budget(db, budget_id, user)
    name = _clean_name(name)
    with unit_of_work(db, budget_id):
        if _lines(db, budget_id, name):
            raise ConflictError("an auto-assign configuration with this name already exists")
        _insert_lines(db, budget_id, name, _validate_items(db, budget_id, items))
    logger.info("auto-assign configuration created budget=%s name=%s", budget_id, name)
    return _to_contract(_lines(db, budget_id, name))


def update_configuration(
    db: Session,
    user: User,
    budget_id: str,
    name: str,
    *,
    new_name: Optional[str] = None,
    items: Optional[List[Dict[str, Any]]] = None,
) -> AutoAssignConfigurationContract:
    """Rename the preset and/or replace all of its lines."""
    require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        _require_lines(db, budget_id, name)
        if new_name is not None:
            cleaned = _clean_name(new_name)
            if cleaned != name:
                if _lines(db, budget_id, cleaned):
                    raise ConflictError("an auto-assign configuration with this name already exists")
                db.execute(
                    update(AutoAssignConfiguration)
                    .where(AutoAssignConfiguration.budget_id == budget_id, AutoAssignConfiguration.name == name)
                    .values(name=cleaned, updated_at=utcnow())
                    .execution_options(synchronize_session="fetch")
                )
                name = cleaned
        if items is not None:
            validated = _validate_items(db, budget_id, items)
            db.execute(
                delete(AutoAssignConfiguration)
                .where(AutoAssignConfiguration.budget_id == budget_id, AutoAssignConfiguration.name == name)
                .execution_options(synchronize_session="fetch")
            )
            _insert_lines(db, budget_id, name, validated)
    return _to_contract(_lines(db, budget_id, name))


def delete_configuration(db: Session, user: User, budget_id: str, name: str) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    with unit_of_work(db, budget_id):
        lines = _require_lines(db, budget_id, name)
        for line in lines:
            db.delete(line)
    logger.info("auto-assign configuration deleted budget=%s name=%s", budget_id, name)
    return {"deleted": True, "name": name}


def apply_configuration(
    db: Session,
    user: User,
    budget_id: str,
    name: str,
    ctx: UserDateContext,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> Dict[str, Any]:
    require_budget(db, budget_id, user)
    items = [
        {"category_id": line.category_id, "amount": line.amount}
        for line in _require_lines(db, budget_id, name)
    ]
    out = category_service.batch_assign(db, user, budget_id, items, ctx, year=year, month=month)
    out["configuration"] = name
    return out
