from __future__ import annotations

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from envelope.app.api.deps import UserDateIn, get_current_user, user_date_query
from envelope.app.db import get_db
from envelope.app.domain.contracts import TransactionContract, TransactionResult
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import User
from envelope.app.services import transaction_service

router = APIRouter(prefix="/api", tags=["transactions"])

_CONTEXT_FIELDS = {"user_date", "user_year", "user_month"}


class TransactionCreateIn(UserDateIn):
    account_id: str
    date: dt.date
    amount: float
    payee: str = Field(..., min_length=1, max_length=200)
    memo: Optional[str] = None
    category_id: Optional[str] = None
    is_cleared: bool = False
    is_reconciled: bool = False


class TransactionUpdateIn(UserDateIn):
    account_id: Optional[str] = None
    date: Optional[dt.date] = None
    amount: Optional[float] = None
    payee: Optional[str] = Field(None, min_length=1, max_length=200)
    memo: Optional[str] = None
    category_id: Optional[str] = None
    is_cleared: Optional[bool] = None


class BulkDeleteIn(UserDateIn):
    transaction_ids: List[str]


@router.post("/transactions", response_model=TransactionResult)
def create_transaction(
    req: TransactionCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.create_transaction(
        db,
        user,
        req.context(),
        account_id=req.account_id,
        txn_date=req.date,
        amount=req.amount,
        payee=req.payee,
        memo=req.memo,
        category_id=req.category_id,
        is_cleared=req.is_cleared,
        is_reconciled=req.is_reconciled,
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionContract)
def get_transaction(transaction_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return transaction_service.get_transaction(db, user, transaction_id)


@router.patch("/transactions/{transaction_id}", response_model=TransactionResult)
def update_transaction(
    transaction_id: str,
    req: TransactionUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = req.model_dump(exclude_unset=True, exclude=_CONTEXT_FIELDS)
    return transaction_service.update_transaction(db, user, transaction_id, changes, req.context())


@router.delete("/transactions/{transaction_id}", response_model=TransactionResult)
def delete_transaction(
    transaction_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.delete_transaction(db, user, transaction_id, ctx)


@router.post("/transactions/{transaction_id}/toggle-cleared", response_model=TransactionResult)
def toggle_cleared(
    transaction_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.toggle_cleared(db, user, transaction_id, ctx)


@router.get("/accounts/{account_id}/transactions", response_model=List[TransactionContract])
def list_account_transactions(
    account_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.list_for_account(db, user, account_id)


@router.get("/budgets/{budget_id}/transactions", response_model=List[TransactionContract])
def list_budget_transactions(
    budget_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.list_budget_transactions(db, user, budget_id)


@router.post("/budgets/{budget_id}/transactions/bulk-delete")
def bulk_delete_transactions(
    budget_id: str,
    req: BulkDeleteIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return transaction_service.bulk_delete_transactions(db, user, budget_id, req.transaction_ids, req.context())
