from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from envelope.app.api.deps import UserDateIn, get_current_user, user_date_query
from envelope.app.db import get_db
from envelope.app.domain.contracts import AccountContract
from envelope.app.domain.dates import UserDateContext
from envelope.app.models import ACCOUNT_TYPES, User
from envelope.app.services import account_service

router = APIRouter(prefix="/api", tags=["accounts"])


class AccountCreateIn(UserDateIn):
    name: str = Field(..., min_length=1, max_length=200)
    account_type: str
    balance: float = 0.0

    @field_validator("account_type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in ACCOUNT_TYPES:
            raise ValueError(f"account_type must be one of {', '.join(ACCOUNT_TYPES)}")
        return value


class AccountUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class ReorderIn(BaseModel):
    account_ids: List[str]


class ReconcileIn(UserDateIn):
    actual_balance: float


class TrackingBalanceIn(UserDateIn):
    balance: float


class CreditCardPaymentIn(UserDateIn):
    amount: float = Field(..., gt=0)
    from_account_id: str
    memo: Optional[str] = None
    payment_date: Optional[date] = None
    is_cleared: bool = False


class BalancePointOut(BaseModel):
    date: date
    balance: float
    label: str
    transaction_id: Optional[str] = None


@router.post("/budgets/{budget_id}/accounts")
def create_account(
    budget_id: str,
    req: AccountCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.create_account(
        db,
        user,
        budget_id,
        req.context(),
        name=req.name,
        account_type=req.account_type,
        balance=req.balance,
    )


@router.get("/budgets/{budget_id}/accounts", response_model=List[AccountContract])
def list_accounts(budget_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return account_service.list_accounts(db, user, budget_id)


@router.put("/budgets/{budget_id}/accounts/reorder", response_model=List[AccountContract])
def reorder_accounts(
    budget_id: str,
    req: ReorderIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.reorder_accounts(db, user, budget_id, req.account_ids)


@router.get("/accounts/{account_id}", response_model=AccountContract)
def get_account(account_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return account_service.get_account(db, user, account_id)


@router.patch("/accounts/{account_id}")
def update_account(
    account_id: str,
    req: AccountUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.update_account(db, user, account_id, name=req.name)


@router.post("/accounts/{account_id}/close")
def close_account(
    account_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.close_account(db, user, account_id, ctx)


@router.post("/accounts/{account_id}/reopen")
def reopen_account(
    account_id: str,
    ctx: UserDateContext = Depends(user_date_query),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.reopen_account(db, user, account_id, ctx)


@router.post("/accounts/{account_id}/reconcile")
def reconcile_account(
    account_id: str,
    req: ReconcileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.reconcile_account(db, user, account_id, req.actual_balance, req.context())


@router.post("/accounts/{account_id}/tracking-balance")
def update_tracking_balance(
    account_id: str,
    req: TrackingBalanceIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.update_tracking_balance(db, user, account_id, req.balance, req.context())


@router.get("/accounts/{account_id}/balance-history", response_model=List[BalancePointOut])
def balance_history(account_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return account_service.balance_history(db, user, account_id)


@router.get("/accounts/{account_id}/transfer-options", response_model=List[AccountContract])
def transfer_options(account_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return account_service.transfer_options(db, user, account_id)


@router.post("/accounts/{account_id}/credit-card-payment")
def credit_card_payment(
    account_id: str,
    req: CreditCardPaymentIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return account_service.credit_card_payment(
        db,
        user,
        account_id,
        req.context(),
        amount=req.amount,
        from_account_id=req.from_account_id,
        memo=req.memo,
        payment_date=req.payment_date,
        is_cleared=req.is_cleared,
    )
