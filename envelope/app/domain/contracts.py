from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class _Contract(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BudgetContract(_Contract):
    id: str
    name: str
    currency: str
    currency_placement: str
    number_format: str
    date_format: str
    created_at: datetime
    updated_at: datetime


class AccountContract(_Contract):
    id: str
    budget_id: str
    name: str
    account_type: str
    account_balance: float
    cleared_balance: float
    uncleared_balance: float
    working_balance: float
    is_active: bool
    display_order: int
    payment_category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CategoryGroupContract(_Contract):
    id: str
    budget_id: str
    name: str
    display_order: int
    is_system_group: bool
    system_kind: Optional[str] = None


class CategoryContract(_Contract):
    id: str
    budget_id: str
    category_group_id: str
    name: str
    display_order: int
    is_hidden: bool
    previous_group_id: Optional[str] = None


class CategoryBalanceContract(_Contract):
    category_id: str
    year: int
    month: int
    assigned: float
    activity: float
    available: float


class TransactionContract(_Contract):
    id: str
    budget_id: str
    account_id: str
    category_id: Optional[str] = None
    date: date
    amount: float
    payee: str
    memo: Optional[str] = None
    is_cleared: bool
    is_reconciled: bool
    transfer_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CreditCardDebtContract(_Contract):
    id: str
    transaction_id: str
    credit_card_account_id: str
    original_category_id: Optional[str] = None
    debt_amount: float
    covered_amount: float
    created_at: datetime


class TransactionResult(BaseModel):
    """Response shared by the transaction-mutating operations."""

    transaction: Optional[TransactionContract] = None
    linked_transaction: Optional[TransactionContract] = None
    account: Optional[AccountContract] = None
    source_account: Optional[AccountContract] = None
    target_account: Optional[AccountContract] = None
    ready_to_assign: float
    category_balances: List[CategoryBalanceContract] = []
    warnings: List[str] = []


class AuditFinding(BaseModel):
    invariant: str
    entity_id: str
    message: str
    expected: Optional[float] = None
    actual: Optional[float] = None
    details: Optional[Dict[str, str]] = None


class AutoAssignItemContract(_Contract):
    id: str
    category_id: str
    amount: float
    created_at: datetime
    updated_at: datetime


class AutoAssignConfigurationContract(BaseModel):
    name: str
    budget_id: str
    items: List[AutoAssignItemContract]
    created_at: datetime
    updated_at: datetime


class AutoAssignSummary(BaseModel):
    name: str
    budget_id: str
    item_count: int
    total_amount: float
    created_at: datetime
    updated_at: datetime
