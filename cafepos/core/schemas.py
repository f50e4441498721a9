from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, TableStatus


# ====== Orders ======
class OrderItemIn(BaseModel):
    menu_id: int
    name: str
    qty: int = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    note: Optional[str] = None


class OrderCreate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    order_type: OrderType = OrderType.dine_in
    table_id: Optional[int] = None
    items: List[OrderItemIn] = Field(default_factory=list)
    payment_method: PaymentMethod = PaymentMethod.cash
    notes: Optional[str] = None


class OrderItemOut(BaseModel):
    line_id: Optional[int] = None
    menu_id: int
    name: str
    qty: int
    unit_price: float
    subtotal: float
    note: Optional[str] = None


class OrderOut(BaseModel):
    id: int
    order_no: str
    created_at: datetime
    business_date: date
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_id: Optional[int] = None
    order_type: OrderType
    table_id: Optional[int] = None
    items: List[OrderItemOut] = Field(default_factory=list)
    total: float = 0.0
    payment_method: PaymentMethod = PaymentMethod.cash
    payment_status: PaymentStatus = PaymentStatus.unpaid
    status: OrderStatus = OrderStatus.new
    notes: Optional[str] = None
    archived: bool = False
    merged_into_id: Optional[int] = None
    shift_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None
    by_user: Optional[str] = None
    prepayment_required: Optional[bool] = None


class PayRequest(BaseModel):
    method: Optional[PaymentMethod] = None
    by_user: Optional[str] = None
    prepayment_required: Optional[bool] = None


class PaymentResult(BaseModel):
    order: OrderOut
    shift_id: Optional[int] = None
    method: PaymentMethod
    amount: float
    points_earned: int = 0
    replay: bool = False


class MergeRequest(BaseModel):
    ids: List[int] = Field(..., min_length=2)
    by_user: Optional[str] = None


class MergeResult(BaseModel):
    survivor: OrderOut
    archived_ids: List[int]


# ====== Shift ======
class ShiftStart(BaseModel):
    opening_float: float = Field(..., ge=0)
    cashier_id: str
    cashier_name: str


class ShiftClose(BaseModel):
    ending_cash_count: float = Field(..., ge=0)
    by_user: Optional[str] = None


class ExpenseIn(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    approved_by: Optional[str] = None


class ShiftBalance(BaseModel):
    open: bool = False
    shift_id: Optional[int] = None
    cashier_id: Optional[str] = None
    cashier_name: Optional[str] = None
    opening_float: float = 0.0
    cash_total: float = 0.0
    non_cash_total: float = 0.0
    expenses_total: float = 0.0
    started_at: Optional[datetime] = None


class ShiftSummary(ShiftBalance):
    ending_cash_count: Optional[float] = None
    expected_cash: Optional[float] = None
    difference: Optional[float] = None
    closed_at: Optional[datetime] = None


# ====== Tables ======
class TableOut(BaseModel):
    id: int
    number: str
    capacity: int = 4
    status: TableStatus = TableStatus.available
    occupied_since: Optional[datetime] = None


class TableStatusUpdate(BaseModel):
    status: TableStatus


class TableMoveResult(BaseModel):
    from_table: TableOut
    to_table: TableOut
    moved_order_ids: List[int] = []
