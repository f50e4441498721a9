from datetime import date
from typing import List, Optional

from ..core.enums import OrderStatus, PaymentMethod, TableStatus
from ..core.schemas import (
    MergeResult,
    OrderCreate,
    OrderOut,
    PaymentResult,
    ShiftBalance,
    ShiftSummary,
    TableMoveResult,
    TableOut,
)
from .transport import ApiClient


class OrderResource:
    def __init__(self, api: ApiClient):
        self.api = api

    async def create(self, draft: OrderCreate) -> OrderOut:
        js = await self.api.call("POST", "/orders", json=draft.model_dump(mode="json"))
        return OrderOut.model_validate(js)

    async def list(
        self,
        status: Optional[OrderStatus] = None,
        business_date: Optional[date] = None,
        include_archived: bool = False,
    ) -> List[OrderOut]:
        params = {"include_archived": str(include_archived).lower()}
        if status is not None:
            params["status"] = OrderStatus(status).value
        if business_date is not None:
            params["date"] = business_date.isoformat()
        js = await self.api.call("GET", "/orders", params=params)
        return [OrderOut.model_validate(o) for o in js]

    async def get(self, order_id: int) -> OrderOut:
        return OrderOut.model_validate(await self.api.call("GET", f"/orders/{order_id}"))

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        reason: Optional[str] = None,
        by_user: Optional[str] = None,
        prepayment_required: Optional[bool] = None,
    ) -> OrderOut:
        body = {
            "status": OrderStatus(status).value,
            "reason": reason,
            "by_user": by_user,
            "prepayment_required": prepayment_required,
        }
        js = await self.api.call("PATCH", f"/orders/{order_id}/status", json=body)
        return OrderOut.model_validate(js)

    async def confirm_payment(
        self,
        order_id: int,
        method: Optional[PaymentMethod] = None,
        by_user: Optional[str] = None,
        prepayment_required: Optional[bool] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        body = {
            "method": PaymentMethod(method).value if method else None,
            "by_user": by_user,
            "prepayment_required": prepayment_required,
        }
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        js = await self.api.call("POST", f"/orders/{order_id}/pay", json=body, headers=headers)
        return PaymentResult.model_validate(js)

    async def merge(self, ids: List[int], by_user: Optional[str] = None) -> MergeResult:
        js = await self.api.call("POST", "/orders/merge", json={"ids": list(ids), "by_user": by_user})
        return MergeResult.model_validate(js)

    async def active_by_phone(self, phone: str) -> dict:
        return await self.api.call("GET", "/orders/active-by-phone", params={"phone": phone})


class ShiftResource:
    def __init__(self, api: ApiClient):
        self.api = api

    async def current_balance(self) -> ShiftBalance:
        return ShiftBalance.model_validate(await self.api.call("GET", "/shift/current-balance"))

    async def start(self, opening_float: float, cashier_id: str, cashier_name: str) -> ShiftBalance:
        body = {"opening_float": opening_float, "cashier_id": cashier_id, "cashier_name": cashier_name}
        return ShiftBalance.model_validate(await self.api.call("POST", "/shift/start", json=body))

    async def close(self, ending_cash_count: float, by_user: Optional[str] = None) -> ShiftSummary:
        body = {"ending_cash_count": ending_cash_count, "by_user": by_user}
        return ShiftSummary.model_validate(await self.api.call("POST", "/shift/close", json=body))

    async def record_expense(self, amount: float, description: str, approved_by: Optional[str] = None) -> ShiftBalance:
        body = {"amount": amount, "description": description, "approved_by": approved_by}
        js = await self.api.call("POST", "/shift/expenses", json=body)
        return ShiftBalance.model_validate(js["balance"])


class TableResource:
    def __init__(self, api: ApiClient):
        self.api = api

    async def list(self) -> List[TableOut]:
        return [TableOut.model_validate(t) for t in await self.api.call("GET", "/tables")]

    async def update_status(self, table_id: int, status: TableStatus) -> TableOut:
        body = {"status": TableStatus(status).value}
        return TableOut.model_validate(await self.api.call("PATCH", f"/tables/{table_id}/status", json=body))

    async def clean(self, table_id: int) -> TableOut:
        return TableOut.model_validate(await self.api.call("POST", f"/tables/{table_id}/clean"))

    async def move(self, from_id: int, to_id: int) -> TableMoveResult:
        return TableMoveResult.model_validate(await self.api.call("POST", f"/tables/{from_id}/move/{to_id}"))
