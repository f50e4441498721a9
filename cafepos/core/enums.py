from enum import Enum


class OrderStatus(str, Enum):
    new = "new"
    pending_payment = "pending_payment"
    process = "process"
    done = "done"
    cancel = "cancel"


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    cash = "cash"
    qris = "qris"
    bank = "bank"
    ewallet = "ewallet"


class OrderType(str, Enum):
    dine_in = "dine-in"
    take_away = "take-away"


class TableStatus(str, Enum):
    available = "available"
    occupied = "occupied"
    reserved = "reserved"
    dirty = "dirty"


class Role(str, Enum):
    owner = "owner"
    admin = "admin"
    cashier = "cashier"


PRIVILEGED_ROLES = {Role.owner, Role.admin}
TERMINAL_STATUSES = {OrderStatus.done, OrderStatus.cancel}
