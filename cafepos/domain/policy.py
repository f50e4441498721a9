from dataclasses import dataclass

from ..core.enums import PRIVILEGED_ROLES, Role
from ..core.errors import PolicyError


@dataclass(frozen=True)
class OrderPolicy:
    prepayment_required: bool = False

    @classmethod
    def from_settings(cls, settings) -> "OrderPolicy":
        return cls(prepayment_required=bool(settings.prepayment_required))


@dataclass(frozen=True)
class OperatorContext:
    """Who is operating the register; passed explicitly into every action."""

    user_id: str
    name: str
    role: Role = Role.cashier

    @property
    def is_privileged(self) -> bool:
        return Role(self.role) in PRIVILEGED_ROLES


def _shift_open(balance) -> bool:
    return bool(balance is not None and balance.open)


def ensure_can_view(ctx: OperatorContext, balance) -> None:
    # Cashiers see the open-shift screen instead of the register.
    if not _shift_open(balance) and not ctx.is_privileged:
        raise PolicyError("SHIFT_REQUIRED", "Open a shift before using the register")


def ensure_can_operate(ctx: OperatorContext, balance) -> None:
    if _shift_open(balance):
        return
    if ctx.is_privileged:
        raise PolicyError("OBSERVE_ONLY", "No shift is open; the register is read-only")
    raise PolicyError("SHIFT_REQUIRED", "Open a shift before using the register")
