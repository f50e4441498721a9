"""
Rebuilds cash_total / non_cash_total / expenses_total of a shift from its
paid orders and recorded expenses.
Usage: python scripts/recalc_shift_totals.py <SHIFT_ID>
"""
import sys

from cafepos.db import SessionLocal
from cafepos.models.shift import Shift
from cafepos.services.ledger import recompute_totals


def main():
    if len(sys.argv) < 2:
        raise SystemExit("Usage: recalc_shift_totals.py <SHIFT_ID>")
    sid = int(sys.argv[1])
    s = SessionLocal()
    try:
        shift = s.get(Shift, sid)
        if shift is None:
            raise SystemExit(f"shift {sid} not found")
        out = recompute_totals(s, shift)
        s.commit()
        print(f"RECALC -> shift_id={sid} orders={out['orders']} before={out['before']} after={out['after']}")
    finally:
        s.close()


if __name__ == "__main__":
    main()
