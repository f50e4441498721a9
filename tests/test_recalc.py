from cafepos.models.shift import Shift
from cafepos.services.ledger import recompute_totals


def test_recompute_repairs_drifted_totals(client, db_session, open_shift, new_order):
    shift = open_shift(100000)
    a = new_order(50000)
    b = new_order(30000, method="ewallet")
    client.post(f"/orders/{a['id']}/pay")
    client.post(f"/orders/{b['id']}/pay")
    client.post("/shift/expenses", json={"amount": 10000, "description": "ice"})
    refunded = new_order(20000)
    client.post(f"/orders/{refunded['id']}/pay")
    client.patch(f"/orders/{refunded['id']}/status", json={"status": "cancel", "reason": "Customer cancelled"})

    s = db_session.get(Shift, shift["shift_id"])
    s.cash_total = 1
    s.non_cash_total = 2
    db_session.commit()

    out = recompute_totals(db_session, s)
    db_session.commit()

    assert out["orders"] == 3
    assert out["after"] == (160000.0, 30000.0, 10000.0)
    bal = client.get("/shift/current-balance").json()
    assert bal["cash_total"] == 160000
    assert bal["non_cash_total"] == 30000
