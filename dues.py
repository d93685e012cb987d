# dues.py
"""Dues and billing math.

Everything here is a pure function over a records.State (or over a single
subscription). Nothing reads the database; the blueprints load a State
through repository.load_state() and pass it in.
"""
from decimal import Decimal

from errors import NotFound
from records import (
    DELIVERED, DAILY, ALTERNATE, CUSTOM, REFERENCE_UNIT_SIZE,
)
from utils import DEFAULT_TZ, as_local_date, to_money

ZERO = Decimal("0.00")

# rough month: 30 days, 15 alternate days, 4 weeks of custom days
DELIVERIES_PER_MONTH = {DAILY: 30, ALTERNATE: 15}
WEEKS_PER_MONTH = 4


def _require_customer(state, customer_id):
    customer = state.customers.get(customer_id)
    if customer is None:
        raise NotFound("customer", customer_id)
    return customer


def delivered_total(state, customer_id):
    return sum(
        (d.amount for d in state.deliveries.values()
         if d.customer_id == customer_id and d.status == DELIVERED),
        ZERO,
    )


def paid_total(state, customer_id):
    return sum(
        (p.amount for p in state.payments.values() if p.customer_id == customer_id),
        ZERO,
    )


def dues_for(state, customer_id):
    """Signed balance: positive means the customer owes, negative is advance.

    Only delivered deliveries are billed. Payments always subtract in full;
    any delivery ids attached to a payment are ignored here.
    """
    _require_customer(state, customer_id)
    return delivered_total(state, customer_id) - paid_total(state, customer_id)


def all_dues(state):
    """dues_for() of every customer, in one pass over deliveries and payments."""
    balances = {cid: ZERO for cid in state.customers}
    for d in state.deliveries.values():
        if d.status == DELIVERED and d.customer_id in balances:
            balances[d.customer_id] += d.amount
    for p in state.payments.values():
        if p.customer_id in balances:
            balances[p.customer_id] -= p.amount
    return balances


def units_per_delivery(quantity):
    return Decimal(quantity) / Decimal(REFERENCE_UNIT_SIZE)


def delivery_amount(quantity, price_per_unit):
    return to_money(units_per_delivery(quantity) * Decimal(price_per_unit))


def deliveries_per_month(frequency, custom_days=()):
    if frequency == CUSTOM:
        return len(custom_days) * WEEKS_PER_MONTH
    try:
        return DELIVERIES_PER_MONTH[frequency]
    except KeyError:
        raise ValueError(f"unknown frequency {frequency!r}")


def estimated_monthly_bill(subscription, product=None):
    """Projected monthly cost of a subscription from its recurrence rule alone.

    Uses the price captured on the subscription; ``product`` is accepted so
    callers can pass the pair they display, but its current default price
    does not enter the estimate.
    """
    per_month = deliveries_per_month(subscription.frequency, subscription.custom_days)
    return to_money(
        units_per_delivery(subscription.quantity)
        * Decimal(subscription.price_per_unit)
        * per_month
    )


def monthly_estimate_for(state, customer_id):
    """Sum of the estimates of a customer's active subscriptions."""
    _require_customer(state, customer_id)
    return sum(
        (estimated_monthly_bill(s, state.products.get(s.product_id))
         for s in state.subscriptions.values()
         if s.customer_id == customer_id and s.is_active),
        ZERO,
    )


def dues_overview(state):
    rows = []
    balances = all_dues(state)
    for customer in state.customers.values():
        amount = balances[customer.id]
        if amount == 0:
            continue
        rows.append({
            "customer": customer,
            "dues": amount,
            "overdue": amount > 0,
            "advance": amount < 0,
        })
    return {
        "customers": rows,
        "total_outstanding": sum((r["dues"] for r in rows if r["dues"] > 0), ZERO),
        "total_collected": sum((p.amount for p in state.payments.values()), ZERO),
        "customers_with_overdues": sum(1 for r in rows if r["overdue"]),
    }


def customer_statement(state, customer_id, start, end, tz_name=DEFAULT_TZ):
    """Delivered lines and payments for [start, end] with running balances."""
    customer = _require_customer(state, customer_id)

    def before(d):
        return d < start

    def within(d):
        return start <= d <= end

    delivered = [d for d in state.deliveries.values()
                 if d.customer_id == customer_id and d.status == DELIVERED]
    payments = [p for p in state.payments.values() if p.customer_id == customer_id]

    opening = (
        sum((d.amount for d in delivered if before(d.date)), ZERO)
        - sum((p.amount for p in payments if before(as_local_date(p.date, tz_name))), ZERO)
    )
    lines = sorted((d for d in delivered if within(d.date)), key=lambda d: d.date)
    received = sorted((p for p in payments if within(as_local_date(p.date, tz_name))), key=lambda p: p.date)
    billed = sum((d.amount for d in lines), ZERO)
    paid = sum((p.amount for p in received), ZERO)
    return {
        "customer": customer,
        "start": start,
        "end": end,
        "opening_balance": opening,
        "deliveries": [(d, state.products.get(d.product_id)) for d in lines],
        "payments": received,
        "billed": billed,
        "paid": paid,
        "closing_balance": opening + billed - paid,
    }
