# scheduler.py
"""Turns subscriptions into dated deliveries and groups deliveries into routes.

deliveries_for_date() is a read over existing Delivery records. Rows are
only created by materialize_deliveries(), which is safe to run repeatedly
for the same day.
"""
import logging
import uuid
from dataclasses import replace
from decimal import Decimal

from dues import delivery_amount
from records import (
    PENDING, DELIVERED, MISSED, COMPLETED, PARTIAL, FILTER_ALL, ROUTE_FILTERS,
    DAILY, ALTERNATE, CUSTOM, Delivery, DeliveryLine, RouteItem, save,
)
from utils import DEFAULT_TZ, as_local_date, sunday_weekday

logger = logging.getLogger(__name__)


def route_status(lines):
    """completed if every line is delivered, partial if some are, else pending."""
    statuses = [line.delivery.status for line in lines]
    delivered = sum(1 for s in statuses if s == DELIVERED)
    if statuses and delivered == len(statuses):
        return COMPLETED
    if delivered:
        return PARTIAL
    return PENDING


def deliveries_for_date(state, day, tz_name=DEFAULT_TZ):
    """Route items for one calendar day, one per customer.

    Deliveries whose customer or product no longer resolves are dropped.
    Order of the returned items is not meaningful.
    """
    day = as_local_date(day, tz_name)
    grouped = {}
    for delivery in state.deliveries.values():
        if delivery.date != day:
            continue
        customer = state.customers.get(delivery.customer_id)
        product = state.products.get(delivery.product_id)
        if customer is None or product is None:
            logger.warning("Dropping delivery %s on %s: customer or product missing",
                           delivery.id, day)
            continue
        grouped.setdefault(customer.id, (customer, []))[1].append(
            DeliveryLine(delivery=delivery, product=product))

    items = []
    for customer, lines in grouped.values():
        items.append(RouteItem(
            customer=customer,
            lines=tuple(lines),
            total_amount=sum((line.delivery.amount for line in lines), Decimal("0.00")),
            status=route_status(lines),
        ))
    return items


def matches_filter(item, status_filter):
    statuses = [line.delivery.status for line in item.lines]
    if status_filter == FILTER_ALL:
        return True
    if status_filter == PENDING:
        return PENDING in statuses
    if status_filter == DELIVERED:
        return item.status == COMPLETED
    if status_filter == MISSED:
        return MISSED in statuses
    raise ValueError(f"unknown route filter {status_filter!r}")


def filter_route(items, status_filter=FILTER_ALL):
    if status_filter not in ROUTE_FILTERS:
        raise ValueError(f"unknown route filter {status_filter!r}")
    return [item for item in items if matches_filter(item, status_filter)]


def filter_counts(items):
    # tab badges; same predicate as filter_route so counts and lists agree
    return {f: len(filter_route(items, f)) for f in ROUTE_FILTERS}


def route_summary(items):
    lines = [line for item in items for line in item.lines]
    return {
        "customers": len(items),
        "deliveries": len(lines),
        "delivered": sum(1 for line in lines if line.delivery.status == DELIVERED),
        "pending": sum(1 for line in lines if line.delivery.status == PENDING),
        "missed": sum(1 for line in lines if line.delivery.status == MISSED),
        "total_amount": sum((line.delivery.amount for line in lines), Decimal("0.00")),
        "counts": filter_counts(items),
    }


def is_due_on(subscription, day):
    """Whether the subscription's recurrence rule asks for a delivery on ``day``."""
    if not subscription.is_active or day < subscription.start_date:
        return False
    if subscription.frequency == DAILY:
        return True
    if subscription.frequency == ALTERNATE:
        return (day - subscription.start_date).days % 2 == 0
    if subscription.frequency == CUSTOM:
        return sunday_weekday(day) in subscription.custom_days
    return False


def materialize_deliveries(state, day, created_by=None, tz_name=DEFAULT_TZ):
    """Create pending deliveries for ``day`` from active subscriptions.

    A customer+product pair that already has a delivery on that day, in any
    status, is skipped, so running this twice for the same day adds nothing.
    Paused customers and unknown or inactive products get nothing.
    """
    day = as_local_date(day, tz_name)
    taken = {(d.customer_id, d.product_id)
             for d in state.deliveries.values() if d.date == day}

    deliveries = dict(state.deliveries)
    effects = []
    for sub in state.subscriptions.values():
        customer = state.customers.get(sub.customer_id)
        product = state.products.get(sub.product_id)
        if customer is None or not customer.is_active:
            continue
        if product is None or not product.is_active:
            continue
        if not is_due_on(sub, day) or (sub.customer_id, sub.product_id) in taken:
            continue
        delivery = Delivery(
            id=str(uuid.uuid4()),
            customer_id=sub.customer_id,
            product_id=sub.product_id,
            subscription_id=sub.id,
            date=day,
            quantity=sub.quantity,
            price=sub.price_per_unit,
            amount=delivery_amount(sub.quantity, sub.price_per_unit),
            created_by=created_by,
        )
        taken.add((sub.customer_id, sub.product_id))
        deliveries[delivery.id] = delivery
        effects.append(save(delivery))

    logger.info("Materialized %d deliveries for %s", len(effects), day)
    return replace(state, deliveries=deliveries), tuple(effects)
