# store.py
"""Reducers over records.State.

Every function takes the current State and returns ``(new_state, effects)``.
The input State is never modified. ``effects`` is a tuple of records.Effect
descriptors for the persistence layer; the first one is always the record
the call was about. Validation runs before anything is built, so a failed
call leaves nothing half applied.
"""
import logging
import math
import uuid
from dataclasses import replace
from decimal import InvalidOperation

from dues import delivery_amount, dues_for
from errors import NotFound, InvalidInput, InvalidStateTransition
from records import (
    Customer, Product, Subscription, Delivery, Payment,
    PENDING, DELIVERED, MISSED, FREQUENCIES, CUSTOM, PAYMENT_MODES,
    save, delete,
)
from utils import as_local_date, local_today, to_money, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------- validation

def _text(value, field, required=True):
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be text")
    value = value.strip()
    if required and not value:
        raise InvalidInput(f"{field} is required")
    return value or None


def _positive_int(value, field):
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidInput(f"{field} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a whole number")
    if number <= 0:
        raise InvalidInput(f"{field} must be positive")
    return number


def _positive_money(value, field):
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field} is required")
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInput(f"{field} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInput(f"{field} must be positive")
    return amount


def _coordinate(value, field, limit):
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number")
    if not math.isfinite(number) or abs(number) > limit:
        raise InvalidInput(f"{field} must be between -{limit} and {limit}")
    return number


def _flag(value, field):
    # JSON true/false only
    if not isinstance(value, bool):
        raise InvalidInput(f"{field} must be true or false")
    return value


def _weekdays(frequency, custom_days):
    if frequency not in FREQUENCIES:
        raise InvalidInput(f"frequency must be one of {', '.join(FREQUENCIES)}")
    if frequency != CUSTOM:
        return ()
    try:
        days = sorted({int(d) for d in custom_days or ()})
    except (TypeError, ValueError):
        raise InvalidInput("custom_days must be weekday numbers")
    if not days:
        raise InvalidInput("custom frequency needs at least one weekday")
    if days[0] < 0 or days[-1] > 6:
        raise InvalidInput("custom_days must be between 0 (Sunday) and 6 (Saturday)")
    return tuple(days)


def _get(collection, kind, ident):
    record = collection.get(ident)
    if record is None:
        raise NotFound(kind, ident)
    return record


def _with(mapping, record):
    updated = dict(mapping)
    updated[record.id] = record
    return updated


def _without(mapping, ids):
    return {k: v for k, v in mapping.items() if k not in ids}


def _refresh_dues(state, customer_id, now):
    """Recompute the cached total_dues of a customer from ``state``."""
    customer = state.customers.get(customer_id)
    if customer is None:
        return state, ()
    total = dues_for(state, customer_id)
    if total == customer.total_dues:
        return state, ()
    customer = replace(customer, total_dues=total, updated_at=now)
    return replace(state, customers=_with(state.customers, customer)), (save(customer),)


# ----------------------------------------------------------------- customers

CUSTOMER_FIELDS = ("name", "mobile", "address", "lat", "lng", "is_active")


def add_customer(state, name, mobile, address=None, lat=0.0, lng=0.0,
                 is_active=True, created_by=None, now=None):
    now = now or utcnow()
    customer = Customer(
        id=str(uuid.uuid4()),
        name=_text(name, "name"),
        mobile=_text(mobile, "mobile"),
        address=_text(address, "address", required=False),
        lat=_coordinate(lat, "lat", 90),
        lng=_coordinate(lng, "lng", 180),
        is_active=_flag(is_active, "is_active"),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    return replace(state, customers=_with(state.customers, customer)), (save(customer),)


def update_customer(state, customer_id, now=None, **changes):
    customer = _get(state.customers, "customer", customer_id)
    unknown = set(changes) - set(CUSTOMER_FIELDS)
    if unknown:
        raise InvalidInput(f"cannot update {', '.join(sorted(unknown))}")
    if "name" in changes:
        changes["name"] = _text(changes["name"], "name")
    if "mobile" in changes:
        changes["mobile"] = _text(changes["mobile"], "mobile")
    if "address" in changes:
        changes["address"] = _text(changes["address"], "address", required=False)
    for coord, limit in (("lat", 90), ("lng", 180)):
        if coord in changes:
            changes[coord] = _coordinate(changes[coord], coord, limit)
    if "is_active" in changes:
        changes["is_active"] = _flag(changes["is_active"], "is_active")
    customer = replace(customer, updated_at=now or utcnow(), **changes)
    return replace(state, customers=_with(state.customers, customer)), (save(customer),)


def set_customer_active(state, customer_id, active, now=None):
    return update_customer(state, customer_id, now=now, is_active=active)


def delete_customer(state, customer_id):
    """Remove a customer with all of its subscriptions, deliveries and payments."""
    customer = _get(state.customers, "customer", customer_id)
    subs = [s for s in state.subscriptions.values() if s.customer_id == customer_id]
    deliveries = [d for d in state.deliveries.values() if d.customer_id == customer_id]
    payments = [p for p in state.payments.values() if p.customer_id == customer_id]

    new_state = replace(
        state,
        customers=_without(state.customers, {customer_id}),
        subscriptions=_without(state.subscriptions, {s.id for s in subs}),
        deliveries=_without(state.deliveries, {d.id for d in deliveries}),
        payments=_without(state.payments, {p.id for p in payments}),
    )
    effects = [delete(customer)]
    effects.extend(delete(r) for r in subs + deliveries + payments)
    logger.info("Deleting customer %s with %d subscriptions, %d deliveries, %d payments",
                customer_id, len(subs), len(deliveries), len(payments))
    return new_state, tuple(effects)


# ------------------------------------------------------------------ products

def add_product(state, name, unit, default_price, created_by=None):
    product = Product(
        id=str(uuid.uuid4()),
        name=_text(name, "name"),
        unit=_text(unit, "unit"),
        default_price=_positive_money(default_price, "default_price"),
        created_by=created_by,
    )
    return replace(state, products=_with(state.products, product)), (save(product),)


def update_product(state, product_id, **changes):
    product = _get(state.products, "product", product_id)
    unknown = set(changes) - {"name", "unit", "default_price", "is_active"}
    if unknown:
        raise InvalidInput(f"cannot update {', '.join(sorted(unknown))}")
    if "name" in changes:
        changes["name"] = _text(changes["name"], "name")
    if "unit" in changes:
        changes["unit"] = _text(changes["unit"], "unit")
    if "default_price" in changes:
        changes["default_price"] = _positive_money(changes["default_price"], "default_price")
    if "is_active" in changes:
        changes["is_active"] = _flag(changes["is_active"], "is_active")
    product = replace(product, **changes)
    return replace(state, products=_with(state.products, product)), (save(product),)


def delete_product(state, product_id):
    """Remove a product and its subscriptions. Past deliveries keep their price."""
    product = _get(state.products, "product", product_id)
    subs = [s for s in state.subscriptions.values() if s.product_id == product_id]
    new_state = replace(
        state,
        products=_without(state.products, {product_id}),
        subscriptions=_without(state.subscriptions, {s.id for s in subs}),
    )
    return new_state, (delete(product),) + tuple(delete(s) for s in subs)


# ------------------------------------------------------------- subscriptions

def _active_for_pair(state, customer_id, product_id, exclude=None):
    return [s for s in state.subscriptions.values()
            if s.customer_id == customer_id and s.product_id == product_id
            and s.is_active and s.id != exclude]


def add_subscription(state, customer_id, product_id, quantity, frequency,
                     price_per_unit=None, custom_days=(), start_date=None,
                     is_active=True, created_by=None, now=None):
    """Subscribe a customer to a product.

    An existing active subscription for the same customer and product is
    deactivated in the same batch, so at most one stays active.
    """
    now = now or utcnow()
    _get(state.customers, "customer", customer_id)
    product = _get(state.products, "product", product_id)
    if not product.is_active:
        raise InvalidInput(f"product {product.name} is not available")
    if price_per_unit is None:
        price_per_unit = product.default_price

    subscription = Subscription(
        id=str(uuid.uuid4()),
        customer_id=customer_id,
        product_id=product_id,
        quantity=_positive_int(quantity, "quantity"),
        price_per_unit=_positive_money(price_per_unit, "price_per_unit"),
        frequency=frequency,
        custom_days=_weekdays(frequency, custom_days),
        start_date=as_local_date(start_date) if start_date else local_today(),
        is_active=_flag(is_active, "is_active"),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )

    subscriptions = _with(state.subscriptions, subscription)
    effects = [save(subscription)]
    if subscription.is_active:
        for prior in _active_for_pair(state, customer_id, product_id):
            prior = replace(prior, is_active=False, updated_at=now)
            subscriptions[prior.id] = prior
            effects.append(save(prior))
            logger.info("Deactivated subscription %s replaced by %s", prior.id, subscription.id)
    return replace(state, subscriptions=subscriptions), tuple(effects)


def update_subscription(state, subscription_id, now=None, **changes):
    subscription = _get(state.subscriptions, "subscription", subscription_id)
    unknown = set(changes) - {"quantity", "price_per_unit", "frequency",
                              "custom_days", "start_date"}
    if unknown:
        raise InvalidInput(f"cannot update {', '.join(sorted(unknown))}")
    if "quantity" in changes:
        changes["quantity"] = _positive_int(changes["quantity"], "quantity")
    if "price_per_unit" in changes:
        changes["price_per_unit"] = _positive_money(changes["price_per_unit"], "price_per_unit")
    if "start_date" in changes:
        changes["start_date"] = as_local_date(changes["start_date"])
    frequency = changes.get("frequency", subscription.frequency)
    custom_days = changes.get("custom_days", subscription.custom_days)
    changes["frequency"] = frequency
    changes["custom_days"] = _weekdays(frequency, custom_days)

    subscription = replace(subscription, updated_at=now or utcnow(), **changes)
    return (replace(state, subscriptions=_with(state.subscriptions, subscription)),
            (save(subscription),))


def set_subscription_active(state, subscription_id, active, now=None):
    subscription = _get(state.subscriptions, "subscription", subscription_id)
    active = _flag(active, "is_active")
    if active and _active_for_pair(state, subscription.customer_id,
                                   subscription.product_id, exclude=subscription.id):
        raise InvalidInput("customer already has an active subscription for this product")
    subscription = replace(subscription, is_active=active, updated_at=now or utcnow())
    return (replace(state, subscriptions=_with(state.subscriptions, subscription)),
            (save(subscription),))


def delete_subscription(state, subscription_id):
    subscription = _get(state.subscriptions, "subscription", subscription_id)
    return (replace(state, subscriptions=_without(state.subscriptions, {subscription_id})),
            (delete(subscription),))


# ---------------------------------------------------------------- deliveries

def add_delivery(state, customer_id, product_id, day, quantity, price=None,
                 subscription_id=None, notes=None, created_by=None):
    """Ad-hoc pending delivery outside the subscription schedule."""
    _get(state.customers, "customer", customer_id)
    product = _get(state.products, "product", product_id)
    if subscription_id is not None:
        _get(state.subscriptions, "subscription", subscription_id)
    quantity = _positive_int(quantity, "quantity")
    price = _positive_money(product.default_price if price is None else price, "price")
    delivery = Delivery(
        id=str(uuid.uuid4()),
        customer_id=customer_id,
        product_id=product_id,
        subscription_id=subscription_id,
        date=as_local_date(day),
        quantity=quantity,
        price=price,
        amount=delivery_amount(quantity, price),
        notes=_text(notes, "notes", required=False),
        created_by=created_by,
    )
    return replace(state, deliveries=_with(state.deliveries, delivery)), (save(delivery),)


def _pending(state, delivery_id):
    delivery = _get(state.deliveries, "delivery", delivery_id)
    if delivery.status != PENDING:
        logger.warning("Rejected transition of delivery %s: already %s",
                       delivery_id, delivery.status)
        raise InvalidStateTransition(f"delivery {delivery_id} is already {delivery.status}")
    return delivery


def mark_delivered(state, delivery_id, notes=None, now=None):
    """pending -> delivered. Any other starting status is rejected."""
    delivery = _pending(state, delivery_id)
    now = now or utcnow()
    delivery = replace(
        delivery,
        status=DELIVERED,
        notes=_text(notes, "notes", required=False),
        delivered_at=now,
        version=delivery.version + 1,
    )
    state = replace(state, deliveries=_with(state.deliveries, delivery))
    state, refreshed = _refresh_dues(state, delivery.customer_id, now)
    return state, (save(delivery),) + refreshed


def mark_missed(state, delivery_id, reason, pause_customer=False, now=None):
    """pending -> missed with a reason. Optionally pauses the customer too."""
    delivery = _pending(state, delivery_id)
    reason = _text(reason, "reason")
    delivery = replace(delivery, status=MISSED, notes=reason, version=delivery.version + 1)
    state = replace(state, deliveries=_with(state.deliveries, delivery))
    effects = (save(delivery),)
    if pause_customer:
        state, paused = set_customer_active(state, delivery.customer_id, False, now=now)
        effects += paused
    return state, effects


# ------------------------------------------------------------------ payments

def add_payment(state, customer_id, amount, mode, notes=None, delivery_ids=(),
                paid_at=None, created_by=None):
    _get(state.customers, "customer", customer_id)
    if mode not in PAYMENT_MODES:
        raise InvalidInput(f"mode must be one of {', '.join(PAYMENT_MODES)}")
    now = paid_at or utcnow()
    payment = Payment(
        id=str(uuid.uuid4()),
        customer_id=customer_id,
        amount=_positive_money(amount, "amount"),
        mode=mode,
        date=now,
        notes=_text(notes, "notes", required=False),
        delivery_ids=tuple(delivery_ids or ()),
        created_by=created_by,
    )
    state = replace(state, payments=_with(state.payments, payment))
    state, refreshed = _refresh_dues(state, customer_id, now)
    logger.info("Recorded %s payment %s for customer %s", mode, payment.id, customer_id)
    return state, (save(payment),) + refreshed
