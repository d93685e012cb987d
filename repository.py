# repository.py
"""SQL side of the store: loads rows into records and writes Effects back.

The reducers in store.py never touch the session. Routes load a State,
run a reducer, and pass the returned effects to apply_effects(), which
writes them in a single transaction.
"""
import logging
from dataclasses import fields
from datetime import timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

import models
import records
from errors import ConcurrentModification, PersistenceFailure
from utils import to_money

logger = logging.getLogger(__name__)

MODEL_FOR = {
    records.Customer: models.Customer,
    records.Product: models.Product,
    records.Subscription: models.Subscription,
    records.Delivery: models.Delivery,
    records.Payment: models.Payment,
}

MONEY_FIELDS = {"total_dues", "default_price", "price_per_unit", "price", "amount"}


def _utc(dt):
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _naive_utc(dt):
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _to_record(record_cls, row):
    values = {}
    for f in fields(record_cls):
        value = getattr(row, f.name)
        if f.name in MONEY_FIELDS:
            value = to_money(value or 0)
        elif f.name in ("custom_days", "delivery_ids"):
            value = tuple(value or ())
        elif f.name in ("created_at", "updated_at", "delivered_at") or (
                record_cls is records.Payment and f.name == "date"):
            value = _utc(value)
        values[f.name] = value
    return record_cls(**values)


def _to_columns(record):
    values = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, tuple):
            value = list(value)
        elif hasattr(value, "tzinfo") and hasattr(value, "hour"):
            value = _naive_utc(value)
        values[f.name] = value
    return values


def _load(record_cls, query):
    return {row.id: _to_record(record_cls, row) for row in query}


def load_state():
    return records.State(
        customers=_load(records.Customer, models.Customer.query.order_by(models.Customer.created_at)),
        products=_load(records.Product, models.Product.query.order_by(models.Product.name)),
        subscriptions=_load(records.Subscription, models.Subscription.query),
        deliveries=_load(records.Delivery, models.Delivery.query),
        payments=_load(records.Payment, models.Payment.query.order_by(models.Payment.date)),
    )


def list_customers():
    return list(_load(records.Customer, models.Customer.query.order_by(models.Customer.name)).values())


def list_products():
    return list(_load(records.Product, models.Product.query.order_by(models.Product.name)).values())


def list_subscriptions_for(customer_id):
    query = models.Subscription.query.filter_by(customer_id=customer_id)
    return list(_load(records.Subscription, query.order_by(models.Subscription.created_at)).values())


def list_deliveries_on(day):
    return list(_load(records.Delivery, models.Delivery.query.filter_by(date=day)).values())


def list_deliveries_for(customer_id):
    query = models.Delivery.query.filter_by(customer_id=customer_id)
    return list(_load(records.Delivery, query.order_by(models.Delivery.date.desc())).values())


def list_payments_for(customer_id):
    query = models.Payment.query.filter_by(customer_id=customer_id)
    return list(_load(records.Payment, query.order_by(models.Payment.date.desc())).values())


def _write(effect):
    record = effect.record
    model = MODEL_FOR[type(record)]
    row = models.db.session.get(model, record.id)
    if effect.action == "delete":
        if row is not None:
            models.db.session.delete(row)
        return
    if row is None:
        row = model(id=record.id)
        models.db.session.add(row)
    elif isinstance(record, records.Delivery) and row.version != record.version - 1:
        raise ConcurrentModification(f"delivery {record.id} was changed by someone else")
    for name, value in _to_columns(record).items():
        setattr(row, name, value)


def _touched_customers(effects):
    ids = set()
    for effect in effects:
        record = effect.record
        if isinstance(record, records.Customer):
            ids.add(record.id)
        elif isinstance(record, (records.Delivery, records.Payment)):
            ids.add(record.customer_id)
    return ids


def _sync_dues(customer_ids):
    """Recompute total_dues from the rows inside the current transaction.

    The customer row is locked first, so a concurrent writer for the same
    customer waits and then sums over our committed rows too.
    """
    session = models.db.session
    session.flush()
    for customer_id in sorted(customer_ids):
        row = (models.Customer.query.filter_by(id=customer_id)
               .with_for_update().populate_existing().first())
        if row is None:
            continue
        delivered = session.query(func.coalesce(func.sum(models.Delivery.amount), 0)).filter(
            models.Delivery.customer_id == customer_id,
            models.Delivery.status == records.DELIVERED,
        ).scalar()
        paid = session.query(func.coalesce(func.sum(models.Payment.amount), 0)).filter(
            models.Payment.customer_id == customer_id,
        ).scalar()
        row.total_dues = to_money(delivered) - to_money(paid)


def apply_effects(effects):
    """Write all effects in one transaction; roll back everything on failure."""
    try:
        for effect in effects:
            _write(effect)
        _sync_dues(_touched_customers(effects))
        models.db.session.commit()
    except ConcurrentModification:
        models.db.session.rollback()
        logger.warning("Concurrent modification, nothing written")
        raise
    except StaleDataError as exc:
        models.db.session.rollback()
        logger.warning("Concurrent modification, nothing written")
        raise ConcurrentModification("record was changed by someone else") from exc
    except SQLAlchemyError as exc:
        models.db.session.rollback()
        logger.exception("Failed to persist %d changes", len(effects))
        raise PersistenceFailure("could not save changes") from exc
    logger.debug("Persisted %d changes", len(effects))
