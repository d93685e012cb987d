# serialize.py
from flask import current_app, request

from dues import estimated_monthly_bill
from errors import InvalidInput
from utils import local_today, parse_date


def money(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


def json_body(required=True):
    if not request.is_json:
        if required:
            raise InvalidInput("Invalid request. JSON expected.")
        return {}
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidInput("Invalid request. JSON object expected.")
    return payload


def object_field(payload, field):
    """Nested JSON object under ``field``, empty if absent."""
    value = payload.get(field)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidInput(f"{field} must be an object")
    return value


def object_list(payload, field):
    value = payload.get(field)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise InvalidInput(f"{field} must be a list of objects")
    return value


def date_arg(raw):
    """yyyy-mm-dd from a query string or body, today in the business timezone if empty."""
    if not raw:
        return local_today(current_app.config["DAIRY_TIMEZONE"])
    try:
        return parse_date(raw)
    except (TypeError, ValueError):
        raise InvalidInput("Invalid date format. Use YYYY-MM-DD.")


def customer_json(c, dues=None):
    data = {
        "id": c.id,
        "name": c.name,
        "mobile": c.mobile,
        "location": {"lat": c.lat, "lng": c.lng, "address": c.address},
        "is_active": c.is_active,
        "total_dues": money(c.total_dues),
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }
    if dues is not None:
        data["dues"] = money(dues)
    return data


def product_json(p):
    return {
        "id": p.id,
        "name": p.name,
        "unit": p.unit,
        "default_price": money(p.default_price),
        "is_active": p.is_active,
    }


def subscription_json(s):
    return {
        "id": s.id,
        "customer_id": s.customer_id,
        "product_id": s.product_id,
        "quantity": s.quantity,
        "price_per_unit": money(s.price_per_unit),
        "frequency": s.frequency,
        "custom_days": list(s.custom_days),
        "start_date": _iso(s.start_date),
        "is_active": s.is_active,
        "estimated_monthly_bill": money(estimated_monthly_bill(s)),
    }


def delivery_json(d, product=None):
    data = {
        "id": d.id,
        "customer_id": d.customer_id,
        "product_id": d.product_id,
        "subscription_id": d.subscription_id,
        "date": _iso(d.date),
        "quantity": d.quantity,
        "price": money(d.price),
        "amount": money(d.amount),
        "status": d.status,
        "notes": d.notes,
        "delivered_at": _iso(d.delivered_at),
    }
    if product is not None:
        data["product"] = product_json(product)
    return data


def payment_json(p):
    return {
        "id": p.id,
        "customer_id": p.customer_id,
        "amount": money(p.amount),
        "mode": p.mode,
        "date": _iso(p.date),
        "notes": p.notes,
        "delivery_ids": list(p.delivery_ids),
    }


def route_item_json(item):
    return {
        "customer": customer_json(item.customer),
        "deliveries": [delivery_json(line.delivery, line.product) for line in item.lines],
        "total_amount": money(item.total_amount),
        "status": item.status,
    }
