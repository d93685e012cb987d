# deliveries.py
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

import store
from auth import operator_id
from errors import InvalidInput
from records import ROUTE_FILTERS, FILTER_ALL
from repository import load_state, apply_effects
from scheduler import deliveries_for_date, filter_route, route_summary, materialize_deliveries
from serialize import json_body, date_arg, delivery_json, route_item_json

logger = logging.getLogger(__name__)

deliveries = Blueprint("deliveries", __name__, url_prefix="/deliveries")

MISSED_REASONS = {
    "not_available": "Customer not available",
    "rejected": "Customer rejected delivery",
}


@deliveries.route("", methods=["GET"])
@login_required
def route_for_date():
    day = date_arg(request.args.get("date"))
    status_filter = request.args.get("status", FILTER_ALL)
    if status_filter not in ROUTE_FILTERS:
        raise InvalidInput(f"status must be one of {', '.join(ROUTE_FILTERS)}")
    items = deliveries_for_date(load_state(), day, current_app.config["DAIRY_TIMEZONE"])
    return jsonify({
        "date": day.isoformat(),
        "status": status_filter,
        "items": [route_item_json(item) for item in filter_route(items, status_filter)],
        "summary": _summary_json(route_summary(items)),
    })


def _summary_json(summary):
    summary["total_amount"] = float(summary["total_amount"])
    return summary


@deliveries.route("", methods=["POST"])
@login_required
def add_delivery():
    payload = json_body()
    state, effects = store.add_delivery(
        load_state(),
        customer_id=payload.get("customer_id"),
        product_id=payload.get("product_id"),
        day=date_arg(payload.get("date")),
        quantity=payload.get("quantity"),
        price=payload.get("price"),
        subscription_id=payload.get("subscription_id"),
        notes=payload.get("notes"),
        created_by=operator_id(),
    )
    apply_effects(effects)
    return jsonify(delivery_json(effects[0].record)), 201


@deliveries.route("/generate", methods=["POST"])
@login_required
def generate():
    payload = json_body(required=False)
    day = date_arg(payload.get("date") or request.args.get("date"))
    state, effects = materialize_deliveries(
        load_state(), day, created_by=operator_id(),
        tz_name=current_app.config["DAIRY_TIMEZONE"])
    apply_effects(effects)
    return jsonify({"date": day.isoformat(), "created": len(effects)}), 200


@deliveries.route("/<delivery_id>/deliver", methods=["POST"])
@login_required
def deliver(delivery_id):
    payload = json_body(required=False)
    state, effects = store.mark_delivered(load_state(), delivery_id, notes=payload.get("notes"))
    apply_effects(effects)
    logger.info("Delivery %s delivered", delivery_id)
    return jsonify(delivery_json(effects[0].record)), 200


@deliveries.route("/<delivery_id>/miss", methods=["POST"])
@login_required
def miss(delivery_id):
    payload = json_body()
    code = (payload.get("reason") or "").strip()
    pause = code == "pause"
    if pause:
        days = payload.get("pause_days") or 7
        reason = f"Customer wants to pause for {days} days"
    else:
        reason = MISSED_REASONS.get(code, code)
    state, effects = store.mark_missed(load_state(), delivery_id, reason, pause_customer=pause)
    apply_effects(effects)
    logger.info("Delivery %s missed: %s", delivery_id, reason)
    return jsonify(delivery_json(effects[0].record)), 200
