# app.py
import logging
import os

import click
from flask import Flask, current_app, jsonify, request
from flask_login import LoginManager, login_required
from werkzeug.security import generate_password_hash

import store
from auth import auth, admin_required, operator_id
from billing import billing
from deliveries import deliveries
from dues import all_dues, dues_for, estimated_monthly_bill, monthly_estimate_for, dues_overview
from errors import DairyError, InvalidInput, NotFound
from models import db, User
from repository import (
    load_state, apply_effects, list_products,
    list_subscriptions_for, list_deliveries_for,
)
from scheduler import deliveries_for_date, route_summary, materialize_deliveries
from serialize import (
    json_body, object_field, object_list, date_arg, money,
    customer_json, product_json, subscription_json, delivery_json,
)
from utils import local_today, parse_date

logger = logging.getLogger(__name__)

DEFAULT_PRODUCTS = [
    ("Milk", "L", 60),
    ("Curd", "kg", 80),
    ("Paneer", "kg", 400),
    ("Ghee", "kg", 500),
    ("Kova", "kg", 300),
    ("Bread", "piece", 25),
]

DEMO_CUSTOMERS = [
    ("Rajesh Kumar", "+91 98765 43210", 28.6139, 77.2090, "Block A, Sector 15, New Delhi"),
    ("Priya Sharma", "+91 87654 32109", 28.6155, 77.2112, "House 25, Green Park Extension, New Delhi"),
    ("Amit Patel", "+91 76543 21098", 28.6170, 77.2134, "Flat 12B, Sunrise Apartments, New Delhi"),
    ("Kavya Reddy", "+91 65432 10987", 28.6185, 77.2156, "Villa 8, Palm Grove Society, New Delhi"),
    ("Suresh Gupta", "+91 54321 09876", 28.6200, 77.2178, "Shop 15, Main Market, New Delhi"),
]

CUSTOMER_FILTERS = ("all", "active", "inactive", "dues")
CUSTOMER_SORTS = ("name", "dues", "recent")


def create_app(test_config=None):
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "replace-with-a-strong-secret")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///db.sqlite3")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["DAIRY_TIMEZONE"] = os.environ.get("DAIRY_TIMEZONE", "Asia/Kolkata")
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")
    app.config["BUSINESS_NAME"] = os.environ.get("BUSINESS_NAME", "Dairy Friend")
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)

    login_manager = LoginManager()
    login_manager.init_app(app)

    app.register_blueprint(auth)
    app.register_blueprint(billing)
    app.register_blueprint(deliveries)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Login required."}), 401

    @app.errorhandler(DairyError)
    def handle_dairy_error(exc):
        return jsonify({"error": str(exc)}), exc.status_code

    @app.route("/")
    @login_required
    def dashboard():
        # today's route at a glance plus overall dues
        state = load_state()
        tz_name = current_app.config["DAIRY_TIMEZONE"]
        today = local_today(tz_name)
        summary = route_summary(deliveries_for_date(state, today, tz_name))
        overview = dues_overview(state)
        return jsonify({
            "date": today.isoformat(),
            "deliveries": summary["deliveries"],
            "delivered": summary["delivered"],
            "pending": summary["pending"],
            "missed": summary["missed"],
            "total_amount": money(summary["total_amount"]),
            "customers": len(state.customers),
            "active_customers": sum(1 for c in state.customers.values() if c.is_active),
            "active_subscriptions": sum(1 for s in state.subscriptions.values() if s.is_active),
            "total_outstanding": money(overview["total_outstanding"]),
            "total_collected": money(overview["total_collected"]),
        })

    # ---------------------------------------------------------- customers

    @app.route("/customers")
    @login_required
    def customers_list():
        status = request.args.get("status", "all")
        sort = request.args.get("sort", "name")
        descending = request.args.get("order", "asc") == "desc"
        if status not in CUSTOMER_FILTERS:
            raise InvalidInput(f"status must be one of {', '.join(CUSTOMER_FILTERS)}")
        if sort not in CUSTOMER_SORTS:
            raise InvalidInput(f"sort must be one of {', '.join(CUSTOMER_SORTS)}")
        q = (request.args.get("q") or "").strip().lower()

        state = load_state()
        balances = all_dues(state)
        rows = [(c, balances[c.id]) for c in state.customers.values()]
        if q:
            rows = [(c, d) for c, d in rows
                    if q in c.name.lower() or q in c.mobile or q in (c.address or "").lower()]
        if status == "active":
            rows = [(c, d) for c, d in rows if c.is_active]
        elif status == "inactive":
            rows = [(c, d) for c, d in rows if not c.is_active]
        elif status == "dues":
            rows = [(c, d) for c, d in rows if d > 0]

        keys = {
            "name": lambda r: r[0].name.lower(),
            "dues": lambda r: r[1],
            "recent": lambda r: r[0].created_at,
        }
        rows.sort(key=keys[sort], reverse=descending)
        return jsonify([customer_json(c, dues=d) for c, d in rows])

    @app.route("/customers", methods=["POST"])
    @login_required
    def add_customer():
        payload = json_body()
        location = object_field(payload, "location")
        state, effects = store.add_customer(
            load_state(),
            name=payload.get("name"),
            mobile=payload.get("mobile"),
            address=location.get("address", payload.get("address")),
            lat=location.get("lat", 0.0),
            lng=location.get("lng", 0.0),
            created_by=operator_id(),
        )
        customer = effects[0].record
        # customer and initial subscriptions are saved together or not at all
        for item in object_list(payload, "subscriptions"):
            state, more = _subscribe(state, customer.id, item)
            effects += more
        apply_effects(effects)
        logger.info("Customer %s added with %d changes", customer.id, len(effects))
        return jsonify(customer_json(customer, dues=0)), 201

    @app.route("/customers/<customer_id>")
    @login_required
    def customer_detail(customer_id):
        state = load_state()
        customer = state.customers.get(customer_id)
        if customer is None:
            raise NotFound("customer", customer_id)
        subs = list_subscriptions_for(customer_id)
        return jsonify({
            "customer": customer_json(customer, dues=dues_for(state, customer_id)),
            "subscriptions": [subscription_json(s) for s in subs],
            "monthly_estimate": money(monthly_estimate_for(state, customer_id)),
            "deliveries": [delivery_json(d, state.products.get(d.product_id))
                           for d in list_deliveries_for(customer_id)[:50]],
        })

    @app.route("/customers/<customer_id>", methods=["PATCH"])
    @login_required
    def update_customer(customer_id):
        payload = json_body()
        changes = {k: payload[k] for k in ("name", "mobile", "address", "is_active") if k in payload}
        location = object_field(payload, "location")
        for key in ("lat", "lng", "address"):
            if key in location:
                changes[key] = location[key]
        state, effects = store.update_customer(load_state(), customer_id, **changes)
        apply_effects(effects)
        return jsonify(customer_json(effects[0].record))

    @app.route("/customers/<customer_id>/pause", methods=["POST"])
    @login_required
    def pause_customer(customer_id):
        state, effects = store.set_customer_active(load_state(), customer_id, False)
        apply_effects(effects)
        return jsonify(customer_json(effects[0].record))

    @app.route("/customers/<customer_id>/resume", methods=["POST"])
    @login_required
    def resume_customer(customer_id):
        state, effects = store.set_customer_active(load_state(), customer_id, True)
        apply_effects(effects)
        return jsonify(customer_json(effects[0].record))

    @app.route("/customers/<customer_id>", methods=["DELETE"])
    @login_required
    @admin_required
    def delete_customer(customer_id):
        payload = json_body()
        state = load_state()
        customer = state.customers.get(customer_id)
        if customer is None:
            raise NotFound("customer", customer_id)
        # exact, case-sensitive name confirmation
        confirm_name = (payload.get("confirm_name") or "").strip()
        if confirm_name != customer.name:
            raise InvalidInput("Confirmation name does not match.")
        state, effects = store.delete_customer(state, customer_id)
        apply_effects(effects)
        return jsonify({"message": "Customer deleted.", "removed": len(effects)}), 200

    # -------------------------------------------------------- subscriptions

    def _subscribe(state, customer_id, payload):
        start = payload.get("start_date")
        return store.add_subscription(
            state,
            customer_id=customer_id,
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity"),
            frequency=payload.get("frequency"),
            price_per_unit=payload.get("price_per_unit"),
            custom_days=payload.get("custom_days") or (),
            start_date=date_arg(start) if start else None,
            created_by=operator_id(),
        )

    @app.route("/customers/<customer_id>/subscriptions")
    @login_required
    def customer_subscriptions(customer_id):
        if customer_id not in load_state().customers:
            raise NotFound("customer", customer_id)
        return jsonify([subscription_json(s) for s in list_subscriptions_for(customer_id)])

    @app.route("/customers/<customer_id>/subscriptions", methods=["POST"])
    @login_required
    def add_subscription(customer_id):
        state, effects = _subscribe(load_state(), customer_id, json_body())
        apply_effects(effects)
        return jsonify(subscription_json(effects[0].record)), 201

    @app.route("/customers/<customer_id>/estimate")
    @login_required
    def customer_estimate(customer_id):
        state = load_state()
        if customer_id not in state.customers:
            raise NotFound("customer", customer_id)
        subs = [s for s in state.subscriptions.values()
                if s.customer_id == customer_id and s.is_active]
        return jsonify({
            "customer_id": customer_id,
            "monthly_estimate": money(monthly_estimate_for(state, customer_id)),
            "subscriptions": [
                {"id": s.id, "product_id": s.product_id,
                 "estimated_monthly_bill": money(estimated_monthly_bill(s, state.products.get(s.product_id)))}
                for s in subs
            ],
        })

    @app.route("/subscriptions/<subscription_id>", methods=["PATCH"])
    @login_required
    def update_subscription(subscription_id):
        payload = json_body()
        changes = {k: payload[k] for k in
                   ("quantity", "price_per_unit", "frequency", "custom_days") if k in payload}
        if payload.get("start_date"):
            changes["start_date"] = date_arg(payload["start_date"])
        state, effects = store.update_subscription(load_state(), subscription_id, **changes)
        apply_effects(effects)
        return jsonify(subscription_json(effects[0].record))

    @app.route("/subscriptions/<subscription_id>/toggle", methods=["POST"])
    @login_required
    def toggle_subscription(subscription_id):
        state = load_state()
        current = state.subscriptions.get(subscription_id)
        if current is None:
            raise NotFound("subscription", subscription_id)
        state, effects = store.set_subscription_active(state, subscription_id, not current.is_active)
        apply_effects(effects)
        return jsonify(subscription_json(effects[0].record))

    @app.route("/subscriptions/<subscription_id>", methods=["DELETE"])
    @login_required
    def delete_subscription(subscription_id):
        state, effects = store.delete_subscription(load_state(), subscription_id)
        apply_effects(effects)
        return jsonify({"message": "Subscription deleted."}), 200

    # ------------------------------------------------------------ products

    @app.route("/products")
    @login_required
    def products_list():
        return jsonify([product_json(p) for p in list_products()])

    @app.route("/products", methods=["POST"])
    @login_required
    @admin_required
    def add_product():
        payload = json_body()
        state, effects = store.add_product(
            load_state(),
            name=payload.get("name"),
            unit=payload.get("unit"),
            default_price=payload.get("default_price"),
            created_by=operator_id(),
        )
        apply_effects(effects)
        return jsonify(product_json(effects[0].record)), 201

    @app.route("/products/<product_id>", methods=["PATCH"])
    @login_required
    @admin_required
    def update_product(product_id):
        payload = json_body()
        changes = {k: payload[k] for k in ("name", "unit", "default_price", "is_active") if k in payload}
        state, effects = store.update_product(load_state(), product_id, **changes)
        apply_effects(effects)
        return jsonify(product_json(effects[0].record))

    @app.route("/products/<product_id>", methods=["DELETE"])
    @login_required
    @admin_required
    def delete_product(product_id):
        state, effects = store.delete_product(load_state(), product_id)
        apply_effects(effects)
        return jsonify({"message": "Product deleted."}), 200

    # ----------------------------------------------------------------- cli

    @app.cli.command("init-db")
    @click.option("--demo", is_flag=True, help="Also add the demo customers.")
    def init_db(demo):
        db.create_all()
        # seed default admin if not present
        email = os.environ.get("ADMIN_EMAIL", "admin@dairy.local")
        if not User.query.filter_by(email=email).first():
            admin = User(email=email, name="Administrator", role="admin",
                         password_hash=generate_password_hash(os.environ.get("ADMIN_PASSWORD", "adminpass")))
            db.session.add(admin)
            db.session.commit()
        state = load_state()
        effects = ()
        if not state.products:
            for name, unit, price in DEFAULT_PRODUCTS:
                state, more = store.add_product(state, name, unit, price)
                effects += more
        if demo and not state.customers:
            for name, mobile, lat, lng, address in DEMO_CUSTOMERS:
                state, more = store.add_customer(state, name, mobile, address=address, lat=lat, lng=lng)
                effects += more
        apply_effects(effects)
        click.echo("DB initialized and seeded.")

    @app.cli.command("generate-deliveries")
    @click.option("--date", "day", default=None, help="YYYY-MM-DD, defaults to today.")
    def generate_deliveries(day):
        tz_name = app.config["DAIRY_TIMEZONE"]
        day = parse_date(day) if day else local_today(tz_name)
        state, effects = materialize_deliveries(load_state(), day, tz_name=tz_name)
        apply_effects(effects)
        click.echo(f"Created {len(effects)} deliveries for {day}.")

    # create tables automatically if file missing
    with app.app_context():
        db.create_all()

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", debug=True)
