# models.py
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

db = SQLAlchemy()

# Timestamps are stored UTC-naive; repository.py re-attaches UTC on load.


class User(UserMixin, db.Model):
    __tablename__ = "user"
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120))
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(20), default="staff")  # admin / staff / delivery


class Customer(db.Model):
    __tablename__ = "customer"
    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    mobile = db.Column(db.String(30), nullable=False)
    address = db.Column(db.String(250))
    lat = db.Column(db.Float, default=0.0)
    lng = db.Column(db.Float, default=0.0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    total_dues = db.Column(db.Numeric(10, 2), default=0, nullable=False)  # cache only
    created_by = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    subscriptions = db.relationship("Subscription", backref="customer", passive_deletes=True)
    deliveries = db.relationship("Delivery", backref="customer", passive_deletes=True)
    payments = db.relationship("Payment", backref="customer", passive_deletes=True)


class Product(db.Model):
    __tablename__ = "product"
    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(60), nullable=False)
    unit = db.Column(db.String(12), nullable=False)  # L / kg / piece
    default_price = db.Column(db.Numeric(10, 2), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.String(36))
    subscriptions = db.relationship("Subscription", backref="product", passive_deletes=True)


class Subscription(db.Model):
    __tablename__ = "subscription"
    id = db.Column(db.String(36), primary_key=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id", ondelete="CASCADE"),
                            nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("product.id", ondelete="CASCADE"),
                           nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # ml / g / pieces
    price_per_unit = db.Column(db.Numeric(10, 2), nullable=False)
    frequency = db.Column(db.String(12), nullable=False)  # daily / alternate / custom
    custom_days = db.Column(db.JSON, default=list)  # 0 = Sunday
    start_date = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)


class Delivery(db.Model):
    __tablename__ = "delivery"
    id = db.Column(db.String(36), primary_key=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id", ondelete="CASCADE"),
                            nullable=False, index=True)
    # no FK: deliveries outlive the product and subscription they came from
    product_id = db.Column(db.String(36), nullable=False)
    subscription_id = db.Column(db.String(36), nullable=True)
    date = db.Column(db.Date, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(12), nullable=False, default="pending")
    notes = db.Column(db.String(250))
    delivered_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(36))

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class Payment(db.Model):
    __tablename__ = "payment"
    id = db.Column(db.String(36), primary_key=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id", ondelete="CASCADE"),
                            nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    mode = db.Column(db.String(10), nullable=False)  # cash / upi / card
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    notes = db.Column(db.String(250))
    delivery_ids = db.Column(db.JSON, default=list)
    created_by = db.Column(db.String(36))
