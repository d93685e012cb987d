# billing.py
from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import login_required
from io import BytesIO
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

import store
from auth import operator_id
from dues import dues_for, dues_overview, customer_statement
from errors import NotFound
from repository import load_state, apply_effects, list_payments_for
from serialize import json_body, date_arg, money, customer_json, payment_json
from utils import local_today, month_range_for_date

billing = Blueprint("billing", __name__, url_prefix="")


@billing.route("/customers/<customer_id>/dues")
@login_required
def customer_dues(customer_id):
    state = load_state()
    amount = dues_for(state, customer_id)
    return jsonify({
        "customer_id": customer_id,
        "dues": money(amount),
        "overdue": amount > 0,
        "advance": amount < 0,
        # prefill for the payment form
        "suggested_payment": money(max(amount, 0)),
    })


@billing.route("/customers/<customer_id>/payments")
@login_required
def customer_payments(customer_id):
    if customer_id not in load_state().customers:
        raise NotFound("customer", customer_id)
    return jsonify([payment_json(p) for p in list_payments_for(customer_id)])


@billing.route("/payments", methods=["POST"])
@login_required
def record_payment():
    payload = json_body()
    state, effects = store.add_payment(
        load_state(),
        customer_id=payload.get("customer_id"),
        amount=payload.get("amount"),
        mode=payload.get("mode") or "cash",
        notes=payload.get("notes"),
        delivery_ids=payload.get("delivery_ids") or (),
        created_by=operator_id(),
    )
    apply_effects(effects)
    payment = effects[0].record
    return jsonify({
        "payment": payment_json(payment),
        "dues": money(dues_for(state, payment.customer_id)),
    }), 201


@billing.route("/dues")
@login_required
def dues_list():
    overview = dues_overview(load_state())
    rows = sorted(overview["customers"], key=lambda r: r["dues"], reverse=True)
    return jsonify({
        "customers": [customer_json(r["customer"], dues=r["dues"]) for r in rows],
        "total_outstanding": money(overview["total_outstanding"]),
        "total_collected": money(overview["total_collected"]),
        "customers_with_overdues": overview["customers_with_overdues"],
    })


@billing.route("/customers/<customer_id>/statement.pdf")
@login_required
def statement_pdf(customer_id):
    tz_name = current_app.config["DAIRY_TIMEZONE"]
    default_start, default_end = month_range_for_date(local_today(tz_name))
    start = date_arg(request.args.get("start")) if request.args.get("start") else default_start
    end = date_arg(request.args.get("end")) if request.args.get("end") else default_end
    stmt = customer_statement(load_state(), customer_id, start, end, tz_name)

    buffer = BytesIO()
    render_statement(buffer, stmt, current_app.config["BUSINESS_NAME"])
    buffer.seek(0)
    filename = f"statement_{stmt['customer'].name}_{start}_{end}.pdf"
    return send_file(buffer, as_attachment=True, download_name=filename, mimetype="application/pdf")


def render_statement(buffer, stmt, business_name):
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    margin = 15 * mm
    usable_width = width - 2 * margin

    # header
    y = height - margin
    c.setFillColorRGB(0.1, 0.3, 0.6)
    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, y, business_name.upper())
    y -= 10 * mm
    c.setStrokeColorRGB(0.1, 0.3, 0.6)
    c.setLineWidth(1.5)
    c.line(margin, y, width - margin, y)
    y -= 8 * mm

    customer = stmt["customer"]
    c.setFont("Helvetica-Bold", 12)
    c.setFillColorRGB(0, 0, 0)
    c.drawString(margin, y, f"Statement for: {customer.name} ({customer.mobile})")
    y -= 6 * mm
    c.setFont("Helvetica", 10)
    c.drawString(margin, y, f"Period: {stmt['start']} to {stmt['end']}")
    y -= 5 * mm
    c.drawString(margin, y, f"Opening balance: Rs. {stmt['opening_balance']:.2f}")
    y -= 10 * mm

    col_headers = ["Date", "Item", "Qty", "Rate", "Amount"]
    col_widths = [0.20, 0.34, 0.12, 0.14, 0.20]
    col_positions = [margin]
    for w in col_widths:
        col_positions.append(col_positions[-1] + w * usable_width)

    def header_row(y):
        c.setFont("Helvetica-Bold", 9)
        c.setFillColorRGB(0.95, 0.95, 1)
        c.rect(margin, y - 3, usable_width, 10, fill=1, stroke=0)
        c.setFillColorRGB(0, 0, 0)
        for i, h in enumerate(col_headers):
            c.drawString(col_positions[i] + 2, y, h)
        c.setFont("Helvetica", 9)
        return y - 12

    def row(y, values, shaded):
        if y < margin + 40:
            c.showPage()
            y = header_row(height - margin)
        if shaded:
            c.setFillColorRGB(0.98, 0.98, 0.98)
            c.rect(margin, y - 2, usable_width, 10, fill=1, stroke=0)
        c.setFillColorRGB(0, 0, 0)
        for i, v in enumerate(values):
            if i >= 2:  # numbers right aligned
                c.drawRightString(col_positions[i + 1] - 2, y, v)
            else:
                c.drawString(col_positions[i] + 2, y, v)
        return y - 12

    y = header_row(y)
    shaded = False
    for delivery, product in stmt["deliveries"]:
        item = product.name if product else "Removed product"
        unit = product.unit if product else ""
        y = row(y, [
            delivery.date.strftime("%d-%m-%Y"),
            item,
            f"{delivery.quantity}{unit and ' ' + unit}",
            f"{delivery.price:.2f}",
            f"{delivery.amount:.2f}",
        ], shaded)
        shaded = not shaded
    for payment in stmt["payments"]:
        y = row(y, [
            payment.date.strftime("%d-%m-%Y"),
            f"Payment ({payment.mode.upper()})",
            "",
            "",
            f"-{payment.amount:.2f}",
        ], shaded)
        shaded = not shaded

    # totals
    y -= 5
    c.setStrokeColorRGB(0.1, 0.3, 0.6)
    c.line(margin, y, width - margin, y)
    c.setFont("Helvetica", 10)
    c.setFillColorRGB(0, 0, 0)
    for label, value in (("Billed", stmt["billed"]), ("Paid", stmt["paid"])):
        y -= 12
        c.drawRightString(width - margin, y, f"{label}: Rs. {value:.2f}")
    y -= 14
    c.setFont("Helvetica-Bold", 11)
    c.setFillColorRGB(0.1, 0.3, 0.6)
    closing = stmt["closing_balance"]
    label = "Balance due" if closing >= 0 else "Advance"
    c.drawRightString(width - margin, y, f"{label}: Rs. {abs(closing):.2f}")

    c.setFont("Helvetica-Oblique", 9)
    c.setFillColorRGB(0.4, 0.4, 0.4)
    c.drawCentredString(width / 2, margin, f"Thank you for choosing {business_name}.")

    c.showPage()
    c.save()
