"""
API tests for the Flask routes.

Tests cover:
- Authentication and admin-only routes
- Customer onboarding with subscriptions
- Route generation, delivery actions and dues
- Error mapping to JSON responses
"""
import pytest


@pytest.fixture
def milk_id(admin_client):
    resp = admin_client.post("/products", json={"name": "Milk", "unit": "L", "default_price": 60})
    assert resp.status_code == 201
    return resp.get_json()["id"]


@pytest.fixture
def customer_id(admin_client, milk_id):
    resp = admin_client.post("/customers", json={
        "name": "Rajesh Kumar",
        "mobile": "+91 98765 43210",
        "location": {"lat": 28.6139, "lng": 77.2090, "address": "Block A, Sector 15"},
        "subscriptions": [
            {"product_id": milk_id, "quantity": 500, "frequency": "daily", "start_date": "2025-01-01"},
        ],
    })
    assert resp.status_code == 201
    return resp.get_json()["id"]


@pytest.fixture
def route(admin_client, customer_id):
    """Generate Monday's deliveries and return the route payload."""
    resp = admin_client.post("/deliveries/generate", json={"date": "2025-01-06"})
    assert resp.status_code == 200
    assert resp.get_json()["created"] == 1
    return admin_client.get("/deliveries?date=2025-01-06").get_json()


def delivery_id_of(route):
    return route["items"][0]["deliveries"][0]["id"]


# =============================================================================
# Authentication
# =============================================================================

class TestAuth:

    def test_routes_need_login(self, client):
        resp = client.get("/deliveries")

        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Login required."}

    def test_bad_password(self, client):
        resp = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})

        assert resp.status_code == 401

    def test_me(self, rider_client):
        assert rider_client.get("/auth/me").get_json()["role"] == "delivery"

    def test_products_are_admin_only(self, rider_client):
        resp = rider_client.post("/products", json={"name": "Ghee", "unit": "kg", "default_price": 500})

        assert resp.status_code == 403

    def test_logout(self, admin_client):
        assert admin_client.post("/auth/logout").status_code == 200
        assert admin_client.get("/products").status_code == 401


# =============================================================================
# Customers and subscriptions
# =============================================================================

class TestCustomers:

    def test_customer_detail_shows_subscription_estimate(self, admin_client, customer_id):
        data = admin_client.get(f"/customers/{customer_id}").get_json()

        assert data["customer"]["location"]["address"] == "Block A, Sector 15"
        [sub] = data["subscriptions"]
        assert sub["price_per_unit"] == 60.0
        assert sub["estimated_monthly_bill"] == 1800.0
        assert data["monthly_estimate"] == 1800.0

    def test_invalid_subscription_saves_nothing(self, admin_client, milk_id):
        resp = admin_client.post("/customers", json={
            "name": "Amit Patel",
            "mobile": "+91 76543 21098",
            "subscriptions": [{"product_id": milk_id, "quantity": 0, "frequency": "daily"}],
        })

        assert resp.status_code == 400
        assert admin_client.get("/customers").get_json() == []

    @pytest.mark.parametrize("payload", [
        {"location": {"lat": "abc"}},
        {"location": "Delhi"},
        {"subscriptions": ["milk"]},
        {"subscriptions": {"product_id": "x"}},
    ])
    def test_malformed_customer_is_rejected(self, admin_client, payload):
        resp = admin_client.post("/customers", json={"name": "Amit Patel", "mobile": "+91 76543 21098", **payload})

        assert resp.status_code == 400
        assert "error" in resp.get_json()
        assert admin_client.get("/customers").get_json() == []

    def test_patch_rejects_text_flags_and_coordinates(self, admin_client, customer_id):
        assert admin_client.patch(f"/customers/{customer_id}", json={"is_active": "false"}).status_code == 400
        assert admin_client.patch(f"/customers/{customer_id}", json={"location": {"lng": "east"}}).status_code == 400
        assert admin_client.patch(f"/customers/{customer_id}", json={"location": [1, 2]}).status_code == 400

        resp = admin_client.patch(f"/customers/{customer_id}", json={"is_active": False})

        assert resp.status_code == 200
        assert resp.get_json()["is_active"] is False

    def test_custom_estimate(self, admin_client, customer_id):
        curd = admin_client.post("/products", json={"name": "Curd", "unit": "kg", "default_price": 80})
        resp = admin_client.post(f"/customers/{customer_id}/subscriptions", json={
            "product_id": curd.get_json()["id"],
            "quantity": 1000,
            "frequency": "custom",
            "custom_days": [1, 3, 5],
        })

        assert resp.status_code == 201
        assert resp.get_json()["estimated_monthly_bill"] == 1920.0
        estimate = admin_client.get(f"/customers/{customer_id}/estimate").get_json()
        assert estimate["monthly_estimate"] == 3720.0

    def test_second_subscription_replaces_first(self, admin_client, customer_id, milk_id):
        admin_client.post(f"/customers/{customer_id}/subscriptions", json={
            "product_id": milk_id, "quantity": 1000, "frequency": "alternate"})

        subs = admin_client.get(f"/customers/{customer_id}/subscriptions").get_json()

        assert sorted(s["is_active"] for s in subs) == [False, True]

    def test_list_filters(self, admin_client, customer_id):
        admin_client.post("/customers", json={"name": "Priya Sharma", "mobile": "+91 87654 32109"})
        admin_client.post(f"/customers/{customer_id}/pause")

        active = admin_client.get("/customers?status=active").get_json()
        inactive = admin_client.get("/customers?status=inactive").get_json()

        assert [c["name"] for c in active] == ["Priya Sharma"]
        assert [c["name"] for c in inactive] == ["Rajesh Kumar"]
        assert admin_client.get("/customers?sort=bogus").status_code == 400

    def test_delete_needs_admin_and_confirmation(self, admin_client, rider_client, customer_id):
        assert rider_client.delete(f"/customers/{customer_id}", json={"confirm_name": "Rajesh Kumar"}).status_code == 403
        assert admin_client.delete(f"/customers/{customer_id}", json={"confirm_name": "rajesh"}).status_code == 400

        resp = admin_client.delete(f"/customers/{customer_id}", json={"confirm_name": "Rajesh Kumar"})

        assert resp.status_code == 200
        assert admin_client.get(f"/customers/{customer_id}/dues").status_code == 404


# =============================================================================
# Deliveries and dues
# =============================================================================

class TestDeliveryRoute:

    def test_generated_route(self, route):
        [item] = route["items"]
        assert item["status"] == "pending"
        assert item["total_amount"] == 60.0
        assert item["deliveries"][0]["product"]["name"] == "Milk"
        assert route["summary"]["counts"] == {"all": 1, "pending": 1, "delivered": 0, "missed": 0}

    def test_generate_is_idempotent(self, admin_client, route):
        resp = admin_client.post("/deliveries/generate", json={"date": "2025-01-06"})

        assert resp.get_json()["created"] == 0

    def test_deliver_then_dues_then_payment(self, rider_client, route, customer_id):
        delivery_id = delivery_id_of(route)

        resp = rider_client.post(f"/deliveries/{delivery_id}/deliver", json={"notes": "Delivered successfully"})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "delivered"
        assert resp.get_json()["delivered_at"] is not None

        again = rider_client.post(f"/deliveries/{delivery_id}/deliver")
        assert again.status_code == 409

        dues = rider_client.get(f"/customers/{customer_id}/dues").get_json()
        assert dues["dues"] == 60.0
        assert dues["suggested_payment"] == 60.0

        resp = rider_client.post("/payments", json={"customer_id": customer_id, "amount": 100, "mode": "upi"})
        assert resp.status_code == 201
        assert resp.get_json()["dues"] == -40.0

        overview = rider_client.get("/dues").get_json()
        assert overview["total_outstanding"] == 0.0
        assert overview["total_collected"] == 100.0
        assert overview["customers"][0]["dues"] == -40.0

        completed = rider_client.get("/deliveries?date=2025-01-06&status=delivered").get_json()
        assert len(completed["items"]) == 1

    def test_missed_with_pause(self, admin_client, route, customer_id):
        delivery_id = delivery_id_of(route)

        resp = admin_client.post(f"/deliveries/{delivery_id}/miss", json={"reason": "pause", "pause_days": 3})

        assert resp.status_code == 200
        assert resp.get_json()["notes"] == "Customer wants to pause for 3 days"
        assert admin_client.get(f"/customers/{customer_id}/dues").get_json()["dues"] == 0.0
        customer = admin_client.get(f"/customers/{customer_id}").get_json()["customer"]
        assert customer["is_active"] is False
        nothing = admin_client.post("/deliveries/generate", json={"date": "2025-01-07"})
        assert nothing.get_json()["created"] == 0

    def test_missed_needs_reason(self, admin_client, route):
        resp = admin_client.post(f"/deliveries/{delivery_id_of(route)}/miss", json={"reason": ""})

        assert resp.status_code == 400

    def test_ad_hoc_delivery(self, admin_client, customer_id, milk_id):
        resp = admin_client.post("/deliveries", json={
            "customer_id": customer_id, "product_id": milk_id, "date": "2025-01-08", "quantity": 1000})

        assert resp.status_code == 201
        assert resp.get_json()["amount"] == 120.0

    def test_bad_query_parameters(self, admin_client):
        assert admin_client.get("/deliveries?date=06-01-2025").status_code == 400
        assert admin_client.get("/deliveries?date=2025-01-06&status=cancelled").status_code == 400

    def test_unknown_delivery(self, admin_client):
        resp = admin_client.post("/deliveries/nope/deliver")

        assert resp.status_code == 404
        assert "not found" in resp.get_json()["error"]

    def test_payment_needs_json(self, admin_client, customer_id):
        resp = admin_client.post("/payments", data="amount=100")

        assert resp.status_code == 400

    def test_statement_pdf(self, rider_client, route, customer_id):
        rider_client.post(f"/deliveries/{delivery_id_of(route)}/deliver")

        resp = rider_client.get(f"/customers/{customer_id}/statement.pdf?start=2025-01-01&end=2025-01-31")

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")

    def test_dashboard(self, admin_client, customer_id):
        data = admin_client.get("/").get_json()

        assert data["customers"] == 1
        assert data["active_subscriptions"] == 1
