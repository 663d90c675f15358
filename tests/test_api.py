from storefront.schemas import CONTACTS, ORDERS, PRODUCTS

from conftest import run

CUSTOMER = {
    "customer_name": "Rahim Uddin",
    "email": "rahim@example.com",
    "phone": "+8801234567890",
    "address": "Mirpur 10, Dhaka",
}


def seed_products(gateway):
    run(gateway.insert(PRODUCTS, [
        {"id": "p-a", "name": "Tire Gauge", "description": "digital", "price": 500, "category": "Diagnostics"},
        {"id": "p-b", "name": "Socket Set", "description": "46 pieces", "price": 1890, "category": "Hand Tools"},
    ]))


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def messages(res):
    return [n["message"] for n in res.json()["notifications"]]


def test_root(client):
    assert client.get("/").json() == {"message": "ZontropaTi Storefront API running"}


def test_products_listing(client, gateway):
    seed_products(gateway)
    res = client.get("/products")
    assert res.status_code == 200
    assert [p["id"] for p in res.json()["items"]] == ["p-a", "p-b"]


def test_cart_flow_merges_lines(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    res = client.post("/cart/items/p-a")
    body = res.json()
    assert [(l["product"]["id"], l["quantity"]) for l in body["lines"]] == [("p-a", 2)]
    assert body["total"] == 1000
    assert body["total_display"] == "৳1,000"
    assert messages(res) == ["Tire Gauge added to cart!"]


def test_cart_is_per_visitor(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    client.cookies.clear()
    assert client.get("/cart").json()["count"] == 0


def test_add_unknown_product_is_404(client):
    assert client.post("/cart/items/nope").status_code == 404


def test_remove_and_set_quantity(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    client.post("/cart/items/p-b")
    res = client.put("/cart/items/p-b", json={"quantity": 3})
    assert res.json()["total"] == 500 + 3 * 1890
    res = client.delete("/cart/items/p-a")
    assert messages(res) == ["Product removed from cart!"]
    res = client.delete("/cart/items/p-a")
    assert messages(res) == []
    assert res.json()["count"] == 1


def test_checkout_places_one_row_per_line(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    client.post("/cart/items/p-b")
    res = client.post("/orders", json=CUSTOMER)
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert len(body["order_ids"]) == 2
    assert body["cart"]["count"] == 0
    assert body["form"]["phone"] == "+880"
    assert "Order placed successfully!" in messages(res)
    assert len(gateway.calls_for("insert", ORDERS)) == 1
    assert {r["status"] for r in gateway.rows(ORDERS)} == {"Pending"}


def test_checkout_with_empty_cart(client, gateway):
    res = client.post("/orders", json=CUSTOMER)
    assert res.status_code == 400
    assert messages(res) == ["Your cart is empty. Please add products to order."]
    assert gateway.calls_for("insert") == []


def test_checkout_invalid_phone(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    res = client.post("/orders", json={**CUSTOMER, "phone": "01234567890"})
    assert res.status_code == 422
    assert res.json()["errors"] == {"phone": "Phone must be in +880XXXXXXXXXX format"}
    assert client.get("/cart").json()["count"] == 1


def test_checkout_gateway_failure_keeps_cart(client, gateway):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    client.post("/cart/items/p-b")
    gateway.fail("insert")
    res = client.post("/orders", json=CUSTOMER)
    assert res.status_code == 502
    assert res.json()["ok"] is False
    assert res.json()["cart"]["count"] == 2
    assert res.json()["form"] == CUSTOMER
    assert messages(res) == ["Failed to place order. Please try again."]


def test_checkout_while_previous_one_is_pending(client, gateway):
    from storefront import main

    seed_products(gateway)
    client.post("/cart/items/p-a")
    visitor = main.sessions.peek(client.cookies.get("storefront_session"))
    visitor.form.submitting = True
    res = client.post("/orders", json=CUSTOMER)
    assert res.status_code == 409
    assert gateway.calls_for("insert", ORDERS) == []
    assert visitor.cart.item_count() == 1


def test_signed_in_customer_sees_own_orders(client, gateway):
    seed_products(gateway)
    client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    token = client.post("/auth/login", json={"email": "buyer@example.com", "password": "hunter22"}).json()["token"]
    client.post("/cart/items/p-a")
    client.post("/orders", json=CUSTOMER)
    res = client.get("/orders/mine", headers=auth_header(token))
    assert res.status_code == 200
    assert res.json()["total"] == 1
    assert res.json()["items"][0]["product"]["name"] == "Tire Gauge"


def test_orders_mine_requires_login(client):
    assert client.get("/orders/mine").status_code == 401


def test_auth_me_and_logout(client):
    client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    client.post("/auth/login", json={"email": "buyer@example.com", "password": "hunter22"})
    assert client.get("/auth/me").json()["logged_in"] is True
    client.post("/auth/logout")
    assert client.get("/auth/me").json() == {"logged_in": False, "is_admin": False}


def test_expired_login_cookie_loses_admin_access(client, gateway, monkeypatch):
    from storefront import main
    from storefront.auth import AuthService

    monkeypatch.setattr(main.settings, "JWT_EXPIRES_MIN", -5)
    run(AuthService(gateway, main.settings.JWT_SECRET).sign_up("boss@example.com", "secret123", is_admin=True))
    res = client.post("/auth/login", json={"email": "boss@example.com", "password": "secret123"})
    assert res.status_code == 200
    assert client.get("/admin/stats").status_code == 401
    assert client.get("/auth/me").json() == {"logged_in": False, "is_admin": False}


def test_login_with_bad_password(client):
    client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    res = client.post("/auth/login", json={"email": "buyer@example.com", "password": "wrong-one"})
    assert res.status_code == 401


def test_duplicate_signup(client):
    client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    res = client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    assert res.status_code == 400


def test_contact_form(client, gateway):
    res = client.post("/contacts", json={"name": "Farhana", "email": "farhana@example.com",
                                         "phone": "+8801712345678", "message": "Hi"})
    assert res.status_code == 200
    assert messages(res) == ["Message sent successfully!"]
    assert len(gateway.rows(CONTACTS)) == 1


def test_admin_routes_need_admin(client, gateway):
    assert client.get("/admin/orders").status_code == 401
    client.post("/auth/signup", json={"email": "buyer@example.com", "password": "hunter22"})
    token = client.post("/auth/login", json={"email": "buyer@example.com", "password": "hunter22"}).json()["token"]
    assert client.get("/admin/orders", headers=auth_header(token)).status_code == 403
    assert client.get("/admin/orders", headers=auth_header("garbage")).status_code == 401


def test_admin_order_console(client, gateway, admin_token):
    seed_products(gateway)
    client.post("/cart/items/p-a")
    client.post("/cart/items/p-b")
    client.post("/orders", json=CUSTOMER)
    headers = auth_header(admin_token)

    res = client.get("/admin/orders", params={"category": "Hand Tools"}, headers=headers)
    body = res.json()
    assert body["total"] == 1
    order = body["items"][0]
    assert order["product"]["name"] == "Socket Set"

    res = client.patch(f"/admin/orders/{order['id']}", json={"status": "Delivered"}, headers=headers)
    assert res.status_code == 200
    assert messages(res) == ["Order status updated successfully"]
    res = client.patch(f"/admin/orders/{order['id']}", json={"status": "Pending"}, headers=headers)
    assert res.status_code == 200

    res = client.get("/admin/orders", params={"status": "Pending", "q": "rahim"}, headers=headers)
    assert res.json()["total"] == 2

    assert client.patch("/admin/orders/missing", json={"status": "Shipped"}, headers=headers).status_code == 404
    assert client.patch(f"/admin/orders/{order['id']}", json={"status": "Lost"}, headers=headers).status_code == 422

    stats = client.get("/admin/stats", headers=headers).json()["stats"]
    assert stats == {"total_orders": 2, "pending_orders": 2, "total_products": 2, "total_contacts": 0}


def test_admin_product_lifecycle(client, gateway, admin_token):
    headers = auth_header(admin_token)
    form = {"name": "Floor Jack", "description": "2 ton", "price": "4750", "category": "Lifting"}

    res = client.post("/admin/products", data=form, headers=headers)
    assert res.status_code == 422
    assert "image" in res.json()["errors"]

    res = client.post("/admin/products", data=form, headers=headers,
                      files={"image": ("jack.jpg", b"jpeg-bytes", "image/jpeg")})
    assert res.status_code == 200
    product = res.json()["product"]
    path = product["image_url"].split("/files/", 1)[1]
    assert client.get(f"/files/{path}").content == b"jpeg-bytes"

    res = client.put(f"/admin/products/{product['id']}", data={**form, "price": "5000"}, headers=headers)
    assert res.json()["product"]["price"] == 5000
    assert res.json()["product"]["image_url"] == product["image_url"]

    listing = client.get("/admin/products", params={"q": "jack"}, headers=headers).json()
    assert listing["total"] == 1

    res = client.delete(f"/admin/products/{product['id']}", headers=headers)
    assert res.json()["ok"] is True
    assert gateway.rows(PRODUCTS) == []
    assert gateway.files == {}


def test_admin_contacts_and_reply(client, gateway, admin_token):
    client.post("/contacts", json={"name": "Farhana", "email": "farhana@example.com",
                                   "phone": "+8801712345678", "message": "z" * 130})
    headers = auth_header(admin_token)
    listing = client.get("/admin/contacts", headers=headers).json()
    contact = listing["items"][0]
    assert contact["preview"].endswith("...")
    reply = client.get(f"/admin/contacts/{contact['id']}/reply", headers=headers).json()
    assert reply["mailto"].startswith("mailto:farhana@example.com?")


def test_seed_is_idempotent(client, gateway):
    first = client.post("/seed").json()
    second = client.post("/seed").json()
    assert first["seeded"] > 0
    assert second["seeded"] == 0
    assert len(gateway.rows(PRODUCTS)) == first["seeded"]
