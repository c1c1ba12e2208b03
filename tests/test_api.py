from conftest import ADDRESS


def order_payload(product_id, quantity=1, **extra):
    return {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "shipping_address": ADDRESS,
        **extra,
    }


def test_health(client):
    assert client.get("/").status_code == 200
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"


def test_startup_seeds_catalog_and_coupons(client, services):
    assert services.catalog.count() > 0
    assert services.coupons.find("WELCOME10") is not None
    assert services.coupons.find("LUXURY20")["max_discount"] == 50


def test_signup_login_and_me(client, register):
    headers, user_id = register("ava")
    me = client.get("/api/auth/me", headers=headers).json()
    assert me["id"] == user_id
    assert me["is_admin"] is False

    response = client.post("/api/auth/login", json={"username": "ava", "password": "secret123"})
    assert response.status_code == 200
    assert client.post("/api/auth/login", json={"username": "ava", "password": "wrong"}).status_code == 401

    duplicate = client.post("/api/auth/signup", json={
        "username": "ava2", "email": "ava@example.com", "password": "secret123",
    })
    assert duplicate.status_code == 400


def test_order_requires_authentication(client, add_product):
    product_id = add_product(80)
    assert client.post("/api/orders", json=order_payload(product_id)).status_code == 401
    assert client.post("/api/orders", json=order_payload(product_id),
                       headers={"Authorization": "Bearer junk"}).status_code == 401


def test_create_order_uses_server_prices(client, register, add_product):
    headers, user_id = register()
    product_id = add_product(80)
    payload = order_payload(product_id, coupon_code="welcome10")
    payload["items"][0]["price"] = 0.01

    response = client.post("/api/orders", json=payload, headers=headers)

    assert response.status_code == 201, response.text
    order = response.json()
    assert order["user_id"] == user_id
    assert order["items"][0]["price"] == 80.0
    assert order["total"] == 87.76
    assert order["coupon_code"] == "WELCOME10"
    assert order["order_status"] == "processing"

    listed = client.get("/api/orders", headers=headers).json()
    assert [o["id"] for o in listed] == [order["id"]]
    assert client.get(f"/api/orders/{order['id']}", headers=headers).status_code == 200


def test_order_for_unknown_product(client, register):
    headers, _ = register()
    response = client.post("/api/orders", json=order_payload("000000000000000000000000"), headers=headers)
    assert response.status_code == 400
    assert "not found" in response.json()["detail"]


def test_order_with_insufficient_points(client, register, add_product, services):
    headers, user_id = register()
    services.ledger.earn(user_id, 50, "bonus")
    product_id = add_product(80)

    response = client.post("/api/orders", json=order_payload(product_id, points_redeemed=51), headers=headers)

    assert response.status_code == 400
    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 50}
    assert client.get("/api/orders", headers=headers).json() == []


def test_other_users_order_is_forbidden(client, register, add_product):
    headers, _ = register("ava")
    other_headers, _ = register("mia")
    product_id = add_product(80)
    order_id = client.post("/api/orders", json=order_payload(product_id), headers=headers).json()["id"]

    assert client.get(f"/api/orders/{order_id}", headers=other_headers).status_code == 403
    assert client.get("/api/orders/000000000000000000000000", headers=headers).status_code == 404


def test_coupon_preview_never_counts_usage(client, add_product, services):
    product_id = add_product(80)
    body = {"code": "welcome10", "items": [{"product_id": product_id, "quantity": 1}]}

    for _ in range(2):
        response = client.post("/api/coupons/validate", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["coupon"]["code"] == "WELCOME10"
        assert data["coupon"]["discount_amount"] == 8.0

    assert services.coupons.find("WELCOME10")["used_count"] == 0


def test_coupon_preview_failures(client, add_product):
    product_id = add_product(80)
    items = [{"product_id": product_id, "quantity": 1}]

    missing = client.post("/api/coupons/validate", json={"code": "NOPE", "items": items})
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Invalid coupon code"}

    minimum = client.post("/api/coupons/validate", json={"code": "LUXURY20", "items": items})
    assert minimum.status_code == 400
    assert minimum.json()["success"] is False

    assert client.post("/api/coupons/validate", json={"code": "WELCOME10", "items": []}).status_code == 400
    assert client.post("/api/coupons/validate", json={"items": items}).status_code == 400


def test_loyalty_endpoints(client, register, add_product, services):
    headers, user_id = register()
    services.ledger.earn(user_id, 2000, "Welcome bonus")
    product_id = add_product(80)

    order = client.post("/api/orders", json=order_payload(product_id, points_redeemed=1000),
                        headers=headers).json()

    assert order["points_discount"] == 10.0
    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 1000}
    txns = client.get("/api/loyalty/transactions", headers=headers).json()
    assert {t["type"] for t in txns} == {"earned", "redeemed"}
    redeemed = [t for t in txns if t["type"] == "redeemed"][0]
    assert redeemed["order_id"] == order["id"]


def test_payment_order_creation(client, register, add_product, http_session):
    headers, _ = register()
    product_id = add_product(80)

    response = client.post("/api/payments/create-order", json={
        "items": [{"product_id": product_id, "quantity": 1}], "coupon_code": "WELCOME10",
    }, headers=headers)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["amount"] == 8776
    assert body["currency"] == "INR"
    assert body["total_base"] == 87.76
    assert body["coupon_applied"] == "WELCOME10"
    assert http_session.calls[0]["url"].endswith("/orders")
    assert http_session.calls[0]["json"]["amount"] == 8776


def test_payment_verification_settles_order(client, register, add_product, gateway):
    headers, _ = register()
    product_id = add_product(490)
    order = client.post("/api/orders", json=order_payload(product_id, gateway_order_id="order_1"),
                        headers=headers).json()

    bad = client.post("/api/payments/verify", json={
        "gateway_order_id": "order_1", "payment_id": "pay_1", "signature": "forged", "order_id": order["id"],
    }, headers=headers)
    assert bad.status_code == 400
    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 0}

    signature = gateway.expected_signature("order_1", "pay_1")
    good = client.post("/api/payments/verify", json={
        "gateway_order_id": "order_1", "payment_id": "pay_1", "signature": signature, "order_id": order["id"],
    }, headers=headers)
    assert good.status_code == 200, good.text
    assert good.json()["order"]["payment_status"] == "paid"
    assert good.json()["order"]["payment_reference"] == "pay_1"
    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 52}

    again = client.post("/api/payments/verify", json={
        "gateway_order_id": "order_1", "payment_id": "pay_1", "signature": signature, "order_id": order["id"],
    }, headers=headers)
    assert again.status_code == 409


def test_one_payment_cannot_settle_other_orders(client, register, add_product, gateway):
    headers, _ = register()
    product_id = add_product(490)
    paid_for = client.post("/api/orders", json=order_payload(product_id, gateway_order_id="order_cheap"),
                           headers=headers).json()
    unlinked = client.post("/api/orders", json=order_payload(product_id), headers=headers).json()
    other_charge = client.post("/api/orders", json=order_payload(product_id, gateway_order_id="order_big"),
                               headers=headers).json()
    same_charge = client.post("/api/orders", json=order_payload(product_id, gateway_order_id="order_cheap"),
                              headers=headers).json()
    signature = gateway.expected_signature("order_cheap", "pay_1")

    def verify(order_id):
        return client.post("/api/payments/verify", json={
            "gateway_order_id": "order_cheap", "payment_id": "pay_1", "signature": signature,
            "order_id": order_id,
        }, headers=headers)

    assert verify(paid_for["id"]).status_code == 200
    assert verify(unlinked["id"]).status_code == 409
    assert verify(other_charge["id"]).status_code == 409
    assert verify(same_charge["id"]).status_code == 409

    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 52}
    statuses = {o["id"]: o["payment_status"] for o in client.get("/api/orders", headers=headers).json()}
    assert statuses[paid_for["id"]] == "paid"
    assert list(statuses.values()).count("paid") == 1


def test_admin_routes_require_admin(client, register):
    headers, _ = register("ava")
    assert client.get("/api/admin/orders", headers=headers).status_code == 403
    assert client.get("/api/admin/stats", headers=headers).status_code == 403


def test_admin_order_lifecycle(client, register, add_product):
    headers, _ = register("ava")
    admin_headers, _ = register("boss", admin=True)
    product_id = add_product(80)
    order_id = client.post("/api/orders", json=order_payload(product_id), headers=headers).json()["id"]

    illegal = client.patch(f"/api/admin/orders/{order_id}/status", json={"order_status": "delivered"},
                           headers=admin_headers)
    assert illegal.status_code == 409

    shipped = client.patch(f"/api/admin/orders/{order_id}/status", json={"order_status": "shipped"},
                           headers=admin_headers)
    assert shipped.json()["order_status"] == "shipped"

    paid = client.patch(f"/api/admin/orders/{order_id}/payment", json={"payment_reference": "cod-1"},
                        headers=admin_headers)
    assert paid.status_code == 200
    # 80 + 10 shipping + 6.40 tax
    assert paid.json()["points_earned"] == 9
    assert client.get("/api/loyalty/balance", headers=headers).json() == {"points": 9}

    stats = client.get("/api/admin/stats", headers=admin_headers).json()
    assert stats["orders"] == 1
    assert stats["users"] == 2


def test_admin_coupon_crud(client, register, services):
    admin_headers, _ = register("boss", admin=True)

    created = client.post("/api/admin/coupons", json={
        "code": "spring15", "discount_type": "percentage", "discount_value": 15, "max_discount": 30,
    }, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["code"] == "SPRING15"

    updated = client.put("/api/admin/coupons/spring15", json={"is_active": False}, headers=admin_headers)
    assert updated.json()["is_active"] is False

    clash = client.put("/api/admin/coupons/spring15", json={"code": "welcome10"}, headers=admin_headers)
    assert clash.status_code == 400
    assert services.coupons.find("WELCOME10")["discount_value"] == 10

    codes = [c["code"] for c in client.get("/api/admin/coupons", headers=admin_headers).json()]
    assert "SPRING15" in codes

    assert client.delete("/api/admin/coupons/SPRING15", headers=admin_headers).status_code == 200
    assert services.coupons.find("SPRING15") is None
    assert client.delete("/api/admin/coupons/SPRING15", headers=admin_headers).status_code == 404


def test_admin_product_crud(client, register):
    admin_headers, _ = register("boss", admin=True)
    created = client.post("/api/products", json={
        "title": "Linen Shirt", "price": 120, "category": "tops",
    }, headers=admin_headers)
    assert created.status_code == 201
    product_id = created.json()["id"]

    updated = client.put(f"/api/products/{product_id}", json={"price": 99.5}, headers=admin_headers)
    assert updated.json()["price"] == 99.5

    found = client.get("/api/products", params={"search": "linen"}).json()
    assert [p["id"] for p in found] == [product_id]

    assert client.delete(f"/api/products/{product_id}", headers=admin_headers).json() == {"deleted": True}
    assert client.get(f"/api/products/{product_id}").status_code == 404


def test_wishlist(client, register, add_product):
    headers, user_id = register("ava")
    other_headers, _ = register("mia")
    product_id = add_product(80)

    assert client.get("/api/wishlist", headers=headers).json() == []
    added = client.post("/api/wishlist", json={"product_id": product_id}, headers=headers)
    assert added.status_code == 201
    assert added.json()["user_id"] == user_id
    again = client.post("/api/wishlist", json={"product_id": product_id}, headers=headers)
    assert again.json()["id"] == added.json()["id"]

    assert [i["product_id"] for i in client.get("/api/wishlist", headers=headers).json()] == [product_id]
    assert client.get("/api/wishlist", headers=other_headers).json() == []
    missing = client.post("/api/wishlist", json={"product_id": "000000000000000000000000"}, headers=headers)
    assert missing.status_code == 404

    assert client.delete(f"/api/wishlist/{product_id}", headers=headers).status_code == 204
    assert client.get("/api/wishlist", headers=headers).json() == []
    assert client.delete(f"/api/wishlist/{product_id}", headers=headers).status_code == 204
    assert client.get("/api/wishlist").status_code == 401


def test_saved_addresses(client, register):
    headers, user_id = register("ava")
    other_headers, _ = register("mia")

    home = client.post("/api/addresses", json={**ADDRESS, "is_default": True}, headers=headers)
    assert home.status_code == 201
    assert home.json()["user_id"] == user_id
    office = client.post("/api/addresses", json={**ADDRESS, "address_line1": "1 Marine Drive", "is_default": True},
                         headers=headers).json()

    addresses = client.get("/api/addresses", headers=headers).json()
    assert len(addresses) == 2
    assert addresses[0]["id"] == office["id"]
    assert [a["is_default"] for a in addresses] == [True, False]
    assert client.get("/api/addresses", headers=other_headers).json() == []

    incomplete = client.post("/api/addresses", json={"full_name": "Ava"}, headers=headers)
    assert incomplete.status_code == 422


def test_order_with_saved_address(client, register, add_product):
    headers, _ = register("ava")
    other_headers, _ = register("mia")
    product_id = add_product(80)
    address = client.post("/api/addresses", json={**ADDRESS, "address_line1": "1 Marine Drive"},
                          headers=headers).json()
    items = [{"product_id": product_id, "quantity": 1}]

    order = client.post("/api/orders", json={"items": items, "address_id": address["id"]}, headers=headers)
    assert order.status_code == 201, order.text
    assert order.json()["shipping_address"]["address_line1"] == "1 Marine Drive"
    assert "user_id" not in order.json()["shipping_address"]

    foreign = client.post("/api/orders", json={"items": items, "address_id": address["id"]}, headers=other_headers)
    assert foreign.status_code == 404
    assert client.post("/api/orders", json={"items": items}, headers=headers).status_code == 400


def test_payment_order_with_saved_address(client, register, add_product, http_session):
    headers, _ = register("ava")
    product_id = add_product(80)
    address = client.post("/api/addresses", json=ADDRESS, headers=headers).json()
    items = [{"product_id": product_id, "quantity": 1}]

    response = client.post("/api/payments/create-order", json={"items": items, "address_id": address["id"]},
                           headers=headers)
    assert response.status_code == 200, response.text
    assert http_session.calls[0]["json"]["notes"]["address_id"] == address["id"]

    unknown = client.post("/api/payments/create-order",
                          json={"items": items, "address_id": "000000000000000000000000"}, headers=headers)
    assert unknown.status_code == 404
    assert len(http_session.calls) == 1
