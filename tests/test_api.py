import main
from errors import UpstreamError

STORE_FORM = {
    "name": "Kala Ghar",
    "username": "KalaGhar",
    "description": "Blue pottery from Jaipur",
    "email": "hello@kalaghar.in",
    "contact": "9876543210",
    "address": "Jaipur, Rajasthan",
    "password": "kalaghar123",
}

PRODUCT_FORM = {
    "name": "Blue Pottery Vase",
    "description": "Hand-painted vase",
    "category": "pottery",
    "mrp": 1899,
    "price": 1499,
    "images": ["https://img.kalaghar.in/vase.jpg"],
    "stockQuantity": 0,
}


def owner_login(client):
    res = client.post("/store-owner/login", json={"email": STORE_FORM["email"], "password": STORE_FORM["password"]})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/schema").json()["product"]["title"] == "Product"


def test_signup_then_login(client):
    res = client.post("/auth/signup", json={"name": "Ravi", "email": "ravi@mail.in", "password": "secret123"})
    assert res.status_code == 200
    assert client.post("/auth/signup", json={"name": "Ravi", "email": "ravi@mail.in",
                                             "password": "secret123"}).status_code == 400
    res = client.post("/auth/login", json={"email": "ravi@mail.in", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["email"] == "ravi@mail.in"
    assert client.post("/auth/login", json={"email": "ravi@mail.in", "password": "nope"}).status_code == 401


def test_admin_login(client):
    assert client.post("/admin/login", json={"username": "admin", "password": "wrong"}).status_code == 401
    res = client.post("/admin/login", json={"username": "admin", "password": "admin"})
    assert res.json()["success"] is True


def test_store_submission_missing_fields_is_400(client):
    res = client.post("/stores", json={"name": "Kala Ghar"})
    assert res.status_code == 400
    assert res.json()["success"] is False
    assert "username" in res.json()["error"]


def test_admin_routes_need_admin_token(client, customer):
    assert client.get("/stores").status_code in (401, 403)
    assert client.get("/stores", headers=customer["headers"]).status_code == 403


def test_full_approval_flow(client, admin_headers):
    res = client.post("/stores", json=STORE_FORM)
    assert res.status_code == 200
    store = res.json()["data"]
    assert store["username"] == "kalaghar"
    assert store["status"] == "pending"
    assert "passwordHash" not in store

    owner = owner_login(client)
    res = client.post("/store-owner/products", json=PRODUCT_FORM, headers=owner)
    assert res.status_code == 200
    product = res.json()["product"]
    assert product["status"] == "pending"
    assert product["inStock"] is False

    res = client.patch("/products/approve", json={"productId": product["id"], "status": "approved"},
                       headers=admin_headers)
    assert res.status_code == 200
    approved = res.json()["product"]
    assert approved["stockQuantity"] == 50
    assert approved["inStock"] is True
    assert client.get("/products").json()["data"] == []

    res = client.patch("/products/approve", json={"productId": product["id"], "status": "approved"},
                       headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Product is not pending approval"

    version = client.get("/products/version").json()["version"]
    res = client.patch("/stores/approve", json={"storeId": store["id"], "status": "approved"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["isActive"] is True
    assert client.get("/products/version").json()["version"] > version

    listed = client.get("/products").json()["data"]
    assert [p["id"] for p in listed] == [product["id"]]
    assert listed[0]["store"]["name"] == "Kala Ghar"

    res = client.patch("/stores/active", json={"storeId": store["id"], "isActive": False}, headers=admin_headers)
    assert res.json()["data"]["status"] == "suspended"
    assert client.get("/products").json()["data"] == []
    assert client.get(f"/products/{product['id']}").json()["product"]["id"] == product["id"]


def test_owner_stock_and_price_endpoints(client, db, make_store, make_product, store_headers):
    store = make_store()
    product = make_product(store, stock=5)
    headers = store_headers(store)
    pid = str(product["_id"])

    res = client.put("/store-owner/products/stock", json={"productId": pid, "quantity": 5, "operation": "subtract"},
                     headers=headers)
    assert res.json()["product"]["inStock"] is False
    res = client.patch("/store-owner/products", json={"productId": pid, "updateData": {"inStock": True}},
                       headers=headers)
    assert res.status_code == 400
    res = client.put("/store-owner/products/price", json={"productId": pid, "price": 0}, headers=headers)
    assert res.status_code == 400
    res = client.request("DELETE", "/store-owner/products", json={"productId": pid}, headers=headers)
    assert res.status_code == 200
    assert db["product"].count_documents({}) == 0


def test_other_stores_product_is_not_found(client, make_store, make_product, store_headers):
    owner, intruder = make_store(), make_store()
    product = make_product(owner)
    res = client.put("/store-owner/products/stock", json={"productId": str(product["_id"]), "quantity": 1},
                     headers=store_headers(intruder))
    assert res.status_code == 404


def test_geocoding_failure_does_not_block_submission(client, monkeypatch):
    def broken(address):
        raise UpstreamError("geocoding unavailable: timeout")

    monkeypatch.setattr(main, "geocode", broken)
    res = client.post("/stores", json=STORE_FORM)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "pending"
    assert res.json()["warnings"] == ["geocoding failed: geocoding unavailable: timeout"]


def test_email_failure_does_not_block_approval(client, monkeypatch, make_store, admin_headers):
    def broken(*args, **kwargs):
        raise UpstreamError("could not send email")

    monkeypatch.setattr(main, "notify_store_reviewed", broken)
    store = make_store(status="pending")
    res = client.patch("/stores/approve", json={"storeId": str(store["_id"]), "status": "approved"},
                       headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "approved"
    assert len(res.json()["warnings"]) == 1


def test_coupon_endpoints(client, make_store, admin_headers, store_headers):
    store = make_store(name="Kala Ghar")
    res = client.post("/admin/coupons", json={"code": "save10", "description": "10% off", "discountValue": 10,
                                              "expiresAt": "2099-01-01T00:00:00Z", "isPublic": True},
                      headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["code"] == "SAVE10"

    res = client.post("/store/coupons", json={"code": "SAVE10", "description": "dup", "discountValue": 5,
                                              "expiresAt": "2099-01-01T00:00:00Z"}, headers=store_headers(store))
    assert res.status_code == 400
    assert res.json()["error"] == "Coupon code already exists"

    assert [c["code"] for c in client.get("/coupons").json()["data"]] == ["SAVE10"]

    cart = [{"productId": "p1", "storeId": str(store["_id"]), "price": 600, "quantity": 2}]
    res = client.post("/coupons/validate", json={"code": "save10", "cartItems": cart})
    assert res.status_code == 200
    assert res.json()["data"]["discount"] == 120
    assert res.json()["data"]["coupon"]["isStoreCoupon"] is False

    res = client.post("/coupons/validate", json={"code": "NOPE", "cartItems": cart})
    assert res.status_code == 404


def test_store_coupon_moderation(client, make_store, admin_headers, store_headers):
    store = make_store(name="Kala Ghar")
    res = client.post("/store/coupons", json={"code": "KALA15", "description": "15% off", "discountValue": 15,
                                              "expiresAt": "2099-01-01T00:00:00Z"}, headers=store_headers(store))
    coupon = res.json()["data"]
    assert coupon["status"] == "pending"

    pending = client.get("/admin/store-coupons?status=pending", headers=admin_headers).json()["data"]
    assert [c["storeName"] for c in pending] == ["Kala Ghar"]

    url = f"/admin/store-coupons/{coupon['id']}"
    assert client.put(url, json={"action": "approve"}, headers=admin_headers).json()["data"]["isActive"] is True
    assert client.put(url, json={"action": "reject"}, headers=admin_headers).status_code == 400


def test_checkout(client, make_store, make_product, customer):
    store = make_store()
    product = make_product(store, price=450)
    address = {"name": "Asha Rao", "phone": "9812345678", "street": "12 MG Road", "city": "Bengaluru",
               "state": "Karnataka", "pincode": "560001"}
    res = client.post("/orders", json={"items": [{"productId": str(product["_id"]), "quantity": 2}],
                                       "address": address, "paymentMethod": "COD"}, headers=customer["headers"])
    assert res.status_code == 200
    order = res.json()["data"]
    assert order["subtotal"] == 900
    assert order["total"] == 950
    assert order["items"][0]["storeId"] == str(store["_id"])
    assert [o["id"] for o in client.get("/orders", headers=customer["headers"]).json()["data"]] == [order["id"]]


def test_ai_fallbacks(client):
    res = client.post("/ai/improve-description", json={"name": "Brass Diya", "category": "Lighting"})
    assert res.json()["source"] == "fallback"
    assert res.json()["description"].startswith("Brass Diya is a carefully made lighting")

    first = client.post("/ai/product-image", json={"name": "Diya", "category": "lighting"}).json()
    again = client.post("/ai/product-image", json={"name": "Diya", "category": "lighting"}).json()
    assert first["url"] == again["url"]
    assert first["strategy"] == "placeholder"


def test_non_finite_stock_quantity_is_a_client_error(client, make_store, make_product, store_headers):
    store = make_store()
    product = make_product(store, stock=4)
    headers = {**store_headers(store), "Content-Type": "application/json"}
    for raw in ("Infinity", "-Infinity", "NaN", "1e400"):
        body = '{"productId": "%s", "updateData": {"stockQuantity": %s}}' % (product["_id"], raw)
        res = client.patch("/store-owner/products", content=body, headers=headers)
        assert res.status_code == 400
        assert res.json()["success"] is False
    res = client.get(f"/products/{product['_id']}")
    assert res.json()["product"]["stockQuantity"] == 4


def test_store_owner_profile_and_password(client, make_store, store_headers):
    first, second = make_store(), make_store()
    headers = store_headers(first)
    assert client.get("/store-owner/profile", headers=headers).json()["store"]["username"] == "store1"

    res = client.put("/store-owner/profile", json={"username": "Kala_Ghar", "description": "Blue pottery"},
                     headers=headers)
    assert res.status_code == 200
    assert res.json()["store"]["username"] == "kala_ghar"
    assert res.json()["store"]["description"] == "Blue pottery"
    res = client.put("/store-owner/profile", json={"username": second["username"]}, headers=headers)
    assert res.status_code == 400
    assert client.put("/store-owner/profile", json={"email": "not-an-email"}, headers=headers).status_code == 400

    res = client.post("/store-owner/change-password", json={"currentPassword": "wrong", "newPassword": "fresh123",
                                                           "email": first["email"]}, headers=headers)
    assert res.status_code == 400
    assert res.json()["error"] == "Current password is incorrect"
    res = client.post("/store-owner/change-password", json={"currentPassword": "secret123",
                                                           "newPassword": "fresh123", "email": first["email"]},
                      headers=headers)
    assert res.status_code == 200
    login = client.post("/store-owner/login", json={"email": first["email"], "password": "fresh123"})
    assert login.status_code == 200


def test_admin_store_chat_round_trip(client, make_store, admin_headers, store_headers):
    store = make_store(name="Kala Ghar")
    headers = store_headers(store)
    opened = client.get("/store-owner/chat", headers=headers).json()
    assert opened["messages"] == []
    assert opened["store_name"] == "Kala Ghar"
    assert client.get("/admin/chat/conversations", headers=admin_headers).json()["conversations"] == []

    res = client.post("/store-owner/chat/messages", json={"message": "When is payout?"}, headers=headers)
    assert res.json()["message"]["senderType"] == "store"

    listed = client.get("/admin/chat/conversations", headers=admin_headers).json()["conversations"]
    assert [c["store"]["name"] for c in listed] == ["Kala Ghar"]
    assert listed[0]["unreadCount"] == 1
    assert listed[0]["unreadByAdmin"] is True

    url = f"/admin/chat/conversations/{store['_id']}"
    client.post(f"{url}/messages", json={"message": "Every Friday"}, headers=admin_headers)
    assert client.put(f"{url}/read", headers=admin_headers).json()["updated"] == 1
    page = client.get("/store-owner/chat/messages?limit=1", headers=headers).json()
    assert [m["message"] for m in page["messages"]] == ["Every Friday"]
    assert page["pagination"] == {"page": 1, "limit": 1, "total": 2, "hasMore": True}

    assert client.post("/store-owner/chat/messages", json={"message": "  "}, headers=headers).status_code == 400
    assert client.get("/admin/chat/conversations", headers=store_headers(store)).status_code == 403


def test_rating_needs_an_order(client, make_store, make_product, customer):
    store = make_store()
    product = make_product(store, price=450)
    pid = str(product["_id"])
    res = client.post("/ratings", json={"productId": pid, "rating": 5}, headers=customer["headers"])
    assert res.status_code == 400

    saved = client.post("/addresses", json={"name": "Asha Rao", "phone": "9812345678", "street": "12 MG Road",
                                            "city": "Bengaluru", "state": "Karnataka", "pincode": "560001"},
                        headers=customer["headers"]).json()["data"]
    assert saved["isDefault"] is True
    res = client.post("/orders", json={"items": [{"productId": pid, "quantity": 1}], "addressId": saved["id"]},
                      headers=customer["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["address"]["city"] == "Bengaluru"

    assert client.post("/ratings", json={"productId": pid, "rating": 6},
                       headers=customer["headers"]).status_code == 400
    res = client.post("/ratings", json={"productId": pid, "rating": 4, "review": "Lovely glaze"},
                      headers=customer["headers"])
    assert res.status_code == 200
    body = client.get(f"/products/{pid}/ratings").json()
    assert body["summary"] == {"average": 4, "count": 1}
    assert body["data"][0]["user"]["name"] == "Asha Rao"
    assert body["data"][0]["product"]["store"]["id"] == str(store["_id"])


def test_contact_form_review(client, admin_headers):
    res = client.post("/contact", json={"name": "Meera", "email": "meera@mail.in", "subject": "Bulk order",
                                        "message": "Do you ship to Pune?"})
    assert res.status_code == 200
    form = res.json()["data"]
    assert form["status"] == "new"
    assert form["type"] == "general"
    assert client.post("/contact", json={"name": "Meera", "email": "nope", "subject": "x",
                                         "message": "y"}).status_code == 400
    assert client.post("/contact", json={"name": "Meera"}).status_code == 400

    listed = client.get("/admin/contact-forms?status=new", headers=admin_headers).json()
    assert [f["id"] for f in listed["data"]] == [form["id"]]
    assert listed["pagination"] == {"currentPage": 1, "totalPages": 1, "totalItems": 1, "itemsPerPage": 10}

    url = f"/admin/contact-forms/{form['id']}"
    replied = client.post(f"{url}/reply", json={"reply": "Yes we do", "adminName": "Priya"},
                          headers=admin_headers).json()["data"]
    assert replied["status"] == "replied"
    assert replied["repliedBy"] == "Priya"
    assert client.patch(url, json={"status": "closed"}, headers=admin_headers).json()["data"]["status"] == "closed"
    assert client.patch(url, json={"status": "archived"}, headers=admin_headers).status_code == 400
    assert client.get("/admin/contact-forms", headers=admin_headers).json()["pagination"]["totalItems"] == 1
