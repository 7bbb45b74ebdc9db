import asyncio

import pytest
from sqlalchemy import update

from conftest import auth_headers, count_sales, create_product, create_user, sale_payload, stock_of
from techmarket import schemas
from techmarket.cache import SALES_ALL, product_key, sale_key
from techmarket.http_exception import ResourceConflictException, ValidationException
from techmarket.models import Product
from techmarket.services import sales as sales_service


async def test_create_sale_decrements_stock_and_keeps_snapshot(client, db, session_factory, customer):
    product = await create_product(db, name="Teclado Mecanico", price=349.0, stock=5)

    response = await client.post(
        "/sales/", json=sale_payload((product, 2)), headers=auth_headers(customer)
    )

    assert response.status_code == 201
    body = response.json()
    assert body["total"] == 698.0
    assert body["payment_method"] == "pix"
    assert body["user_id"] == customer.id
    assert body["user"] == {"id": customer.id, "username": "joao"}
    assert len(body["items"]) == 1
    item = body["items"][0]
    assert item["name"] == "Teclado Mecanico"
    assert item["price"] == 349.0
    assert item["quantity"] == 2
    assert item["product"]["stock"] == 3
    assert await stock_of(session_factory, product.id) == 3


async def test_snapshot_is_not_synced_with_product_changes(client, db, session_factory, admin, customer):
    product = await create_product(db, name="Webcam HD", price=200.0, stock=4)
    created = await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))
    sale_id = created.json()["id"]

    await client.put(f"/products/{product.id}", json={"price": 250.0}, headers=auth_headers(admin))
    response = await client.get(f"/sales/{sale_id}", headers=auth_headers(admin))

    item = response.json()["items"][0]
    assert item["price"] == 200.0
    assert item["product"]["price"] == 250.0


async def test_total_mismatch_is_rejected_citing_both_values(client, db, session_factory, customer):
    product = await create_product(db, price=175.0, stock=10)

    response = await client.post(
        "/sales/", json=sale_payload((product, 2), total=300), headers=auth_headers(customer)
    )

    assert response.status_code == 400
    message = response.json()["message"]
    assert "300" in message
    assert "350" in message
    assert await stock_of(session_factory, product.id) == 10
    assert await count_sales(session_factory) == 0


async def test_insufficient_stock_names_product_and_keeps_stock(client, db, session_factory, customer):
    product = await create_product(db, name="Monitor 27", price=1000.0, stock=1)

    response = await client.post("/sales/", json=sale_payload((product, 2)), headers=auth_headers(customer))

    assert response.status_code == 400
    message = response.json()["message"]
    assert "Estoque insuficiente" in message
    assert "Monitor 27" in message
    assert f"ID: {product.id}" in message
    assert await stock_of(session_factory, product.id) == 1


async def test_price_mismatch_cites_sent_and_current_price(client, db, session_factory, customer):
    product = await create_product(db, price=100.0, stock=3)

    response = await client.post(
        "/sales/", json=sale_payload((product, 1, 90.0)), headers=auth_headers(customer)
    )

    assert response.status_code == 400
    message = response.json()["message"]
    assert "enviado 90.0" in message
    assert "atual 100.0" in message
    assert await stock_of(session_factory, product.id) == 3


async def test_price_within_tolerance_is_accepted(client, db, session_factory, customer):
    product = await create_product(db, price=10.0, stock=3)

    response = await client.post(
        "/sales/", json=sale_payload((product, 1, 10.005)), headers=auth_headers(customer)
    )

    assert response.status_code == 201
    assert await stock_of(session_factory, product.id) == 2


async def test_name_mismatch_is_rejected(client, db, session_factory, customer):
    product = await create_product(db, name="Headset", price=50.0, stock=3)
    payload = sale_payload((product, 1))
    payload["items"][0]["name"] = "Headset antigo"

    response = await client.post("/sales/", json=payload, headers=auth_headers(customer))

    assert response.status_code == 400
    assert "divergente" in response.json()["message"]
    assert await stock_of(session_factory, product.id) == 3


async def test_unknown_product_is_not_found(client, db, customer):
    product = await create_product(db, stock=3)
    payload = sale_payload((product, 1))
    payload["items"][0]["product_id"] = 9999

    response = await client.post("/sales/", json=payload, headers=auth_headers(customer))

    assert response.status_code == 404
    assert "9999" in response.json()["message"]


async def test_non_positive_product_id_is_invalid(client, db, customer):
    product = await create_product(db, stock=3)
    payload = sale_payload((product, 1))
    payload["items"][0]["product_id"] = 0

    response = await client.post("/sales/", json=payload, headers=auth_headers(customer))

    assert response.status_code == 422


async def test_empty_cart_is_rejected(client, customer):
    payload = {"client": "Maria", "total": 0, "payment_method": "cash", "items": []}

    response = await client.post("/sales/", json=payload, headers=auth_headers(customer))

    assert response.status_code == 422
    assert "pelo menos um item" in response.json()["message"]


async def test_failure_on_later_item_rolls_back_earlier_decrements(client, db, session_factory, customer):
    first = await create_product(db, name="Cabo HDMI", price=30.0, stock=5)
    second = await create_product(db, name="Hub USB", price=80.0, stock=1)

    response = await client.post(
        "/sales/", json=sale_payload((first, 2), (second, 3)), headers=auth_headers(customer)
    )

    assert response.status_code == 400
    assert await stock_of(session_factory, first.id) == 5
    assert await stock_of(session_factory, second.id) == 1
    assert await count_sales(session_factory) == 0


async def test_same_product_twice_in_cart_cannot_oversell(client, db, session_factory, customer):
    product = await create_product(db, price=20.0, stock=3)

    response = await client.post(
        "/sales/", json=sale_payload((product, 2), (product, 2)), headers=auth_headers(customer)
    )

    assert response.status_code == 400
    assert await stock_of(session_factory, product.id) == 3


async def test_two_sales_for_full_stock_only_one_succeeds(client, db, session_factory, customer):
    product = await create_product(db, price=500.0, stock=2)
    payload = sale_payload((product, 2))

    first = await client.post("/sales/", json=payload, headers=auth_headers(customer))
    second = await client.post("/sales/", json=payload, headers=auth_headers(customer))

    assert first.status_code == 201
    assert second.status_code in (400, 409)
    assert await stock_of(session_factory, product.id) == 0
    assert await count_sales(session_factory) == 1


async def test_concurrent_sales_for_full_stock_one_wins_one_conflicts(
    client, db, session_factory, customer, monkeypatch
):
    other = await create_user(db, "ana", "ana12345")
    product = await create_product(db, price=500.0, stock=2)
    payload = sale_payload((product, 2))
    original_get_product = sales_service._get_product
    readers = []
    both_read = asyncio.Event()

    async def get_product_after_both_read(session, requested_id):
        loaded = await original_get_product(session, requested_id)
        # As duas requisições leem estoque 2 antes de qualquer baixa
        readers.append(requested_id)
        if len(readers) == 2:
            both_read.set()
        await asyncio.wait_for(both_read.wait(), timeout=5)
        return loaded

    monkeypatch.setattr(sales_service, "_get_product", get_product_after_both_read)

    responses = await asyncio.gather(
        client.post("/sales/", json=payload, headers=auth_headers(customer)),
        client.post("/sales/", json=payload, headers=auth_headers(other)),
    )

    assert sorted(r.status_code for r in responses) == [201, 409]
    assert await stock_of(session_factory, product.id) == 0
    assert await count_sales(session_factory) == 1


async def test_lost_stock_race_is_a_conflict_and_rolls_back(db, cache, session_factory, customer, monkeypatch):
    product = await create_product(db, name="SSD 1TB", price=400.0, stock=1)
    product_id = product.id
    sale_in = schemas.SaleCreate(**sale_payload((product, 1)))
    original_get_product = sales_service._get_product

    async def racing_get_product(session, requested_id):
        loaded = await original_get_product(session, requested_id)
        # Outra venda leva o estoque entre a leitura e a escrita
        await session.execute(
            update(Product)
            .where(Product.id == requested_id)
            .values(stock=0)
            .execution_options(synchronize_session=False)
        )
        return loaded

    monkeypatch.setattr(sales_service, "_get_product", racing_get_product)

    with pytest.raises(ResourceConflictException) as exc_info:
        await sales_service.create_sale(db, cache, customer.id, sale_in)

    assert exc_info.value.status_code == 409
    assert "SSD 1TB" in exc_info.value.detail
    # O rollback expira os objetos da sessão: usa só o ID guardado
    assert await stock_of(session_factory, product_id) == 1
    assert await count_sales(session_factory) == 0


async def test_buyer_id_must_be_positive(db, cache):
    product = await create_product(db, stock=1)

    with pytest.raises(ValidationException):
        await sales_service.create_sale(db, cache, 0, schemas.SaleCreate(**sale_payload((product, 1))))


async def test_unknown_buyer_is_not_found(client, db, session_factory, customer):
    product = await create_product(db, stock=2)
    await db.delete(customer)
    await db.commit()

    response = await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))

    assert response.status_code == 404
    assert await stock_of(session_factory, product.id) == 2


async def test_create_sale_requires_authentication(client, db):
    product = await create_product(db, stock=2)

    response = await client.post("/sales/", json=sale_payload((product, 1)))

    assert response.status_code == 401


async def test_create_sale_invalidates_cached_listing(client, db, redis_client, admin, customer):
    product = await create_product(db, stock=5)

    listed = await client.get("/sales/", headers=auth_headers(admin))
    assert listed.json() == []
    assert await redis_client.exists(SALES_ALL)

    await client.get(f"/products/{product.id}")
    assert await redis_client.exists(product_key(product.id))

    await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))
    assert not await redis_client.exists(SALES_ALL)
    assert not await redis_client.exists(product_key(product.id))

    listed = await client.get("/sales/", headers=auth_headers(admin))
    assert len(listed.json()) == 1


async def test_admin_lists_all_sales_and_customer_only_own(client, db, admin, customer):
    from conftest import create_user

    other = await create_user(db, "ana", "ana12345")
    product = await create_product(db, stock=10)
    await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))
    await client.post("/sales/", json=sale_payload((product, 2)), headers=auth_headers(other))

    all_sales = await client.get("/sales/", headers=auth_headers(admin))
    own_sales = await client.get("/sales/", headers=auth_headers(customer))
    my_sales = await client.get("/sales/my", headers=auth_headers(other))

    assert len(all_sales.json()) == 2
    assert [s["user_id"] for s in own_sales.json()] == [customer.id]
    assert [s["user_id"] for s in my_sales.json()] == [other.id]


async def test_my_sales_is_for_customers_only(client, admin):
    response = await client.get("/sales/my", headers=auth_headers(admin))

    assert response.status_code == 403


async def test_get_sale_is_admin_only_and_cached(client, db, redis_client, admin, customer):
    product = await create_product(db, stock=5)
    created = await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))
    sale_id = created.json()["id"]

    forbidden = await client.get(f"/sales/{sale_id}", headers=auth_headers(customer))
    response = await client.get(f"/sales/{sale_id}", headers=auth_headers(admin))

    assert forbidden.status_code == 403
    assert response.status_code == 200
    assert response.json()["id"] == sale_id
    assert await redis_client.exists(sale_key(sale_id))


async def test_get_missing_sale_is_not_found(client, admin):
    response = await client.get("/sales/999", headers=auth_headers(admin))

    assert response.status_code == 404
    assert response.json()["message"] == "Venda não encontrada"


async def test_update_sale(client, db, redis_client, admin, customer):
    product = await create_product(db, stock=5)
    created = await client.post("/sales/", json=sale_payload((product, 1)), headers=auth_headers(customer))
    sale_id = created.json()["id"]
    await client.get(f"/sales/{sale_id}", headers=auth_headers(admin))

    response = await client.put(
        f"/sales/{sale_id}",
        json={"client": "Maria Souza", "payment_method": "credit_card"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["client"] == "Maria Souza"
    assert response.json()["payment_method"] == "credit_card"
    assert not await redis_client.exists(sale_key(sale_id))

    refreshed = await client.get(f"/sales/{sale_id}", headers=auth_headers(admin))
    assert refreshed.json()["client"] == "Maria Souza"


async def test_update_missing_sale_is_not_found(client, admin):
    response = await client.put("/sales/999", json={"client": "X"}, headers=auth_headers(admin))

    assert response.status_code == 404


async def test_delete_sale_removes_items_without_restoring_stock(client, db, session_factory, admin, customer):
    product = await create_product(db, stock=5)
    created = await client.post("/sales/", json=sale_payload((product, 2)), headers=auth_headers(customer))
    sale_id = created.json()["id"]

    response = await client.delete(f"/sales/{sale_id}", headers=auth_headers(admin))

    assert response.status_code == 200
    assert await count_sales(session_factory) == 0
    assert await stock_of(session_factory, product.id) == 3
    missing = await client.get(f"/sales/{sale_id}", headers=auth_headers(admin))
    assert missing.status_code == 404
    # Sem itens de venda, o produto volta a poder ser removido
    removed = await client.delete(f"/products/{product.id}", headers=auth_headers(admin))
    assert removed.status_code == 200


def test_calculate_total_rounds_to_cents():
    items = [
        schemas.SaleItemCreate(product_id=1, name="A", price=0.1, quantity=3),
        schemas.SaleItemCreate(product_id=2, name="B", price=19.99, quantity=2),
    ]

    assert sales_service.calculate_total(items) == 40.28
