"""
Tests for the customer cart endpoints.
"""

from uuid import uuid4

from httpx import AsyncClient


async def _add(client, headers, product_id, quantity=1):
    return await client.post(
        "/api/cart",
        json={"product_id": str(product_id), "quantity": quantity},
        headers=headers,
    )


class TestAddToCart:
    """Test POST /api/cart."""

    async def test_add_item(self, client: AsyncClient, customer, product, auth_headers):
        # Act
        response = await _add(client, auth_headers(customer), product.id, 2)

        # Assert
        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Item added to cart"
        assert data["item"]["quantity"] == 2
        assert data["item"]["line_total"] == 2400.0

    async def test_adding_same_product_merges_lines(
        self, client: AsyncClient, customer, product, auth_headers
    ):
        headers = auth_headers(customer)
        await _add(client, headers, product.id, 1)
        await _add(client, headers, product.id, 3)

        cart = (await client.get("/api/cart", headers=headers)).json()

        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 4
        assert cart["total_items"] == 4

    async def test_quantity_above_stock_is_accepted(
        self, client: AsyncClient, customer, product, auth_headers
    ):
        """Test stock is only enforced when the order is placed."""
        response = await _add(client, auth_headers(customer), product.id, 50)

        assert response.status_code == 201

    async def test_zero_quantity_returns_400(
        self, client: AsyncClient, customer, product, auth_headers
    ):
        response = await _add(client, auth_headers(customer), product.id, 0)

        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_unknown_product_returns_404(
        self, client: AsyncClient, customer, auth_headers
    ):
        response = await _add(client, auth_headers(customer), uuid4())

        assert response.status_code == 404
        assert response.json()["error"] == "Product not found"


class TestCartContents:
    """Test reading, updating and clearing the cart."""

    async def test_cart_totals(
        self, client: AsyncClient, customer, make_product, auth_headers
    ):
        # Arrange
        headers = auth_headers(customer)
        refill = await make_product("6kg Refill", "1200.00")
        regulator = await make_product("Regulator", "850.00")
        await _add(client, headers, refill.id, 2)
        await _add(client, headers, regulator.id, 1)

        # Act
        cart = (await client.get("/api/cart", headers=headers)).json()

        # Assert
        assert cart["total_items"] == 3
        assert cart["total_amount"] == 3250.0
        assert [i["product_name"] for i in cart["items"]] == ["6kg Refill", "Regulator"]

    async def test_update_quantity(self, client: AsyncClient, customer, product, auth_headers):
        headers = auth_headers(customer)
        item = (await _add(client, headers, product.id)).json()["item"]

        response = await client.patch(
            f"/api/cart/{item['id']}", json={"quantity": 5}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Cart item updated"
        assert response.json()["item"]["quantity"] == 5

    async def test_update_to_zero_removes_line(
        self, client: AsyncClient, customer, product, auth_headers
    ):
        headers = auth_headers(customer)
        item = (await _add(client, headers, product.id)).json()["item"]

        response = await client.patch(
            f"/api/cart/{item['id']}", json={"quantity": 0}, headers=headers
        )

        assert response.json()["message"] == "Item removed from cart"
        cart = (await client.get("/api/cart", headers=headers)).json()
        assert cart["items"] == []

    async def test_remove_item(self, client: AsyncClient, customer, product, auth_headers):
        headers = auth_headers(customer)
        item = (await _add(client, headers, product.id)).json()["item"]

        response = await client.delete(f"/api/cart/{item['id']}", headers=headers)

        assert response.status_code == 200
        assert (await client.get("/api/cart", headers=headers)).json()["total_items"] == 0

    async def test_other_customers_line_not_found(
        self, client: AsyncClient, customer, make_user, product, auth_headers
    ):
        item = (await _add(client, auth_headers(customer), product.id)).json()["item"]
        stranger = await make_user()

        response = await client.delete(f"/api/cart/{item['id']}", headers=auth_headers(stranger))

        assert response.status_code == 404

    async def test_clear_cart(
        self, client: AsyncClient, customer, make_product, auth_headers
    ):
        headers = auth_headers(customer)
        for name in ("Refill", "Burner"):
            product = await make_product(name)
            await _add(client, headers, product.id)

        response = await client.delete("/api/cart", headers=headers)

        assert response.json()["message"] == "Cart cleared (2 items removed)"

    async def test_order_placement_empties_cart(
        self, client: AsyncClient, customer, product, auth_headers
    ):
        headers = auth_headers(customer)
        await _add(client, headers, product.id, 2)

        await client.post("/api/orders", json={"delivery_location": "Kasarani"}, headers=headers)

        cart = (await client.get("/api/cart", headers=headers)).json()
        assert cart["items"] == []
