"""
Tests for stored payment method management.
"""

from uuid import UUID, uuid4

import pytest

from mtaani_gas.database.base import utcnow
from mtaani_gas.services.payments.methods import PaymentMethodService, get_card_type
from mtaani_gas.services.payments.service import (
    PaymentMethodError,
    PaymentNotFoundError,
    PaymentValidationError,
)

VISA = "4111 1111 1111 1111"


@pytest.fixture
def service(db_session) -> PaymentMethodService:
    """PaymentMethodService bound to the test session."""
    return PaymentMethodService(db_session)


def _next_year() -> int:
    return utcnow().year + 1


async def _add_visa(service, user_id, number=VISA):
    return await service.add_card(
        user_id,
        card_number=number,
        expiry_month=12,
        expiry_year=_next_year(),
        cvv="123",
        cardholder_name="Wanjiku Kamau",
    )


class TestCardType:
    """Test card brand detection."""

    @pytest.mark.parametrize(
        "number,brand",
        [
            ("4111111111111111", "Visa"),
            ("5500 0000 0000 0004", "Mastercard"),
            ("3400-000000-00009", "American Express"),
            ("6011000000000004", "Discover"),
            ("6500000000000002", "Discover"),
            ("9999999999999", "Unknown"),
        ],
    )
    def test_brand_from_prefix(self, number, brand):
        assert get_card_type(number) == brand


class TestAddMethods:
    """Test registering M-Pesa numbers and cards."""

    async def test_first_method_becomes_default(self, service, customer):
        # Act
        mpesa = await service.add_mpesa(customer.id, "0712 345 678")
        card = await _add_visa(service, customer.id)

        # Assert
        assert mpesa["is_default"] is True
        assert mpesa["last_four"] == "5678"
        assert mpesa["display_name"] == "M-Pesa ****5678"
        assert card["is_default"] is False

    async def test_card_keeps_only_brand_and_last_four(self, service, customer):
        card = await _add_visa(service, customer.id)

        assert card["type"] == "card"
        assert card["provider"] == "Visa"
        assert card["last_four"] == "1111"
        assert card["phone_number"] is None

    async def test_second_mpesa_rejected(self, service, customer):
        await service.add_mpesa(customer.id, "0712345678")

        with pytest.raises(PaymentValidationError) as exc_info:
            await service.add_mpesa(customer.id, "0722000000")

        assert str(exc_info.value) == "An M-Pesa payment method already exists"

    async def test_short_phone_rejected(self, service, customer):
        with pytest.raises(PaymentValidationError):
            await service.add_mpesa(customer.id, "07123")

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"card_number": "4111 1111"}, "Card number must have at least 13 digits"),
            ({"expiry_month": 13}, "Expiry month must be between 1 and 12"),
            ({"expiry_year": 2000}, "Card has expired"),
            ({"cvv": "12a"}, "CVV must be 3 or 4 digits"),
            ({"cardholder_name": "  "}, "Cardholder name is required"),
        ],
    )
    async def test_invalid_card_rejected(self, service, customer, overrides, message):
        fields = {
            "card_number": VISA,
            "expiry_month": 12,
            "expiry_year": _next_year(),
            "cvv": "123",
            "cardholder_name": "Wanjiku Kamau",
            **overrides,
        }

        with pytest.raises(PaymentValidationError) as exc_info:
            await service.add_card(customer.id, **fields)

        assert str(exc_info.value) == message


class TestDefaultAndRemoval:
    """Test switching the default and removing methods."""

    async def test_set_default_moves_the_flag(self, service, customer):
        # Arrange
        mpesa = await service.add_mpesa(customer.id, "0712345678")
        card = await _add_visa(service, customer.id)

        # Act
        updated = await service.set_default(UUID(card["id"]), customer.id)

        # Assert
        assert updated["is_default"] is True
        methods = await service.list_methods(customer.id)
        assert [(m["id"], m["is_default"]) for m in methods] == [
            (card["id"], True),
            (mpesa["id"], False),
        ]
        default = await service.get_default_method(customer.id)
        assert default["id"] == card["id"]

    async def test_default_cannot_be_deleted(self, service, customer):
        mpesa = await service.add_mpesa(customer.id, "0712345678")

        with pytest.raises(PaymentMethodError):
            await service.delete_method(UUID(mpesa["id"]), customer.id)

    async def test_deleted_method_disappears(self, service, customer):
        await service.add_mpesa(customer.id, "0712345678")
        card = await _add_visa(service, customer.id)

        await service.delete_method(UUID(card["id"]), customer.id)

        methods = await service.list_methods(customer.id)
        assert card["id"] not in [m["id"] for m in methods]

    async def test_removed_mpesa_can_be_added_again(self, service, customer):
        card = await _add_visa(service, customer.id)
        mpesa = await service.add_mpesa(customer.id, "0712345678")
        await service.delete_method(UUID(mpesa["id"]), customer.id)

        again = await service.add_mpesa(customer.id, "0722000000")

        assert again["is_default"] is False
        assert card["is_default"] is True

    async def test_foreign_method_not_found(self, service, customer, make_user):
        stranger = await make_user()
        mpesa = await service.add_mpesa(stranger.id, "0712345678")

        with pytest.raises(PaymentNotFoundError):
            await service.set_default(UUID(mpesa["id"]), customer.id)
        with pytest.raises(PaymentNotFoundError):
            await service.delete_method(uuid4(), customer.id)

    async def test_no_default_without_methods(self, service, customer):
        assert await service.get_default_method(customer.id) is None
