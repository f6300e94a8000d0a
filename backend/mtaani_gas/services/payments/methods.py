"""
Stored payment method management.

Customers keep at most one active M-Pesa number and any number of cards.
Only a card's brand and last four digits are persisted. The first method a
customer adds becomes the default, and the default cannot be removed.
"""

import re
import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mtaani_gas.core.logging import get_logger
from mtaani_gas.database.base import utcnow
from mtaani_gas.database.models.payment import PaymentMethod
from mtaani_gas.services.payments.enums import PaymentMethodType
from mtaani_gas.services.payments.repository import PaymentRepository
from mtaani_gas.services.payments.service import (
    PaymentMethodError,
    PaymentNotFoundError,
    PaymentProcessingError,
    PaymentValidationError,
)

logger = get_logger(__name__)

MIN_PHONE_DIGITS = 10
MIN_CARD_DIGITS = 13


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def get_card_type(card_number: str) -> str:
    """
    Card brand from the leading digits.

    Args:
        card_number: Card number, separators allowed

    Returns:
        Visa, Mastercard, American Express, Discover or Unknown
    """
    digits = digits_only(card_number)
    if digits.startswith("4"):
        return "Visa"
    if digits[:2] in {"51", "52", "53", "54", "55"}:
        return "Mastercard"
    if digits[:2] in {"34", "37"}:
        return "American Express"
    if digits.startswith("6011") or digits.startswith("65"):
        return "Discover"
    return "Unknown"


class PaymentMethodService:
    """Add, list, default and remove stored payment methods."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = PaymentRepository(session)

    async def list_methods(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        methods = await self.repository.list_methods(user_id)
        return [self._format_method(method) for method in methods]

    async def get_default_method(self, user_id: uuid.UUID) -> Optional[dict[str, Any]]:
        method = await self.repository.get_default_method(user_id)
        return self._format_method(method) if method else None

    async def add_mpesa(self, user_id: uuid.UUID, phone: str) -> dict[str, Any]:
        """
        Register an M-Pesa number.

        Raises:
            PaymentValidationError: If the number is too short or the user
                already has an active M-Pesa method
        """
        digits = digits_only(phone)
        if len(digits) < MIN_PHONE_DIGITS:
            raise PaymentValidationError(
                f"Phone number must have at least {MIN_PHONE_DIGITS} digits"
            )

        existing = await self.repository.count_active_methods(
            user_id, PaymentMethodType.MPESA
        )
        if existing:
            raise PaymentValidationError("An M-Pesa payment method already exists")

        return await self._add(
            user_id,
            type=PaymentMethodType.MPESA,
            provider="M-Pesa",
            last_four=digits[-4:],
            phone_number=phone.strip(),
        )

    async def add_card(
        self,
        user_id: uuid.UUID,
        card_number: str,
        expiry_month: int,
        expiry_year: int,
        cvv: str,
        cardholder_name: str,
    ) -> dict[str, Any]:
        """
        Register a card. The number and CVV are validated and discarded.

        Raises:
            PaymentValidationError: If any card field is invalid
        """
        digits = digits_only(card_number)
        if len(digits) < MIN_CARD_DIGITS:
            raise PaymentValidationError(
                f"Card number must have at least {MIN_CARD_DIGITS} digits"
            )

        if not 1 <= expiry_month <= 12:
            raise PaymentValidationError("Expiry month must be between 1 and 12")

        now = utcnow()
        if (expiry_year, expiry_month) < (now.year, now.month):
            raise PaymentValidationError("Card has expired")

        if not re.fullmatch(r"\d{3,4}", (cvv or "").strip()):
            raise PaymentValidationError("CVV must be 3 or 4 digits")

        if not (cardholder_name or "").strip():
            raise PaymentValidationError("Cardholder name is required")

        return await self._add(
            user_id,
            type=PaymentMethodType.CARD,
            provider=get_card_type(digits),
            last_four=digits[-4:],
        )

    async def set_default(self, method_id: uuid.UUID, user_id: uuid.UUID) -> dict[str, Any]:
        method = await self._get_owned(method_id, user_id)
        try:
            await self.repository.clear_default(user_id)
            await self.repository.mark_default(method.id)
            await self.session.commit()
            await self.session.refresh(method)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PaymentProcessingError(f"Failed to set default payment method: {e}") from e

        logger.info("Default payment method changed", method_id=str(method_id))
        return self._format_method(method)

    async def delete_method(self, method_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """
        Soft delete a payment method.

        Raises:
            PaymentNotFoundError: If the method is not the caller's
            PaymentMethodError: If the method is the default
        """
        method = await self._get_owned(method_id, user_id)
        if method.is_default:
            raise PaymentMethodError("Cannot delete the default payment method")

        try:
            method.is_active = False
            method.updated_at = utcnow()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PaymentProcessingError(f"Failed to delete payment method: {e}") from e

        logger.info("Payment method removed", method_id=str(method_id))

    async def _get_owned(self, method_id: uuid.UUID, user_id: uuid.UUID) -> PaymentMethod:
        method = await self.repository.get_method(method_id, user_id)
        if method is None:
            raise PaymentNotFoundError(
                "Payment method not found",
                payment_method_id=str(method_id),
            )
        return method

    async def _add(self, user_id: uuid.UUID, **fields: Any) -> dict[str, Any]:
        try:
            is_first = await self.repository.count_active_methods(user_id) == 0
            method = await self.repository.add_method(
                user_id=user_id,
                is_default=is_first,
                is_active=True,
                **fields,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PaymentProcessingError(f"Failed to add payment method: {e}") from e

        logger.info(
            "Payment method added",
            method_id=str(method.id),
            type=method.type.value,
            is_default=method.is_default,
        )
        return self._format_method(method)

    @staticmethod
    def _format_method(method: PaymentMethod) -> dict[str, Any]:
        return {
            "id": str(method.id),
            "type": method.type.value,
            "provider": method.provider,
            "last_four": method.last_four,
            "phone_number": method.phone_number,
            "display_name": method.display_name,
            "is_default": method.is_default,
            "created_at": method.created_at.isoformat(),
        }
