"""Offer domain services."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import (
    AuthorizationError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from digipay.domain.common.money import AmountLike, Currency, amount_to_minor, rate_to_minor, to_decimal
from digipay.domain.common.types import generate_id, utcnow
from digipay.domain.offers.models import (
    Offer,
    OfferSide,
    OfferStatus,
    PaymentMethod,
    PaymentMethodKind,
    payment_method_details,
)
from digipay.domain.users.services import UserRepository
from digipay.infra.db.repositories.offer_repo import OfferRepository
from digipay.infra.db.transaction import atomic
from digipay.settings import settings

logger = logging.getLogger(__name__)

_UNSET = object()


def _positive(value: AmountLike, name: str, currency: Currency = Currency.USDT) -> Decimal:
    amount = to_decimal(value)
    amount_to_minor(amount, currency)
    if amount <= 0:
        raise InvalidAmountError(f"{name} must be positive")
    return amount


def _positive_rate(value: AmountLike) -> Decimal:
    rate = to_decimal(value)
    rate_to_minor(rate)
    if rate <= 0:
        raise InvalidAmountError("rate must be positive")
    return rate


def _check_bounds(amount: Decimal, min_amount: Optional[Decimal], max_amount: Optional[Decimal]) -> None:
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValidationError("min_amount cannot exceed max_amount")
    if max_amount is not None and max_amount > amount:
        raise ValidationError("max_amount cannot exceed amount")
    if min_amount is not None and min_amount > amount:
        raise ValidationError("min_amount cannot exceed amount")


def _check_time_limit(minutes: int) -> None:
    lo = settings.min_trade_time_limit_minutes
    hi = settings.max_trade_time_limit_minutes
    if not lo <= minutes <= hi:
        raise ValidationError(f"time_limit_minutes must be between {lo} and {hi}")


class OfferService:
    """Offer registry."""

    def __init__(self, repo: OfferRepository, user_repo: UserRepository, db: AsyncSession):
        self.repo = repo
        self.user_repo = user_repo
        self.db = db

    async def create_offer(
        self,
        owner_id: str,
        side: OfferSide,
        amount: AmountLike,
        rate: AmountLike,
        payment_method: PaymentMethod,
        min_amount: Optional[AmountLike] = None,
        max_amount: Optional[AmountLike] = None,
        time_limit_minutes: Optional[int] = None,
        terms: Optional[str] = None,
    ) -> Offer:
        """Publish an offer. A sell offer needs the stablecoin on hand (checked, not reserved)."""
        side = OfferSide(side)
        amount = _positive(amount, "amount")
        rate = _positive_rate(rate)
        min_amount = _positive(min_amount, "min_amount") if min_amount is not None else None
        max_amount = _positive(max_amount, "max_amount") if max_amount is not None else None
        _check_bounds(amount, min_amount, max_amount)
        if time_limit_minutes is None:
            time_limit_minutes = settings.default_trade_time_limit_minutes
        _check_time_limit(time_limit_minutes)

        owner = await self.user_repo.get_by_id(owner_id)
        if owner is None:
            raise NotFoundError("User", owner_id)
        if owner.is_banned:
            raise AuthorizationError("Banned users cannot create offers")
        if side == OfferSide.SELL and owner.stable_balance < amount:
            raise InsufficientFundsError(Currency.USDT.value, required=amount, available=owner.stable_balance)

        now = utcnow()
        offer = Offer(
            id=generate_id(),
            owner_id=owner_id,
            side=side,
            amount=amount,
            remaining_amount=amount,
            rate=rate,
            status=OfferStatus.ACTIVE,
            min_amount=min_amount,
            max_amount=max_amount,
            payment_method=payment_method,
            time_limit_minutes=time_limit_minutes,
            terms=terms,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        async with atomic(self.db):
            created = await self.repo.create(offer)
        logger.info(
            f"✅ [OFFERS] {owner_id} created {side.value} offer {created.id}: {amount} USDT @ {rate}"
        )
        return created

    async def _get_owned(self, offer_id: str, owner_id: str) -> Offer:
        offer = await self.repo.get_by_id(offer_id, for_update=True)
        if offer is None or offer.is_deleted:
            raise NotFoundError("Offer", offer_id)
        if offer.owner_id != owner_id:
            raise AuthorizationError("Not the owner of this offer")
        return offer

    async def update_offer(
        self,
        offer_id: str,
        owner_id: str,
        amount: Optional[AmountLike] = None,
        rate: Optional[AmountLike] = None,
        min_amount=_UNSET,
        max_amount=_UNSET,
        payment_method: Optional[PaymentMethod] = None,
        time_limit_minutes: Optional[int] = None,
        terms=_UNSET,
    ) -> Offer:
        """Edit an offer. Existing trades keep their own amount/rate snapshot.

        min_amount/max_amount/terms accept None to clear them; leave them out to keep them.
        """
        async with atomic(self.db):
            offer = await self._get_owned(offer_id, owner_id)
            if offer.status == OfferStatus.COMPLETED:
                raise InvalidStateError("Completed offers cannot be edited")

            new_amount = _positive(amount, "amount") if amount is not None else offer.amount
            if new_amount < offer.consumed_amount:
                raise ValidationError(
                    f"amount cannot go below the already traded {offer.consumed_amount}"
                )
            new_min = offer.min_amount if min_amount is _UNSET else (
                _positive(min_amount, "min_amount") if min_amount is not None else None
            )
            new_max = offer.max_amount if max_amount is _UNSET else (
                _positive(max_amount, "max_amount") if max_amount is not None else None
            )
            _check_bounds(new_amount, new_min, new_max)

            values = {}
            if rate is not None:
                values["rate_minor"] = rate_to_minor(_positive_rate(rate))
            if min_amount is not _UNSET:
                values["min_amount_minor"] = amount_to_minor(new_min, Currency.USDT) if new_min is not None else None
            if max_amount is not _UNSET:
                values["max_amount_minor"] = amount_to_minor(new_max, Currency.USDT) if new_max is not None else None
            if payment_method is not None:
                values["payment_method"] = payment_method.kind.value
                values["payment_details"] = payment_method_details(payment_method)
            if time_limit_minutes is not None:
                _check_time_limit(time_limit_minutes)
                values["time_limit_minutes"] = time_limit_minutes
            if terms is not _UNSET:
                values["terms"] = terms

            if new_amount != offer.amount:
                if offer.side == OfferSide.SELL and new_amount > offer.amount:
                    owner = await self.user_repo.get_by_id(owner_id)
                    if owner.stable_balance < new_amount - offer.consumed_amount:
                        raise InsufficientFundsError(
                            Currency.USDT.value,
                            required=new_amount - offer.consumed_amount,
                            available=owner.stable_balance,
                        )
                changed = await self.repo.change_amount(
                    offer_id,
                    amount_to_minor(offer.amount, Currency.USDT),
                    amount_to_minor(new_amount, Currency.USDT),
                )
                if not changed:
                    raise InvalidStateError("Offer changed concurrently; retry")
            updated = await self.repo.update_fields(offer_id, **values)
        changed_fields = sorted(values)
        if new_amount != offer.amount:
            changed_fields.append("amount")
        logger.info(f"📝 [OFFERS] {owner_id} updated offer {offer_id}: {changed_fields}")
        return updated

    async def delete_offer(self, offer_id: str, owner_id: str) -> None:
        """Soft delete; trades already opened against it continue."""
        async with atomic(self.db):
            await self._get_owned(offer_id, owner_id)
            await self.repo.soft_delete(offer_id)
        logger.info(f"🗑️ [OFFERS] {owner_id} deleted offer {offer_id}")

    async def set_status(self, offer_id: str, owner_id: str, status: OfferStatus) -> Offer:
        """Pause or re-activate an offer."""
        status = OfferStatus(status)
        if status == OfferStatus.COMPLETED:
            raise ValidationError("Offers complete automatically when exhausted")
        async with atomic(self.db):
            offer = await self._get_owned(offer_id, owner_id)
            if offer.status == status:
                return offer
            source = OfferStatus.PAUSED if status == OfferStatus.ACTIVE else OfferStatus.ACTIVE
            if not await self.repo.set_status(offer_id, status, [source]):
                raise InvalidStateError(f"Offer {offer_id} is {offer.status.value}; cannot set {status.value}")
            updated = await self.repo.get_by_id(offer_id)
        logger.info(f"📝 [OFFERS] Offer {offer_id}: {offer.status.value} -> {status.value}")
        return updated

    async def get_offer(self, offer_id: str) -> Offer:
        offer = await self.repo.get_by_id(offer_id)
        if offer is None or offer.is_deleted:
            raise NotFoundError("Offer", offer_id)
        return offer

    async def list_offers(
        self,
        side: Optional[OfferSide] = None,
        owner_id: Optional[str] = None,
        payment_method: Optional[PaymentMethodKind] = None,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Offer]:
        return await self.repo.list_offers(side, owner_id, payment_method, active_only, limit, offset)
