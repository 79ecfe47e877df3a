"""Offer repository implementation."""
from typing import Iterable, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.types import utcnow
from digipay.domain.offers.models import Offer, OfferSide, OfferStatus, PaymentMethodKind
from digipay.infra.db.models.offer import OfferModel


class OfferRepository:
    """Offer repository interface."""

    async def create(self, offer: Offer) -> Offer:
        """Create an offer."""
        raise NotImplementedError

    async def get_by_id(self, offer_id: str, for_update: bool = False) -> Optional[Offer]:
        """Get offer by ID."""
        raise NotImplementedError

    async def list_offers(
        self,
        side: Optional[OfferSide] = None,
        owner_id: Optional[str] = None,
        payment_method: Optional[PaymentMethodKind] = None,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Offer]:
        """List offers, best rate first for the taker."""
        raise NotImplementedError

    async def update_fields(self, offer_id: str, **values) -> Optional[Offer]:
        """Update plain (non-amount) fields."""
        raise NotImplementedError

    async def change_amount(self, offer_id: str, old_amount_minor: int, new_amount_minor: int) -> bool:
        """Change total amount keeping consumed constant. False if amount moved underneath us."""
        raise NotImplementedError

    async def consume(self, offer_id: str, amount_minor: int) -> bool:
        """Take amount from remaining if the offer is active and has enough left."""
        raise NotImplementedError

    async def restore(self, offer_id: str, amount_minor: int) -> bool:
        """Give amount back to remaining; completed offers become active again."""
        raise NotImplementedError

    async def set_status(self, offer_id: str, status: OfferStatus, from_statuses: Iterable[OfferStatus]) -> bool:
        """Compare-and-set offer status."""
        raise NotImplementedError

    async def soft_delete(self, offer_id: str) -> bool:
        """Soft delete offer."""
        raise NotImplementedError


class OfferRepositoryImpl(OfferRepository):
    """Offer repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, offer: Offer) -> Offer:
        model = OfferModel.from_entity(offer)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_by_id(self, offer_id: str, for_update: bool = False) -> Optional[Offer]:
        query = select(OfferModel).where(OfferModel.id == offer_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_offers(
        self,
        side: Optional[OfferSide] = None,
        owner_id: Optional[str] = None,
        payment_method: Optional[PaymentMethodKind] = None,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Offer]:
        query = select(OfferModel).where(OfferModel.is_deleted.is_(False))
        if side is not None:
            query = query.where(OfferModel.side == OfferSide(side).value)
        if owner_id is not None:
            query = query.where(OfferModel.owner_id == owner_id)
        if payment_method is not None:
            query = query.where(OfferModel.payment_method == PaymentMethodKind(payment_method).value)
        if active_only:
            query = query.where(
                OfferModel.status == OfferStatus.ACTIVE.value,
                OfferModel.remaining_minor > 0,
            )
        # Sell offers: cheapest first; buy offers: highest bid first
        if side is not None and OfferSide(side) == OfferSide.BUY:
            query = query.order_by(OfferModel.rate_minor.desc(), OfferModel.created_at)
        else:
            query = query.order_by(OfferModel.rate_minor.asc(), OfferModel.created_at)
        query = query.limit(limit).offset(offset).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return [m.to_entity() for m in result.scalars().all()]

    async def update_fields(self, offer_id: str, **values) -> Optional[Offer]:
        if values:
            values["updated_at"] = utcnow()
            await self.session.execute(
                update(OfferModel)
                .where(OfferModel.id == offer_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return await self.get_by_id(offer_id)

    async def change_amount(self, offer_id: str, old_amount_minor: int, new_amount_minor: int) -> bool:
        delta = new_amount_minor - old_amount_minor
        new_remaining = OfferModel.remaining_minor + delta
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.amount_minor == old_amount_minor,
                OfferModel.status != OfferStatus.COMPLETED.value,
                new_remaining >= 0,
            )
            .values(
                amount_minor=new_amount_minor,
                remaining_minor=new_remaining,
                status=case(
                    (new_remaining == 0, OfferStatus.COMPLETED.value),
                    else_=OfferModel.status,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def consume(self, offer_id: str, amount_minor: int) -> bool:
        new_remaining = OfferModel.remaining_minor - amount_minor
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.status == OfferStatus.ACTIVE.value,
                OfferModel.is_deleted.is_(False),
                OfferModel.remaining_minor >= amount_minor,
            )
            .values(
                remaining_minor=new_remaining,
                status=case(
                    (new_remaining == 0, OfferStatus.COMPLETED.value),
                    else_=OfferModel.status,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def restore(self, offer_id: str, amount_minor: int) -> bool:
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.remaining_minor + amount_minor <= OfferModel.amount_minor,
            )
            .values(
                remaining_minor=OfferModel.remaining_minor + amount_minor,
                status=case(
                    (OfferModel.status == OfferStatus.COMPLETED.value, OfferStatus.ACTIVE.value),
                    else_=OfferModel.status,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_status(self, offer_id: str, status: OfferStatus, from_statuses: Iterable[OfferStatus]) -> bool:
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.is_deleted.is_(False),
                OfferModel.status.in_([OfferStatus(s).value for s in from_statuses]),
            )
            .values(status=OfferStatus(status).value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def soft_delete(self, offer_id: str) -> bool:
        result = await self.session.execute(
            update(OfferModel)
            .where(OfferModel.id == offer_id, OfferModel.is_deleted.is_(False))
            .values(is_deleted=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
