"""Dispute resolution (admin only)."""
import logging

from digipay.domain.common.errors import AuthorizationError, InvalidStateError, ValidationError
from digipay.domain.common.types import utcnow
from digipay.domain.messaging.services import publish_trade_event
from digipay.domain.trades.models import Resolution, Trade, TradeStatus
from digipay.domain.trades.services import TradeService
from digipay.infra.db.transaction import atomic

logger = logging.getLogger(__name__)


class DisputeService:
    """Resolves disputed trades by releasing to the buyer or refunding (cancelling)."""

    def __init__(self, trades: TradeService):
        self.trades = trades

    async def resolve_dispute(self, trade_id: str, admin_id: str, action: Resolution, admin_notes: str) -> Trade:
        """release: same settlement as release_funds. refund: cancel and give the offer its amount back.

        The fiat leg never passes through the platform, so refund books no ledger entries.
        """
        admin = await self.trades.load_user(admin_id)
        if not admin.is_admin:
            raise AuthorizationError("Admin access required")
        notes = (admin_notes or "").strip()
        if not notes:
            raise ValidationError("admin_notes are required to resolve a dispute")
        try:
            action = Resolution(action)
        except ValueError:
            raise ValidationError(f"Unknown resolution: {action}")

        async with atomic(self.trades.db):
            trade = await self.trades.load_trade(trade_id, for_update=True)
            if trade.status != TradeStatus.DISPUTED:
                logger.warning(f"⚠️ [DISPUTES] Resolve refused for trade {trade_id} in status {trade.status.value}")
                raise InvalidStateError(f"Trade {trade_id} is {trade.status.value}, not disputed")
            now = utcnow()
            resolution_values = dict(
                resolution=action.value,
                resolved_by=admin_id,
                resolved_at=now,
                admin_notes=notes,
            )
            if action == Resolution.RELEASE:
                trade = await self.trades.settle(trade, [TradeStatus.DISPUTED], **resolution_values)
                outcome = "released to the buyer"
            else:
                trade = await self.trades.cancel_and_restore(
                    trade, admin_id, "Refunded by dispute resolution", [TradeStatus.DISPUTED], **resolution_values
                )
                outcome = "refunded; trade cancelled"
            await self.trades.notify(trade_id, f"Dispute resolved by admin: funds {outcome}.")
        logger.info(f"⚖️ [DISPUTES] Trade {trade_id} resolved by {admin_id}: {action.value}")
        await publish_trade_event(self.trades.events, "trade.resolved", trade)
        return trade
