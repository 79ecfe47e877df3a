"""Database models."""
from digipay.infra.db.models.user import UserModel
from digipay.infra.db.models.offer import OfferModel
from digipay.infra.db.models.trade import TradeModel
from digipay.infra.db.models.ledger import TransactionModel
from digipay.infra.db.models.rating import RatingModel
from digipay.infra.db.models.message import MessageModel

__all__ = [
    "UserModel",
    "OfferModel",
    "TradeModel",
    "TransactionModel",
    "RatingModel",
    "MessageModel",
]
