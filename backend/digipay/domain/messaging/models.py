"""Messaging domain models."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Message:
    """Trade chat message (trade_id set) or direct message (recipient_id set).

    System messages have no sender.
    """
    id: str
    trade_id: Optional[str]
    sender_id: Optional[str]
    recipient_id: Optional[str]
    body: str
    is_system: bool
    read_at: Optional[datetime]
    created_at: datetime
