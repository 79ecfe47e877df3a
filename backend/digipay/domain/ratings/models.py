"""Rating domain models."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Rating:
    """Rating left by one trade participant for the other."""
    id: str
    trade_id: str
    rater_id: str
    rated_user_id: str
    score: int
    comment: Optional[str]
    created_at: datetime
