"""
Growth metrics tracked over accepted trades.
"""
import logging
from dataclasses import dataclass, asdict

from curve_sale.accounts import Account
from curve_sale.errors import InvalidParameter

logger = logging.getLogger(__name__)

ONE_DAY = 86400

# Added to the engagement score for each trade by an address active within a day
ENGAGEMENT_INCREMENT = 1

MAX_SOCIAL_IMPACT_SCORE = 100


@dataclass
class GrowthMetrics:
    unique_holders: int = 0
    total_transactions: int = 0
    engagement_score: int = 0
    social_impact_score: int = 0
    last_update: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict) -> 'GrowthMetrics':
        return GrowthMetrics(**data)


class GrowthTracker:
    """Updates ``GrowthMetrics`` after every accepted trade. Counters only grow."""

    def __init__(self, metrics: GrowthMetrics = None):
        self.metrics = metrics or GrowthMetrics()

    def record_trade(self, account: Account, first_trade: bool, now: int):
        metrics = self.metrics
        if first_trade:
            metrics.unique_holders += 1

        metrics.total_transactions += 1

        if account.last_activity_time and now - account.last_activity_time < ONE_DAY:
            metrics.engagement_score += ENGAGEMENT_INCREMENT

        account.last_activity_time = now
        metrics.last_update = now

    def set_social_impact_score(self, score: int) -> int:
        if not 0 <= score <= MAX_SOCIAL_IMPACT_SCORE:
            raise InvalidParameter(
                f"Social impact score must be in [0, {MAX_SOCIAL_IMPACT_SCORE}]"
            )
        old = self.metrics.social_impact_score
        self.metrics.social_impact_score = score
        return old
