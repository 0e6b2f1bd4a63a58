"""
Deterministic data-quality scoring of raw quotes.
"""

from quote_pipeline.shared.models.market import QuoteRecord

MISSING_PRICE_PENALTY = 0.5
MISSING_VOLUME_PENALTY = 0.2
MISSING_TIMESTAMP_PENALTY = 0.1
INVERTED_RANGE_PENALTY = 0.3
CROSSED_BOOK_PENALTY = 0.2


def _present(value: float | None) -> bool:
    return value is not None and value > 0


def compute_quality_score(record: QuoteRecord) -> float:
    """
    Score a raw quote in [0, 1].

    Starts at 1.0 and subtracts a fixed penalty per defect:

    - price missing or <= 0: 0.5
    - volume missing or <= 0: 0.2
    - no observation time: 0.1
    - high < low, both positive: 0.3
    - bid > ask, both positive: 0.2

    A zero counts as missing; consistency checks run only when both sides
    are present.
    """
    score = 1.0

    if not _present(record.price):
        score -= MISSING_PRICE_PENALTY
    if not _present(record.volume):
        score -= MISSING_VOLUME_PENALTY
    if record.observed_at is None:
        score -= MISSING_TIMESTAMP_PENALTY

    if _present(record.high) and _present(record.low) and record.high < record.low:
        score -= INVERTED_RANGE_PENALTY
    if _present(record.bid) and _present(record.ask) and record.bid > record.ask:
        score -= CROSSED_BOOK_PENALTY

    return max(0.0, min(1.0, round(score, 10)))


def compute_spread(bid: float | None, ask: float | None) -> float:
    """Relative spread in percent of ask; 0 unless both sides are positive."""
    if bid is None or ask is None or bid <= 0 or ask <= 0:
        return 0.0
    return (ask - bid) / ask * 100
