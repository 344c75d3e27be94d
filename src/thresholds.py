"""Acceptance thresholds for family member matching."""

from loguru import logger

from models import RelationKind, ThresholdStrategy, WaveCompareOptions

MIN_THRESHOLD = 30
MAX_THRESHOLD = 85

RELATION_BASE = {
    RelationKind.ANCHOR: 100,
    RelationKind.SPOUSE: 40,
    RelationKind.PARENT: 45,
    RelationKind.CHILD: 50,
    RelationKind.SIBLING: 55,
}

STRATEGY_OFFSET = {
    ThresholdStrategy.FIXED: 0,
    ThresholdStrategy.ADAPTIVE: 0,
    ThresholdStrategy.AGGRESSIVE: -10,
    ThresholdStrategy.CONSERVATIVE: 15,
}


def candidate_count_adjustment(count: int) -> int:
    """More candidates means more room for a wrong pick, so the bar goes up."""
    if count <= 1:
        return -5
    if count == 2:
        return 0
    if count <= 4:
        return 5
    if count <= 8:
        return 10
    return 15


def level_relief(level: int) -> int:
    return min(10, max(0, 2 * (level - 1)))


class ThresholdCalculator:
    def __init__(self, options: WaveCompareOptions):
        self.strategy = options.threshold_strategy
        self.base_threshold = options.base_threshold

    def threshold(self, relation: RelationKind, candidate_count: int = 1, level: int = 1) -> int:
        """
        Minimum score for accepting a match of the given relation.

        Args:
            relation: How the candidate relates to the already mapped person
            candidate_count: Number of candidates on the smaller side
            level: Wave level the match would be recorded at

        Returns:
            Threshold in [30, 85], or the base threshold for the fixed strategy
        """
        if self.strategy == ThresholdStrategy.FIXED:
            return self.base_threshold

        value = RELATION_BASE.get(relation, 60)
        value += candidate_count_adjustment(candidate_count)
        value += STRATEGY_OFFSET[self.strategy]
        if self.strategy == ThresholdStrategy.ADAPTIVE:
            value -= level_relief(level)
        clamped = max(MIN_THRESHOLD, min(MAX_THRESHOLD, value))
        logger.debug(f"Threshold {relation.value} x{candidate_count} at level {level}: {clamped}")
        return clamped

    def spouse_threshold(self, level: int = 1) -> int:
        return self.threshold(RelationKind.SPOUSE, 1, level)

    def parent_threshold(self, level: int = 1) -> int:
        return self.threshold(RelationKind.PARENT, 2, level)

    def confirmation_band(self, min_confidence: int, low_confidence: int) -> tuple[int, int]:
        """Shift the interactive band by the strategy offset."""
        offset = STRATEGY_OFFSET[self.strategy]
        low = max(0, min(100, low_confidence + offset))
        minimum = max(0, min(low, min_confidence + offset))
        return minimum, low
