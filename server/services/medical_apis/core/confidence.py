# =============================================================================
# services/medical_apis/core/confidence.py
# =============================================================================

import logging
from typing import Dict, Mapping

logger = logging.getLogger(__name__)


class ConfidenceScorer:
    """
    Scores how well an aggregation is backed by upstream data
    Points from success rate, source diversity, category richness and query
    breadth are summed, clamped to 0-100 and bucketed into a label. Every
    signal only ever adds points, so more evidence never lowers the label.
    """

    def __init__(self):
        self.success_weight = 40
        self.reliability_bonuses = [(0.5, 10), (0.7, 5)]

        self.points_per_source = 6
        self.max_source_points = 30

        self.category_weights = {
            "medications": 10,
            "conditions": 10,
            "clinical_trials": 8,
            "health_information": 8,
            "drug_safety": 6,
            "health_guidance": 8
        }
        self.max_category_points = 50

        self.breadth_min_terms = 3
        self.breadth_bonus = 5

        # Highest threshold first
        self.thresholds = [(85, "very_high"), (65, "high"), (45, "medium")]

    def score(self, search_attempts: int, successful_searches: int, source_count: int,
              category_counts: Mapping[str, int], term_count: int) -> float:
        points = 0.0

        # Success rate (up to 40) plus reliability bonus (up to 15)
        success_rate = successful_searches / search_attempts if search_attempts else 0.0
        points += success_rate * self.success_weight
        for threshold, bonus in self.reliability_bonuses:
            if success_rate > threshold:
                points += bonus

        # Source diversity (up to 30)
        points += min(source_count * self.points_per_source, self.max_source_points)

        # Category richness (up to 50)
        richness = sum(
            weight for category, weight in self.category_weights.items()
            if category_counts.get(category, 0) > 0
        )
        points += min(richness, self.max_category_points)

        # Query breadth
        if term_count >= self.breadth_min_terms:
            points += self.breadth_bonus

        return max(0.0, min(points, 100.0))

    def label_for(self, points: float) -> str:
        for threshold, label in self.thresholds:
            if points >= threshold:
                return label
        return "low"

    def calculate_confidence(self, search_attempts: int, successful_searches: int, source_count: int,
                             category_counts: Mapping[str, int], term_count: int) -> str:
        """Confidence label in {low, medium, high, very_high}"""
        points = self.score(search_attempts, successful_searches, source_count, category_counts, term_count)
        label = self.label_for(points)
        logger.debug(f"Confidence {points:.1f} -> {label}")
        return label

    def breakdown(self, search_attempts: int, successful_searches: int, source_count: int,
                  category_counts: Mapping[str, int], term_count: int) -> Dict:
        points = self.score(search_attempts, successful_searches, source_count, category_counts, term_count)
        return {
            "points": round(points, 1),
            "label": self.label_for(points),
            "success_rate": round(successful_searches / search_attempts, 3) if search_attempts else 0.0,
            "source_count": source_count,
            "populated_categories": sorted(c for c, n in category_counts.items() if n > 0)
        }
