from __future__ import annotations

from social_graph.models import EdgeStats, Label

from .config import ClassifierConfig, load_classifier_config


class RelationshipClassifier:
    """Maps edge statistics to a relationship label.

    Rules are evaluated top-down; the first rule whose weight floor and age
    ceiling both hold names the category. Edges that match no rule fall back
    to the configured base category, which carries no qualifier. Otherwise a
    directional symmetry ratio below the threshold yields the one-sided
    qualifier and anything at or above it yields the mutual one.
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self.config = config or load_classifier_config()

    def classify(self, stats: EdgeStats) -> Label:
        weight = max(0.0, stats.weight)
        age = max(0.0, stats.age_seconds)
        for rule in self.config.rules:
            if rule.matches(weight, age):
                return Label(rule.category, self._qualifier(stats.symmetry))
        return Label(self.config.fallback_category)

    def _qualifier(self, symmetry: float) -> str:
        if symmetry < self.config.symmetry_threshold:
            return self.config.one_sided_qualifier
        return self.config.mutual_qualifier
