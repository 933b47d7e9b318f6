from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_CLASSIFIER_RULES = "close:6.0:1209600,frequent:3.0,acquainted:0.5"


@dataclass(slots=True, frozen=True)
class ClassificationRule:
    category: str
    min_weight: float
    # None means the rule applies regardless of how long ago the edge was updated.
    max_age_seconds: float | None = None

    def matches(self, weight: float, age_seconds: float) -> bool:
        if weight < self.min_weight:
            return False
        return self.max_age_seconds is None or age_seconds <= self.max_age_seconds


@dataclass(slots=True)
class ClassifierConfig:
    rules: list[ClassificationRule] = field(default_factory=list)
    fallback_category: str = "stranger"
    symmetry_threshold: float = 0.5
    mutual_qualifier: str = "mutual"
    one_sided_qualifier: str = "one-sided"


@dataclass(slots=True)
class LayoutConfig:
    max_iterations: int
    convergence_epsilon: float
    repulsion: float
    spring: float
    gravity: float
    ideal_edge_length: float
    step_size: float
    max_step: float
    damping: float
    warm_start_factor: float
    min_distance: float
    seed_jitter: float
    negligible_weight: float


def parse_classifier_rules(raw: str) -> list[ClassificationRule]:
    rules: list[ClassificationRule] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = [part.strip() for part in chunk.split(":")]
        if len(parts) not in (2, 3) or not parts[0]:
            raise ValueError(f"invalid classifier rule {chunk!r}, expected category:min_weight[:max_age_seconds]")
        max_age = float(parts[2]) if len(parts) == 3 and parts[2] else None
        rules.append(ClassificationRule(category=parts[0], min_weight=float(parts[1]), max_age_seconds=max_age))
    return rules


def load_classifier_config() -> ClassifierConfig:
    return ClassifierConfig(
        rules=parse_classifier_rules(os.getenv("CLASSIFIER_RULES", DEFAULT_CLASSIFIER_RULES)),
        fallback_category=os.getenv("CLASSIFIER_FALLBACK_CATEGORY", "stranger"),
        symmetry_threshold=float(os.getenv("CLASSIFIER_SYMMETRY_THRESHOLD", "0.5")),
        mutual_qualifier=os.getenv("CLASSIFIER_MUTUAL_QUALIFIER", "mutual"),
        one_sided_qualifier=os.getenv("CLASSIFIER_ONE_SIDED_QUALIFIER", "one-sided"),
    )


def load_layout_config() -> LayoutConfig:
    return LayoutConfig(
        max_iterations=int(os.getenv("LAYOUT_MAX_ITERATIONS", "300")),
        convergence_epsilon=float(os.getenv("LAYOUT_CONVERGENCE_EPSILON", "0.001")),
        repulsion=float(os.getenv("LAYOUT_REPULSION", "1.0")),
        spring=float(os.getenv("LAYOUT_SPRING", "1.0")),
        gravity=float(os.getenv("LAYOUT_GRAVITY", "0.05")),
        ideal_edge_length=float(os.getenv("LAYOUT_IDEAL_EDGE_LENGTH", "1.0")),
        step_size=float(os.getenv("LAYOUT_STEP_SIZE", "0.1")),
        max_step=float(os.getenv("LAYOUT_MAX_STEP", "1.0")),
        damping=float(os.getenv("LAYOUT_DAMPING", "0.97")),
        warm_start_factor=float(os.getenv("LAYOUT_WARM_START_FACTOR", "0.1")),
        min_distance=float(os.getenv("LAYOUT_MIN_DISTANCE", "0.01")),
        seed_jitter=float(os.getenv("LAYOUT_SEED_JITTER", "0.1")),
        negligible_weight=float(os.getenv("LAYOUT_NEGLIGIBLE_WEIGHT", "0.05")),
    )
