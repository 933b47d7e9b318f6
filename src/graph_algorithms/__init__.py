from .classifier import RelationshipClassifier
from .config import ClassificationRule, ClassifierConfig, LayoutConfig, load_classifier_config, load_layout_config
from .layout import LayoutEngine
from .service import RenderService

__all__ = [
    "ClassificationRule",
    "ClassifierConfig",
    "LayoutConfig",
    "LayoutEngine",
    "RelationshipClassifier",
    "RenderService",
    "load_classifier_config",
    "load_layout_config",
]
