"""
Evaluation metrics for presence/background classifiers.

AUC is the Mann-Whitney statistic of presence versus background scores:
the probability that a random presence point scores higher than a random
background point, ties counting one half.
"""

from dataclasses import dataclass

import numpy as np
from sklearn.metrics import roc_auc_score, roc_curve

from bumblesdm.config.settings import LinkType
from bumblesdm.modeling.maxent import FittedModel
from bumblesdm.utils.logging import get_logger

log = get_logger(__name__)


def compute_auc(labels: np.ndarray, scores: np.ndarray) -> float:
    """
    Area under the ROC curve.

    Args:
        labels: 1 presence / 0 background.
        scores: Model scores (any monotone scale).

    Returns:
        AUC in [0, 1].

    Raises:
        ValueError: If only one class is present.
    """
    labels = np.asarray(labels).ravel()
    scores = np.asarray(scores, dtype=np.float64).ravel()
    if len(np.unique(labels)) != 2:
        msg = "AUC needs both presence and background rows"
        raise ValueError(msg)
    return float(roc_auc_score(labels, scores))


@dataclass(frozen=True)
class RocCurve:
    """
    ROC curve points.

    Attributes:
        fpr: False positive rate (background predicted as presence).
        tpr: True positive rate (sensitivity).
        thresholds: Score thresholds.
        auc: Area under the curve.
    """

    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float


def compute_roc(labels: np.ndarray, scores: np.ndarray) -> RocCurve:
    """ROC curve and AUC for presence/background scores."""
    labels = np.asarray(labels).ravel()
    scores = np.asarray(scores, dtype=np.float64).ravel()
    fpr, tpr, thresholds = roc_curve(labels, scores)
    return RocCurve(fpr=fpr, tpr=tpr, thresholds=thresholds, auc=compute_auc(labels, scores))


@dataclass(frozen=True)
class ClassificationMetrics:
    """
    Training-sample discrimination metrics.

    Attributes:
        auc: Area under the ROC curve.
        n_presence: Presence rows.
        n_background: Background rows.
        mean_presence_score: Mean logistic score of presence rows.
        mean_background_score: Mean logistic score of background rows.
    """

    auc: float
    n_presence: int
    n_background: int
    mean_presence_score: float
    mean_background_score: float

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {
            "auc": self.auc,
            "n_presence": self.n_presence,
            "n_background": self.n_background,
            "mean_presence_score": self.mean_presence_score,
            "mean_background_score": self.mean_background_score,
        }

    def __str__(self) -> str:
        return (
            f"AUC={self.auc:.4f}, presence={self.n_presence}, "
            f"background={self.n_background}, "
            f"mean score {self.mean_presence_score:.3f} vs {self.mean_background_score:.3f}"
        )


def evaluate_model(model: FittedModel) -> ClassificationMetrics:
    """Discrimination metrics of a model on its stored training sample."""
    labels = model.training_labels
    scores = model.training_scores(LinkType.LOGISTIC)
    metrics = ClassificationMetrics(
        auc=compute_auc(labels, scores),
        n_presence=model.n_presence,
        n_background=model.n_background,
        mean_presence_score=float(scores[labels == 1].mean()),
        mean_background_score=float(scores[labels == 0].mean()),
    )
    log.info("Evaluated model", **metrics.to_dict())
    return metrics
