"""
Maxent model fitting.

Covariates are expanded into Maxent feature classes with elapid's
MaxentFeatureTransformer; feature weights are fitted as an L1-penalised
logistic regression of presence against background (scikit-learn,
liblinear solver), the infinitely-weighted-logistic view of Maxent used by
maxnet. The linear predictor of that regression is the model's raw score.
"""

import re
import time
import warnings
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import sklearn
from elapid import MaxentFeatureTransformer
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score

from bumblesdm.config.settings import FeatureClass, LinkType, ModelConfig
from bumblesdm.errors import ConvergenceFailure, DataUnavailable, EmptyFeatureTable
from bumblesdm.features.assembly import FeatureTable
from bumblesdm.utils.logging import get_logger

if TYPE_CHECKING:
    from bumblesdm.modeling.inference import PredictionSurface
    from bumblesdm.spatial.stack import EnvironmentalStack

log = get_logger(__name__)

MIN_PRESENCE_ROWS = 2
MIN_BACKGROUND_ROWS = 1

# Keeps exp() finite in the cloglog link
_MAX_ETA = 700.0

# scikit-learn 1.8 replaced penalty="l1" with l1_ratio=1
_SKLEARN_VERSION = tuple(int(part) for part in re.findall(r"\d+", sklearn.__version__)[:2])
_L1_PENALTY: dict[str, Any] = (
    {"l1_ratio": 1.0} if _SKLEARN_VERSION >= (1, 8) else {"penalty": "l1"}
)


def apply_link(eta: np.ndarray, link: LinkType | str) -> np.ndarray:
    """
    Map the linear predictor onto the requested output scale.

    Args:
        eta: Linear predictor (raw score).
        link: raw, logistic or cloglog.

    Returns:
        Scores; bounded to [0, 1] except for raw.
    """
    link = LinkType(link)
    eta = np.asarray(eta, dtype=np.float64)
    if link == LinkType.RAW:
        return eta
    clipped = np.clip(eta, -_MAX_ETA, _MAX_ETA)
    if link == LinkType.LOGISTIC:
        return 1.0 / (1.0 + np.exp(-clipped))
    return 1.0 - np.exp(-np.exp(clipped))


def _parse_feature_classes(
    feature_classes: Sequence[FeatureClass | str],
) -> tuple[FeatureClass, ...]:
    if isinstance(feature_classes, str):
        feature_classes = [feature_classes]
    if not feature_classes:
        msg = "feature_classes must not be empty"
        raise ValueError(msg)
    try:
        parsed = [FeatureClass(fc) for fc in feature_classes]
    except ValueError as e:
        valid = [fc.value for fc in FeatureClass]
        msg = f"Unknown feature class in {list(feature_classes)}; valid: {valid}"
        raise ValueError(msg) from e
    return tuple(dict.fromkeys(parsed))


def _expand(transformer: MaxentFeatureTransformer, x: np.ndarray) -> np.ndarray:
    """Feature expansion with degenerate (constant-covariate) columns zeroed."""
    features = np.asarray(transformer.transform(x), dtype=np.float64)
    return np.nan_to_num(features, nan=0.0, posinf=0.0, neginf=0.0)


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    A fitted Maxent model and its training sample.

    Never mutated after fitting; all predictions go through predict().

    Attributes:
        species: Modelled species.
        variable_names: Covariates in the order the model expects them.
        feature_classes: Feature classes actually used.
        regularization: Regularization multiplier (1 / C).
        max_iterations: Optimizer iteration bound.
        n_iterations: Iterations the optimizer used.
        class_weights: 'balanced' or the fixed background weight.
        training_auc: AUC of presence vs background training scores.
        transformer: Fitted elapid feature transformer.
        estimator: Fitted logistic regression.
        training_features: Raw covariates of the training rows.
        training_labels: 1 presence / 0 background.
        fit_time_s: Wall time of the fit.
    """

    species: str
    variable_names: tuple[str, ...]
    feature_classes: tuple[FeatureClass, ...]
    regularization: float
    max_iterations: int
    n_iterations: int
    class_weights: str | float
    training_auc: float
    transformer: Any = field(repr=False)
    estimator: LogisticRegression = field(repr=False)
    training_features: np.ndarray = field(repr=False)
    training_labels: np.ndarray = field(repr=False)
    fit_time_s: float = 0.0

    def __post_init__(self) -> None:
        for name in ("training_features", "training_labels"):
            array = np.array(getattr(self, name), copy=True)
            array.flags.writeable = False
            object.__setattr__(self, name, array)

    def __reduce__(self) -> tuple[Any, ...]:
        # Rebuild through __init__ so unpickled arrays stay read-only
        return (
            type(self),
            (
                self.species,
                self.variable_names,
                self.feature_classes,
                self.regularization,
                self.max_iterations,
                self.n_iterations,
                self.class_weights,
                self.training_auc,
                self.transformer,
                self.estimator,
                self.training_features,
                self.training_labels,
                self.fit_time_s,
            ),
        )

    @property
    def n_presence(self) -> int:
        """Presence rows in the training sample."""
        return int((self.training_labels == 1).sum())

    @property
    def n_background(self) -> int:
        """Background rows in the training sample."""
        return int((self.training_labels == 0).sum())

    @property
    def feature_means(self) -> np.ndarray:
        """Training-sample mean of each covariate."""
        return self.training_features.mean(axis=0)

    @property
    def feature_ranges(self) -> dict[str, tuple[float, float]]:
        """Observed (min, max) of each covariate in the training sample."""
        lows = self.training_features.min(axis=0)
        highs = self.training_features.max(axis=0)
        return {
            name: (float(lo), float(hi))
            for name, lo, hi in zip(self.variable_names, lows, highs, strict=True)
        }

    @property
    def n_model_features(self) -> int:
        """Number of expanded features."""
        return int(self.estimator.coef_.shape[1])

    @property
    def n_nonzero_weights(self) -> int:
        """Expanded features kept by the L1 penalty."""
        return int(np.count_nonzero(self.estimator.coef_))

    def decision(self, x: np.ndarray) -> np.ndarray:
        """Raw (linear predictor) scores for covariate rows."""
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != len(self.variable_names):
            msg = f"Expected an (n, {len(self.variable_names)}) covariate array, got {x.shape}"
            raise ValueError(msg)
        if len(x) == 0:
            return np.empty(0, dtype=np.float64)
        return self.estimator.decision_function(_expand(self.transformer, x))

    def predict(self, x: np.ndarray, link: LinkType | str = LinkType.LOGISTIC) -> np.ndarray:
        """Scores for covariate rows on the requested link scale."""
        return apply_link(self.decision(x), link)

    def training_scores(self, link: LinkType | str = LinkType.RAW) -> np.ndarray:
        """Scores of the stored training rows."""
        return self.predict(self.training_features, link)

    def summary(self) -> dict[str, Any]:
        """Metadata for logging and persistence."""
        return {
            "species": self.species,
            "variable_names": list(self.variable_names),
            "feature_classes": [fc.value for fc in self.feature_classes],
            "regularization": self.regularization,
            "max_iterations": self.max_iterations,
            "n_iterations": self.n_iterations,
            "class_weights": self.class_weights,
            "training_auc": self.training_auc,
            "n_presence": self.n_presence,
            "n_background": self.n_background,
            "n_model_features": self.n_model_features,
            "n_nonzero_weights": self.n_nonzero_weights,
            "fit_time_s": self.fit_time_s,
        }


@dataclass(frozen=True, eq=False)
class ResponseCurve:
    """
    Marginal response of the model to one covariate.

    Attributes:
        variable: Swept covariate.
        values: Covariate values, strictly increasing.
        scores: Model scores at those values.
        link: Output scale of the scores.
    """

    variable: str
    values: np.ndarray
    scores: np.ndarray
    link: LinkType

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[tuple[float, float]]:
        return iter(self.points)

    @property
    def points(self) -> list[tuple[float, float]]:
        """(covariate value, score) pairs in covariate order."""
        return [(float(v), float(s)) for v, s in zip(self.values, self.scores, strict=True)]


class DistributionModelTrainer:
    """
    Fits and evaluates Maxent models.

    Arguments passed to fit() override the corresponding ModelConfig values.
    """

    def __init__(self, config: ModelConfig | None = None) -> None:
        """
        Initialize trainer.

        Args:
            config: Model configuration (defaults used if None).
        """
        self.config = config or ModelConfig()

    def _sample_weights(self, labels: np.ndarray) -> np.ndarray:
        n_presence = int((labels == 1).sum())
        n_background = int((labels == 0).sum())
        weights = np.ones(len(labels), dtype=np.float64)
        if self.config.class_weights == "balanced":
            weights[labels == 1] = len(labels) / (2.0 * n_presence)
            weights[labels == 0] = len(labels) / (2.0 * n_background)
        else:
            weights[labels == 0] = float(self.config.class_weights)
        return weights

    def fit(
        self,
        table: FeatureTable,
        feature_classes: Sequence[FeatureClass | str] | None = None,
        regularization: float | None = None,
        max_iterations: int | None = None,
    ) -> FittedModel:
        """
        Fit a Maxent model to a feature table.

        Args:
            table: Presence/background feature table.
            feature_classes: Subset of linear, quadratic, product,
                threshold, hinge.
            regularization: Regularization multiplier, > 0.
            max_iterations: Optimizer iteration bound, > 0.

        Returns:
            FittedModel with training AUC.

        Raises:
            ValueError: For invalid arguments.
            EmptyFeatureTable: If there are fewer than 2 presence rows or no
                background rows.
            ConvergenceFailure: If the optimizer stops at max_iterations.
        """
        classes = _parse_feature_classes(
            feature_classes if feature_classes is not None else self.config.feature_classes
        )
        regularization = (
            self.config.regularization if regularization is None else float(regularization)
        )
        max_iterations = self.config.max_iterations if max_iterations is None else max_iterations
        if not np.isfinite(regularization) or regularization <= 0:
            msg = f"regularization must be > 0, got {regularization}"
            raise ValueError(msg)
        if (
            isinstance(max_iterations, bool)
            or int(max_iterations) != max_iterations
            or max_iterations <= 0
        ):
            msg = f"max_iterations must be a positive integer, got {max_iterations}"
            raise ValueError(msg)
        max_iterations = int(max_iterations)

        if table.n_presence < MIN_PRESENCE_ROWS or table.n_background < MIN_BACKGROUND_ROWS:
            msg = "Not enough rows to fit a model"
            raise EmptyFeatureTable(
                msg,
                species=table.species,
                n_presence=table.n_presence,
                n_background=table.n_background,
                min_presence=MIN_PRESENCE_ROWS,
            )

        if FeatureClass.PRODUCT in classes and len(table.variable_names) < 2:
            log.warning("Dropping product features, only one covariate", variables=table.variable_names)
            classes = tuple(fc for fc in classes if fc != FeatureClass.PRODUCT)
            if not classes:
                classes = (FeatureClass.LINEAR,)

        x = table.feature_matrix
        y = table.labels

        log.info(
            "Fitting Maxent model",
            species=table.species,
            presence=table.n_presence,
            background=table.n_background,
            variables=list(table.variable_names),
            feature_classes=[fc.value for fc in classes],
            regularization=regularization,
            max_iterations=max_iterations,
        )
        start = time.perf_counter()

        transformer = MaxentFeatureTransformer(
            feature_types=[fc.value for fc in classes],
            clamp=self.config.clamp,
            n_hinge_features=self.config.n_hinge_features,
            n_threshold_features=self.config.n_threshold_features,
        )
        transformer.fit(x)
        z = _expand(transformer, x)

        estimator = LogisticRegression(
            **_L1_PENALTY,
            solver="liblinear",
            C=1.0 / regularization,
            max_iter=max_iterations,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            try:
                estimator.fit(z, y, sample_weight=self._sample_weights(y))
            except ConvergenceWarning as e:
                msg = "Optimizer did not converge"
                raise ConvergenceFailure(
                    msg,
                    species=table.species,
                    max_iterations=max_iterations,
                    regularization=regularization,
                ) from e

        n_iterations = int(np.max(estimator.n_iter_))
        scores = estimator.decision_function(z)
        training_auc = float(roc_auc_score(y, scores))
        fit_time = time.perf_counter() - start

        model = FittedModel(
            species=table.species,
            variable_names=table.variable_names,
            feature_classes=classes,
            regularization=regularization,
            max_iterations=max_iterations,
            n_iterations=n_iterations,
            class_weights=self.config.class_weights,
            training_auc=training_auc,
            transformer=transformer,
            estimator=estimator,
            training_features=x,
            training_labels=y,
            fit_time_s=fit_time,
        )
        log.info(
            "Fitted Maxent model",
            training_auc=round(training_auc, 4),
            n_iterations=n_iterations,
            n_features=model.n_model_features,
            n_nonzero=model.n_nonzero_weights,
            fit_time_s=round(fit_time, 3),
        )
        return model

    def auc(self, model: FittedModel) -> float:
        """Training AUC recomputed from the model's stored sample."""
        return float(roc_auc_score(model.training_labels, model.training_scores(LinkType.RAW)))

    def check_response_variables(
        self, variable_names: Sequence[str], variables: Sequence[str] | None = None
    ) -> None:
        """
        Check that response curve covariates are among the model covariates.

        Args:
            variable_names: Covariates the model is (or will be) fitted on.
            variables: Covariates to plot (default: configured).

        Raises:
            DataUnavailable: If a covariate is not among ``variable_names``.
        """
        if variables is None:
            variables = self.config.response_variables or []
        missing = [v for v in variables if v not in variable_names]
        if missing:
            msg = "Response curve variables are not model covariates"
            raise DataUnavailable(
                msg, stage="model", missing=missing, available=list(variable_names)
            )

    def response_curve(
        self,
        model: FittedModel,
        variable: str,
        link: LinkType | str | None = None,
        n_points: int | None = None,
    ) -> ResponseCurve:
        """
        Sweep one covariate with the others held at their training mean.

        Args:
            model: Fitted model.
            variable: Covariate to sweep.
            link: Output scale (default from config).
            n_points: Sweep resolution (default from config).

        Returns:
            ResponseCurve over the covariate's observed training range.

        Raises:
            DataUnavailable: If the covariate is not in the model.
            ValueError: If n_points < 2.
        """
        self.check_response_variables(model.variable_names, [variable])
        link = LinkType(link) if link is not None else self.config.link
        n_points = self.config.response_points if n_points is None else n_points
        if n_points < 2:
            msg = f"n_points must be at least 2, got {n_points}"
            raise ValueError(msg)

        low, high = model.feature_ranges[variable]
        values = np.linspace(low, high, n_points) if high > low else np.array([low])

        grid = np.tile(model.feature_means, (len(values), 1))
        grid[:, model.variable_names.index(variable)] = values
        return ResponseCurve(
            variable=variable,
            values=values,
            scores=model.predict(grid, link),
            link=link,
        )

    def response_curves(
        self,
        model: FittedModel,
        variables: Sequence[str] | None = None,
        link: LinkType | str | None = None,
    ) -> list[ResponseCurve]:
        """Response curves for several covariates (default: configured or all)."""
        if variables is None:
            variables = self.config.response_variables or list(model.variable_names)
        return [self.response_curve(model, variable, link) for variable in variables]

    def predict_surface(
        self,
        model: FittedModel,
        stack: "EnvironmentalStack",
        link: LinkType | str | None = None,
    ) -> "PredictionSurface":
        """Score every valid cell of a stack; see inference.predict_surface."""
        from bumblesdm.modeling.inference import predict_surface

        return predict_surface(model, stack, link if link is not None else self.config.link)
