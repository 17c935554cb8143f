"""Tests for configuration system."""

from pathlib import Path

import pytest

from bumblesdm.config import (
    BoundaryConfig,
    ExtentConfig,
    FeatureClass,
    LinkType,
    ModelConfig,
    OccurrenceConfig,
    PipelineConfig,
    SamplingConfig,
    load_config,
)
from bumblesdm.config.loader import expand_env, merge
from bumblesdm.config.settings import LayerConfig, LayerSourceType

MINIMAL_CONFIG = """
project: test-project

extent:
  min_lon: -125.0
  max_lon: -114.0
  min_lat: 32.0
  max_lat: 49.0

occurrences:
  path: occurrences/bees.csv
  species: Bombus vosnesenskii
"""


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


class TestExtentConfig:
    """Tests for ExtentConfig."""

    def test_as_tuple_order(self) -> None:
        """as_tuple returns (min_lon, min_lat, max_lon, max_lat)."""
        extent = ExtentConfig(min_lon=-125, max_lon=-114, min_lat=32, max_lat=49)
        assert extent.as_tuple() == (-125.0, 32.0, -114.0, 49.0)

    def test_out_of_range_longitude(self) -> None:
        """Longitudes beyond 180 degrees are rejected."""
        with pytest.raises(ValueError):
            ExtentConfig(min_lon=-200, max_lon=-114, min_lat=32, max_lat=49)

    def test_inverted_extent_is_accepted_by_config(self) -> None:
        """Ordering is checked when the study area is resolved, not here."""
        extent = ExtentConfig(min_lon=-114, max_lon=-125, min_lat=32, max_lat=49)
        assert extent.min_lon > extent.max_lon


class TestModelConfig:
    """Tests for ModelConfig."""

    def test_defaults(self) -> None:
        """Defaults match a standard Maxent run."""
        config = ModelConfig()
        assert config.feature_classes == [
            FeatureClass.LINEAR,
            FeatureClass.QUADRATIC,
            FeatureClass.HINGE,
        ]
        assert config.regularization == 1.0
        assert config.max_iterations == 1000
        assert config.class_weights == "balanced"
        assert config.link == LinkType.LOGISTIC

    def test_feature_classes_from_strings(self) -> None:
        """Feature classes parse from strings and are deduplicated."""
        config = ModelConfig(feature_classes=["linear", "hinge", "linear"])
        assert config.feature_classes == [FeatureClass.LINEAR, FeatureClass.HINGE]

    def test_unknown_feature_class(self) -> None:
        """Unknown feature classes are rejected."""
        with pytest.raises(ValueError):
            ModelConfig(feature_classes=["cubic"])

    def test_empty_feature_classes(self) -> None:
        """At least one feature class is required."""
        with pytest.raises(ValueError, match="must not be empty"):
            ModelConfig(feature_classes=[])

    @pytest.mark.parametrize("value", [0.0, -1.0])
    def test_regularization_must_be_positive(self, value: float) -> None:
        """Regularization must be > 0."""
        with pytest.raises(ValueError):
            ModelConfig(regularization=value)

    def test_max_iterations_must_be_positive(self) -> None:
        """max_iterations must be > 0."""
        with pytest.raises(ValueError):
            ModelConfig(max_iterations=0)

    def test_class_weights(self) -> None:
        """class_weights is 'balanced' or a positive number."""
        assert ModelConfig(class_weights=100).class_weights == 100.0
        with pytest.raises(ValueError, match="balanced"):
            ModelConfig(class_weights="uniform")
        with pytest.raises(ValueError, match="positive"):
            ModelConfig(class_weights=-1.0)


class TestSamplingConfig:
    """Tests for SamplingConfig."""

    def test_seeded_by_default(self) -> None:
        """Background sampling is deterministic unless the seed is cleared."""
        assert SamplingConfig().seed == 42
        assert SamplingConfig(seed=None).seed is None

    def test_count_must_be_positive(self) -> None:
        """background_count must be > 0."""
        with pytest.raises(ValueError):
            SamplingConfig(background_count=0)


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def _config(self, **overrides: object) -> PipelineConfig:
        values: dict[str, object] = {
            "project": "bees",
            "extent": ExtentConfig(min_lon=-125, max_lon=-114, min_lat=32, max_lat=49),
            "occurrences": OccurrenceConfig(path=Path("occ.csv"), species="Bombus vosnesenskii"),
        }
        values.update(overrides)
        return PipelineConfig(**values)

    def test_country_is_upper_cased(self) -> None:
        """ISO3 codes are normalised."""
        assert BoundaryConfig(country=" usa ").country == "USA"

    def test_file_boundary_requires_path(self) -> None:
        """A file boundary source needs a path."""
        with pytest.raises(ValueError, match="boundary.path"):
            self._config(boundary=BoundaryConfig(country="USA", source="file"))

    def test_directory_layers_require_directory(self) -> None:
        """A directory layer source needs a directory."""
        with pytest.raises(ValueError, match="layers.directory"):
            self._config(layers=LayerConfig(source=LayerSourceType.DIRECTORY))

    def test_output_paths(self) -> None:
        """Output paths are derived from the project name."""
        config = self._config()
        assert config.plots_dir == Path("./output/bees/plots")
        assert config.predictions_dir == Path("./output/bees/predictions")
        assert config.models_dir == Path("./output/bees/models")
        assert config.cache_dir == Path("./output/bees/cache")

    def test_cache_root_overrides_cache_dir(self) -> None:
        """A shared cache root replaces the per-project cache."""
        assert self._config(cache_root=Path("/tmp/shared")).cache_dir == Path("/tmp/shared")

    def test_resolve_relative_path(self) -> None:
        """Relative data paths resolve against data_root."""
        config = self._config(data_root=Path("/data"))
        assert config.resolve(Path("occ.csv")) == Path("/data/occ.csv")
        assert config.resolve(Path("/abs/occ.csv")) == Path("/abs/occ.csv")

    def test_summary_lists_run_options(self) -> None:
        """The summary exposes the recognised run options."""
        summary = self._config().summary()
        assert set(summary) == {
            "extent",
            "country",
            "variable_group",
            "resolution",
            "feature_classes",
            "regularization",
            "max_iterations",
            "background_count",
            "seed",
        }


class TestLoadConfig:
    """Tests for config loading."""

    def test_load_minimal_config(self, tmp_path: Path) -> None:
        """A minimal config gets defaults for everything else."""
        config = load_config(_write(tmp_path / "bees.yaml", MINIMAL_CONFIG))
        assert config.project == "test-project"
        assert config.species == "Bombus vosnesenskii"
        assert config.extent.min_lon == -125.0
        assert config.boundary.country is None
        assert config.layers.variable_group == "bio"
        assert config.sampling.seed == 42

    def test_extent_as_list(self, tmp_path: Path) -> None:
        """Extent may be given as [min_lon, max_lon, min_lat, max_lat]."""
        content = MINIMAL_CONFIG.replace(
            "extent:\n  min_lon: -125.0\n  max_lon: -114.0\n  min_lat: 32.0\n  max_lat: 49.0",
            "extent: [-125.0, -114.0, 32.0, 49.0]",
        )
        config = load_config(_write(tmp_path / "bees.yaml", content))
        assert config.extent.as_tuple() == (-125.0, 32.0, -114.0, 49.0)

    def test_base_config_is_merged(self, tmp_path: Path) -> None:
        """A sibling base.yaml provides defaults the project config overrides."""
        _write(
            tmp_path / "base.yaml",
            "sampling:\n  background_count: 500\n  seed: 7\nmodel:\n  regularization: 2.0\n",
        )
        content = MINIMAL_CONFIG + "sampling:\n  seed: 11\n"
        config = load_config(_write(tmp_path / "bees.yaml", content))
        assert config.sampling.background_count == 500
        assert config.sampling.seed == 11
        assert config.model.regularization == 2.0

    def test_explicit_base_path(self, tmp_path: Path) -> None:
        """An explicit base path is used instead of the sibling."""
        base = _write(tmp_path / "defaults.yaml", "model:\n  max_iterations: 50\n")
        config = load_config(_write(tmp_path / "bees.yaml", MINIMAL_CONFIG), base_path=base)
        assert config.model.max_iterations == 50

    def test_null_seed(self, tmp_path: Path) -> None:
        """seed: null opts out of deterministic sampling."""
        content = MINIMAL_CONFIG + "sampling:\n  seed: null\n"
        assert load_config(_write(tmp_path / "bees.yaml", content)).sampling.seed is None

    def test_env_var_interpolation(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """${VAR:default} picks up the environment, else the default."""
        monkeypatch.setenv("BEES_DATA", "/srv/bees")
        content = MINIMAL_CONFIG + "data_root: ${BEES_DATA:./data}\ncache_root: ${BEES_CACHE:/tmp/c}\n"
        config = load_config(_write(tmp_path / "bees.yaml", content))
        assert config.data_root == Path("/srv/bees")
        assert config.cache_root == Path("/tmp/c")

    def test_missing_project(self, tmp_path: Path) -> None:
        """A config without a project name is rejected."""
        content = MINIMAL_CONFIG.replace("project: test-project\n", "")
        with pytest.raises(ValueError, match="project"):
            load_config(_write(tmp_path / "bees.yaml", content))

    def test_missing_extent(self, tmp_path: Path) -> None:
        """A config without an extent is rejected."""
        content = "project: x\noccurrences:\n  path: a.csv\n  species: B. v\n"
        with pytest.raises(ValueError, match="extent"):
            load_config(_write(tmp_path / "bees.yaml", content))

    def test_missing_species(self, tmp_path: Path) -> None:
        """A config without a species is rejected."""
        content = MINIMAL_CONFIG.replace("  species: Bombus vosnesenskii\n", "")
        with pytest.raises(ValueError, match="species"):
            load_config(_write(tmp_path / "bees.yaml", content))

    def test_shipped_project_config_loads(self, project_root: Path) -> None:
        """The example project config in configs/ is valid."""
        config = load_config(project_root / "configs" / "bombus_vosnesenskii.yaml")
        assert config.species == "Bombus vosnesenskii"
        assert config.boundary.country == "USA"
        assert config.layers.variables == ["bio_1", "bio_4", "bio_12", "bio_15"]


class TestLoaderHelpers:
    """Tests for environment expansion and merging."""

    def test_expand_env_walks_nested_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """References inside lists and mappings are expanded; other values are kept."""
        monkeypatch.setenv("BEES_COUNTRY", "USA")
        monkeypatch.delenv("BEES_UNSET", raising=False)
        tree = {"boundary": {"country": "${BEES_COUNTRY}"}, "vars": ["${BEES_UNSET:bio_1}", 3]}
        assert expand_env(tree) == {"boundary": {"country": "USA"}, "vars": ["bio_1", 3]}

    def test_unset_without_default_is_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unset variable without a default expands to an empty string."""
        monkeypatch.delenv("BEES_UNSET", raising=False)
        assert expand_env("data/${BEES_UNSET}/x") == "data//x"

    def test_merge_is_recursive_and_pure(self) -> None:
        """Nested sections merge key by key without touching the inputs."""
        base = {"model": {"regularization": 1.0, "max_iterations": 500}, "project": "a"}
        override = {"model": {"regularization": 2.0}, "sampling": {"seed": 1}}
        merged = merge(base, override)
        assert merged == {
            "model": {"regularization": 2.0, "max_iterations": 500},
            "project": "a",
            "sampling": {"seed": 1},
        }
        assert base["model"]["regularization"] == 1.0

    def test_merge_replaces_lists(self) -> None:
        """Lists are replaced, not concatenated."""
        merged = merge({"layers": {"variables": ["bio_1"]}}, {"layers": {"variables": ["bio_12"]}})
        assert merged["layers"]["variables"] == ["bio_12"]
