"""
Tests for custom scoring formulas.

Formulas are parsed into a small AST and evaluated over raw layer values;
transfer functions and aspect preferences go through the same evaluation
as the weighted-average combiner.
"""

import numpy as np
import pytest


def _config(*layers, damping=1.0):
    from livability.scoring.layers import ScoringConfig

    return ScoringConfig(name="test", layers=list(layers), aspect_damping=damping)


def _random_inputs(n, seed=7):
    """Raw values for the default config's enabled layers, all present."""
    rng = np.random.default_rng(seed)
    aspect = rng.uniform(0.0, 360.0, size=n)
    aspect[::10] = -1.0
    return {
        "slope": rng.uniform(0.0, 30.0, size=n),
        "elevation": rng.uniform(0.0, 2500.0, size=n),
        "aspect": aspect,
        "transit": rng.uniform(0.0, 40.0, size=n),
        "forest": rng.uniform(0.0, 100.0, size=n),
    }


def _layer_inputs(values):
    from livability.scoring.combiner import LayerInputs

    return LayerInputs(
        slope=values["slope"],
        elevation=values["elevation"],
        aspect_bearing=values["aspect"],
        attributes={"transit": values["transit"], "forest": values["forest"]},
    )


# =============================================================================
# PARSING
# =============================================================================


class TestParseFormula:
    """Test tokenising and operator precedence."""

    def test_precedence(self):
        from livability.scoring.formula import BinaryOp, Number, parse_formula

        assert parse_formula("1 + 2 * 3") == BinaryOp("+", Number(1.0), BinaryOp("*", Number(2.0), Number(3.0)))

    def test_power_binds_tighter_than_negation(self):
        from livability.scoring.formula import BinaryOp, Number, UnaryOp, parse_formula

        assert parse_formula("-2 ^ 2") == UnaryOp("-", BinaryOp("^", Number(2.0), Number(2.0)))

    def test_comparison_is_loosest(self):
        from livability.scoring.formula import BinaryOp, Number, Variable, parse_formula

        node = parse_formula("slope + 1 < 20")

        assert node == BinaryOp("<", BinaryOp("+", Variable("slope"), Number(1.0)), Number(20.0))

    def test_brackets_and_score_prefix(self):
        from livability.scoring.formula import parse_formula

        assert parse_formula("score = [1 + 2] * 3") == parse_formula("(1 + 2) * 3")

    def test_equality_with_score_variable_kept(self):
        from livability.scoring.formula import BinaryOp, Number, Variable, parse_formula

        assert parse_formula("score == 1") == BinaryOp("==", Variable("score"), Number(1.0))

    def test_function_names_case_insensitive(self):
        from livability.scoring.formula import Call, Number, Variable, parse_formula

        node = parse_formula("sin(x, 5, 2e1)")

        assert node == Call("SIN", (Variable("x"), Number(5.0), Number(20.0)))

    @pytest.mark.parametrize(
        "source",
        ["", "1 +", "(1 + 2", "1 2", "1 $ 2", "SIN(x, 5 20)", "FOO(1)", "SIN(x, 1)", "ORIENTATION(aspect, 1)"],
    )
    def test_syntax_errors(self, source):
        from livability.scoring.formula import FormulaError, parse_formula

        with pytest.raises(FormulaError):
            parse_formula(source)

    def test_formula_error_is_value_error(self):
        from livability.scoring.formula import FormulaError

        assert issubclass(FormulaError, ValueError)

    def test_variables(self):
        from livability.scoring.formula import formula_variables, parse_formula

        node = parse_formula("(weight(2) * SIN(air_quality_pm10, 10, 50) + pi * Slope) / weights")

        assert formula_variables(node) == {"airqualitypm10", "slope"}


class TestSerialize:
    """Test printing an AST back to source."""

    def test_minimal_parentheses(self):
        from livability.scoring.formula import parse_formula, serialize

        source = "(a + b) * c - -d ^ 2"
        node = parse_formula(source)

        assert serialize(node) == source
        assert parse_formula(serialize(node)) == node

    def test_brackets_become_parentheses(self):
        from livability.scoring.formula import parse_formula, serialize

        assert serialize(parse_formula("[x - y] / 2.5")) == "(x - y) / 2.5"


# =============================================================================
# EVALUATION
# =============================================================================


class TestEvaluateFormula:
    """Test arithmetic, builtins and missing values."""

    def test_arithmetic(self):
        from livability.scoring.formula import evaluate_formula

        assert evaluate_formula("0.5 * 0.4 + 2 ^ -2", {}) == pytest.approx(0.45)

    def test_result_clipped(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("x * 2", {"x": np.array([-1.0, 0.25, 3.0])}, (3,))

        assert result.tolist() == [0.0, 0.5, 1.0]

    def test_non_finite_scores_zero(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("1 / x", {"x": np.array([0.0, 2.0])}, (2,))

        assert result.tolist() == [0.0, 0.5]

    def test_comparisons(self):
        """Comparisons give 1/0; a missing operand never vetoes."""
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("(x < 5)", {"x": np.array([1.0, 10.0, np.nan])}, (3,))

        assert result.tolist() == [1.0, 0.0, 1.0]

    def test_builtins(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("IF(x > 2, MIN(x, 0.3), MAX(0.1, x / 4))", {"x": np.array([1.0, 3.0])}, (2,))

        np.testing.assert_allclose(result, [0.25, 0.3])

    def test_clamp_and_sqrt(self):
        from livability.scoring.formula import evaluate_formula

        assert evaluate_formula("CLAMP(SQRT(x), 0.2, 0.8)", {"x": 0.25}) == pytest.approx(0.5)

    def test_variable_names_normalised(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("RANGE(air_quality_pm10, 10, 50)", {"airQualityPM10": 20.0})

        assert result == pytest.approx(0.75)

    def test_weights_sum(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("(weight(2) * x + weight(3) * y) / weights", {"x": 0.5, "y": 1.0})

        assert result == pytest.approx(0.8)

    def test_weights_default_to_one(self):
        from livability.scoring.formula import evaluate_formula

        assert evaluate_formula("x / weights", {"x": 0.4}) == pytest.approx(0.4)

    def test_broadcast_to_shape(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("0.3", {}, (2, 3))

        assert result.shape == (2, 3)
        assert (result == 0.3).all()


class TestTransferCalls:
    """Test that formula transfer functions match evaluate_grid."""

    @pytest.mark.parametrize(
        "name,shape",
        [("SIN", "sin"), ("INVSIN", "invsin"), ("RANGE", "linear"), ("INVRANGE", "invlinear")],
    )
    def test_matches_evaluate_grid(self, name, shape):
        from livability.scoring.formula import evaluate_formula
        from livability.scoring.transforms import TransferFunction, evaluate_grid

        x = np.linspace(-5.0, 40.0, 50)
        result = evaluate_formula(f"{name}(x, 5, 20, 0.9, 0.2)", {"x": x}, x.shape)
        expected = evaluate_grid(x, TransferFunction(5, 20, floor=0.2, ceiling=0.9, shape=shape))

        np.testing.assert_allclose(result, expected)

    def test_missing_input_scores_low(self):
        from livability.scoring.formula import evaluate_formula

        assert evaluate_formula("SIN(x, 5, 20, 1, 0.3)", {"x": np.nan}) == pytest.approx(0.3)
        assert evaluate_formula("SIN(missing, 5, 20, 1, 0.3)", {}) == pytest.approx(0.3)

    def test_parameters_must_be_constant(self):
        from livability.scoring.formula import FormulaError, evaluate_formula

        with pytest.raises(FormulaError, match="constants"):
            evaluate_formula("SIN(x, x, 20)", {"x": np.array([1.0, 2.0])}, (2,))

    def test_invalid_curve(self):
        from livability.scoring.formula import FormulaError, evaluate_formula

        with pytest.raises(FormulaError, match="floor"):
            evaluate_formula("SIN(x, 5, 20, 0.1, 0.9)", {"x": 1.0})


class TestOrientation:
    """Test ORIENTATION against score_aspect."""

    def test_matches_score_aspect(self):
        from livability.scoring.aspect import AspectPreferences, damp_aspect_score, score_aspect
        from livability.scoring.formula import evaluate_formula

        bearings = np.array([0.0, 45.0, 100.0, 180.0, 270.0, 359.0, -1.0])
        # S, SW, W, NW, N, NE, E, SE, damping
        formula = "ORIENTATION(aspect, 1, 0.9, 0.7, 0.5, 0.3, 0.5, 0.7, 0.9, 0.5)"

        result = evaluate_formula(formula, {"aspect": bearings}, bearings.shape)
        expected = damp_aspect_score(score_aspect(bearings, AspectPreferences()), 0.5)

        np.testing.assert_allclose(result, expected)

    def test_missing_bearing_neutral(self):
        from livability.scoring.formula import evaluate_formula

        result = evaluate_formula("ORIENTATION(aspect, 1, 1, 1, 1, 0, 0, 0, 0)", {"aspect": np.nan})

        assert result == pytest.approx(0.5)

    def test_invalid_preference(self):
        from livability.scoring.formula import FormulaError, evaluate_formula

        with pytest.raises(FormulaError, match="ORIENTATION"):
            evaluate_formula("ORIENTATION(aspect, 2, 1, 1, 1, 0, 0, 0, 0)", {"aspect": 90.0})


# =============================================================================
# CONFIG -> FORMULA
# =============================================================================


class TestConfigToFormula:
    """Test building the formula equivalent to a layer configuration."""

    def test_default_config(self):
        from livability.scoring.configs import create_default_config
        from livability.scoring.formula import config_to_formula

        assert config_to_formula(create_default_config()) == (
            "(weight(1) * SIN(slope, 5, 20)"
            " + weight(1) * SIN(elevation, 100, 1500)"
            " + weight(1) * ORIENTATION(aspect, 1, 0.9, 0.7, 0.5, 0.3, 0.5, 0.7, 0.9)"
            " + weight(1) * SIN(transit, 5, 25, 1, 0.1)"
            " + weight(1) * INVSIN(forest, 10, 80)) / weights"
        )

    def test_mandatory_guards(self):
        from livability.scoring.formula import config_to_formula
        from livability.scoring.layers import LayerKind, LayerSpec
        from livability.scoring.transforms import TransferFunction

        config = _config(
            LayerSpec("slope", LayerKind.SLOPE, transfer=TransferFunction(5, 20, mandatory=True)),
            LayerSpec(
                "forest",
                LayerKind.ATTRIBUTE,
                weight=2.0,
                transfer=TransferFunction(10, 80, shape="invsin", mandatory=True),
                variable="forest",
            ),
        )

        assert config_to_formula(config) == (
            "(slope < 20) * (forest > 10) * "
            "(weight(1) * SIN(slope, 5, 20) + weight(2) * INVSIN(forest, 10, 80)) / weights"
        )

    def test_single_layer_effective_weight(self):
        from livability.scoring.formula import config_to_formula
        from livability.scoring.layers import LayerKind, LayerSpec
        from livability.scoring.transforms import TransferFunction

        tf = TransferFunction(5, 50.5, weight=0.25, shape="linear")
        config = _config(LayerSpec("crime", LayerKind.ATTRIBUTE, weight=2.0, transfer=tf, variable="crime"))

        assert config_to_formula(config) == "weight(0.5) * RANGE(crime, 5, 50.5) / weights"

    def test_aspect_damping(self):
        from livability.scoring.formula import config_to_formula
        from livability.scoring.layers import LayerKind, LayerSpec

        formula = config_to_formula(_config(LayerSpec("aspect", LayerKind.ASPECT), damping=0.25))

        assert formula == "weight(1) * ORIENTATION(aspect, 1, 0.9, 0.7, 0.5, 0.3, 0.5, 0.7, 0.9, 0.25) / weights"

    def test_no_layers(self):
        from livability.scoring.formula import config_to_formula

        assert config_to_formula(_config()) == "0"


class TestMatchesWeightedAverage:
    """A config's formula scores like the weighted-average combiner."""

    def test_default_config(self):
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.configs import create_default_config
        from livability.scoring.formula import config_to_formula, evaluate_formula

        config = create_default_config()
        values = _random_inputs(200)

        expected, disqualified, _ = CompositeScorer(config).score_values(_layer_inputs(values), (200,))
        result = evaluate_formula(config_to_formula(config), values, (200,))

        assert not disqualified.any()
        np.testing.assert_allclose(result, expected, atol=1e-9)

    def test_mandatory_guard_scores_zero(self):
        """Where the combiner disqualifies, the guard zeroes the formula."""
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.configs import create_default_config
        from livability.scoring.formula import config_to_formula, evaluate_formula
        from livability.scoring.transforms import TransferFunction

        config = create_default_config().with_layer("slope", transfer=TransferFunction(5, 20, mandatory=True))
        values = _random_inputs(5)
        values["slope"] = np.array([2.0, 10.0, 25.0, 30.0, 19.0])

        expected, disqualified, _ = CompositeScorer(config).score_values(_layer_inputs(values), (5,))
        result = evaluate_formula(config_to_formula(config), values, (5,))

        assert disqualified.tolist() == [False, False, True, True, False]
        np.testing.assert_allclose(result, np.where(disqualified, 0.0, expected), atol=1e-9)


# =============================================================================
# SCORER INTEGRATION
# =============================================================================


class TestScorerFormula:
    """Test CompositeScorer with a custom formula."""

    def test_config_formula_matches_default_scorer(self):
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.configs import create_default_config
        from livability.scoring.formula import config_to_formula

        config = create_default_config()
        inputs = _layer_inputs(_random_inputs(50, seed=3))

        plain, _, _ = CompositeScorer(config).score_values(inputs, (50,))
        custom, _, _ = CompositeScorer(config, formula=config_to_formula(config)).score_values(inputs, (50,))

        np.testing.assert_allclose(custom, plain, atol=1e-9)

    def test_formula_replaces_average_but_mandatory_vetoes(self):
        from livability import config as app_config
        from livability.scoring.combiner import CompositeScorer, LayerInputs
        from livability.scoring.configs import create_default_config
        from livability.scoring.transforms import TransferFunction

        config = create_default_config().with_layer("slope", transfer=TransferFunction(5, 20, mandatory=True))
        scorer = CompositeScorer(config, formula="forest / 100")
        inputs = LayerInputs(slope=np.array([2.0, 25.0]), attributes={"forest": np.array([50.0, 80.0])})

        scores, disqualified, _ = scorer.score_values(inputs, (2,))

        assert scores[0] == pytest.approx(0.5)
        assert scores[1] == app_config.DISQUALIFIED
        assert disqualified.tolist() == [False, True]

    def test_blank_formula_ignored(self):
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.configs import create_default_config

        assert CompositeScorer(create_default_config(), formula="  ").formula is None

    def test_attribute_variables_include_formula(self):
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.layers import LayerKind, LayerSpec
        from livability.scoring.transforms import TransferFunction

        config = _config(LayerSpec("slope", LayerKind.SLOPE, transfer=TransferFunction(5, 20)))
        scorer = CompositeScorer(config, formula="RANGE(airQualityPm10, 10, 50) * forest / 100")

        assert scorer.attribute_variables() == ["forest", "air_quality_pm10"]

    def test_score_raster(self):
        """Formula attributes are gathered per pixel; outside pixels stay NaN."""
        from livability.scoring.combiner import CompositeScorer
        from livability.scoring.layers import LayerKind, LayerSpec
        from livability.scoring.transforms import TransferFunction
        from livability.terrain.provider import TerrainSamples

        config = _config(LayerSpec("slope", LayerKind.SLOPE, transfer=TransferFunction(5, 20)))
        samples = TerrainSamples(
            slope=np.array([3.0, 3.0, 3.0], dtype=np.float32),
            elevation=np.array([100.0, 100.0, 100.0], dtype=np.float32),
            aspect=np.array([255, 255, 255], dtype=np.uint8),
            has_data=np.array([True, True, False]),
            rows=1,
            cols=3,
        )
        scorer = CompositeScorer(config, formula="forest / 100")

        result = scorer.score_raster(samples, np.array([0, -1, 0], dtype=np.int32), {"forest": np.array([40.0])})

        assert result[0] == pytest.approx(0.4)
        assert np.isnan(result[1])
        assert np.isnan(result[2])


class TestRendererFormula:
    """Test heatmap rendering with a custom formula."""

    def test_config_formula_renders_like_average(self, ramp_provider, regions, attribute_lookup, small_extent):
        from livability.render.heatmap import HeatmapRenderer
        from livability.scoring.configs import create_default_config
        from livability.scoring.formula import config_to_formula

        config = create_default_config()
        renderer = HeatmapRenderer(ramp_provider, regions, attribute_lookup, config)
        plain = renderer.render(small_extent, 40, 30).scores.reshape(30, 40)

        renderer.set_formula(config_to_formula(config))
        custom = renderer.render(small_extent, 40, 30).scores.reshape(30, 40)

        # The west region has every attribute, so no missing-value rules apply
        np.testing.assert_allclose(custom[:, :20], plain[:, :20], atol=1e-9)

    def test_formula_reads_unscored_attribute(self, ramp_provider, regions, attribute_lookup, small_extent):
        from livability.render.heatmap import HeatmapRenderer
        from livability.scoring.configs import create_default_config

        config = create_default_config().with_layer("forest", enabled=False)
        renderer = HeatmapRenderer(ramp_provider, regions, attribute_lookup, config, formula="forest / 100")

        scores = renderer.render(small_extent, 40, 30).scores.reshape(30, 40)

        assert scores[15, 5] == pytest.approx(0.9)

    def test_weight_change_keeps_formula(self, ramp_provider, regions, attribute_lookup, small_extent):
        from livability.render.heatmap import HeatmapRenderer
        from livability.scoring.configs import create_default_config

        renderer = HeatmapRenderer(ramp_provider, regions, attribute_lookup, create_default_config(), formula="0.25")
        renderer.set_scoring_config(renderer.scoring_config.with_layer("transit", weight=3.0))

        assert renderer.scorer.formula is not None
        renderer.set_formula(None)
        assert renderer.scorer.formula is None
