import pytest

from carrymark.core.entities import Weights
from carrymark.core.enums import MissingComponentPolicy, RoundingMode
from carrymark.core.exceptions import InvalidGradeScale, InvalidWeights
from carrymark.scoring.reducer import (
    ComponentScores,
    CompositeReducer,
    GradeBand,
    GradeScale,
    round_score,
    validate_weights,
)


DEFAULT_WEIGHTS = Weights()


def test_scenario_a_renormalizes_over_present_components():
    reducer = CompositeReducer()

    result = reducer.reduce(ComponentScores(85.0, None, 90.0), DEFAULT_WEIGHTS)

    assert result.final_score == 85.63
    assert result.grade == "A"


def test_all_components_present_uses_full_weights():
    reducer = CompositeReducer()

    result = reducer.reduce(ComponentScores(60.0, 80.0, 100.0), DEFAULT_WEIGHTS)

    assert result.final_score == 68.0
    assert result.grade == "B"


def test_no_components_gives_no_score():
    result = CompositeReducer().reduce(ComponentScores(None, None, None), DEFAULT_WEIGHTS)

    assert result.final_score is None
    assert result.grade is None


def test_zero_available_weight_gives_no_score():
    weights = Weights(assessment=0, assignment=100, attendance=0)

    result = CompositeReducer().reduce(ComponentScores(90.0, None, 50.0), weights)

    assert result.final_score is None


def test_zero_fill_policy_scores_missing_as_zero():
    reducer = CompositeReducer(missing_policy=MissingComponentPolicy.ZERO_FILL)

    result = reducer.reduce(ComponentScores(85.0, None, 90.0), DEFAULT_WEIGHTS)

    assert result.final_score == 68.5
    assert result.grade == "B"


@pytest.mark.parametrize("weights", [
    Weights(assessment=70, assignment=20, attendance=20),
    Weights(assessment=110, assignment=-10, attendance=0),
    Weights(assessment=70, assignment=20, attendance=9.99),
    Weights(assessment=float("nan"), assignment=20, attendance=10),
])
def test_invalid_weights_are_rejected(weights):
    with pytest.raises(InvalidWeights):
        CompositeReducer().reduce(ComponentScores(50.0, 50.0, 50.0), weights)


def test_weights_within_tolerance_are_accepted():
    weights = Weights(assessment=70 + 1e-12, assignment=20, attendance=10)

    assert validate_weights(weights) is weights


@pytest.mark.parametrize("components", [
    ComponentScores(100.0, 100.0, 100.0),
    ComponentScores(0.0, 0.0, 0.0),
    ComponentScores(100.0, None, 0.0),
    ComponentScores(None, 33.333, None),
])
def test_final_score_is_bounded(components):
    result = CompositeReducer().reduce(components, DEFAULT_WEIGHTS)

    assert 0.0 <= result.final_score <= 100.0


def test_final_score_is_monotonic_in_each_component():
    reducer = CompositeReducer()
    base = reducer.reduce(ComponentScores(60.0, 60.0, 60.0), DEFAULT_WEIGHTS).final_score

    for raised in (ComponentScores(70.0, 60.0, 60.0),
                   ComponentScores(60.0, 70.0, 60.0),
                   ComponentScores(60.0, 60.0, 70.0)):
        assert reducer.reduce(raised, DEFAULT_WEIGHTS).final_score >= base


def test_round_score_modes():
    assert round_score(85.625) == 85.63
    assert round_score(85.625, RoundingMode.HALF_EVEN) == 85.62
    assert round_score(0.125) == 0.13
    assert round_score(72.0) == 72.0


def test_half_even_reducer():
    reducer = CompositeReducer(rounding=RoundingMode.HALF_EVEN)

    result = reducer.reduce(ComponentScores(85.0, None, 90.0), DEFAULT_WEIGHTS)

    assert result.final_score == 85.62


@pytest.mark.parametrize("score,grade", [
    (100.0, "A"),
    (80.0, "A"),
    (79.99, "B"),
    (65.0, "B"),
    (64.99, "C"),
    (50.0, "C"),
    (49.99, "D"),
    (40.0, "D"),
    (39.99, "E"),
    (0.0, "E"),
])
def test_default_grade_bands(score, grade):
    assert GradeScale.default().grade_for(score) == grade


def test_grade_for_none_is_none():
    assert GradeScale.default().grade_for(None) is None


def test_gap_in_custom_scale_gives_no_grade():
    scale = GradeScale([GradeBand("Pass", 50.0, 100.0), GradeBand("Fail", 0.0, 40.0)])

    assert scale.grade_for(45.0) is None
    assert scale.grade_for(50.0) == "Pass"


def test_grade_scale_round_trips_through_config_form():
    scale = GradeScale.default()

    assert GradeScale.from_list(scale.to_list()).bands == scale.bands


@pytest.mark.parametrize("bands", [
    [],
    [GradeBand("A", 70.0, 100.0), GradeBand("B", 60.0, 75.0)],
    [GradeBand("A", 80.0, 100.0), GradeBand("A", 0.0, 80.0)],
    [GradeBand("A", 80.0, 120.0)],
    [GradeBand("A", 80.0, 80.0)],
])
def test_invalid_grade_scales_are_rejected(bands):
    with pytest.raises(InvalidGradeScale):
        GradeScale(bands)


def test_grade_band_from_dict_rejects_missing_fields():
    with pytest.raises(InvalidGradeScale):
        GradeBand.from_dict({"label": "A", "min": 80})
