import numpy as np
import pytest

from ekical.errors import ConfigurationError
from ekical.observations import (
    Observation,
    RescaledZScore,
    Transformation,
    ZScore,
    as_batch,
    observation_names,
    observation_times,
)

TIMES = np.array([0.0, 1.0, 2.0, 3.0])


@pytest.fixture()
def data():
    return {"T": np.array([1.0, 2.0, 3.0, 4.0]), "S": np.array([5.0, 5.0, 5.0, 5.0])}


def test_fields_keep_declared_order(data):
    obs = Observation(TIMES, data)
    assert obs.field_names == ("T", "S")


def test_default_transformation_keeps_everything(data):
    obs = Observation(TIMES, data)
    transformed = obs.transformed(obs.field_time_series)

    np.testing.assert_array_equal(transformed[0], data["T"])
    np.testing.assert_array_equal(transformed[1], data["S"])


def test_time_selection_with_slice(data):
    obs = Observation(TIMES, data, transformation={"T": Transformation(slice(1, None))})
    transformed = obs.transformed(obs.field_time_series)
    np.testing.assert_array_equal(transformed[0], [2.0, 3.0, 4.0])


def test_time_selection_with_indices(data):
    obs = Observation(TIMES, data, transformation={"T": Transformation([0, 3])})
    transformed = obs.transformed(obs.field_time_series)
    np.testing.assert_array_equal(transformed[0], [1.0, 4.0])


def test_zscore_statistics_fitted_to_observed_data(data):
    transformation = {"T": Transformation(normalization=ZScore())}
    obs = Observation(TIMES, data, transformation=transformation)

    (T, _) = obs.transformed(obs.field_time_series)

    assert np.mean(T) == pytest.approx(0.0)
    assert np.std(T) == pytest.approx(1.0)


def test_zscore_of_constant_series_only_shifts(data):
    transformation = {"S": Transformation(normalization=ZScore())}
    obs = Observation(TIMES, data, transformation=transformation)

    (_, S) = obs.transformed(obs.field_time_series)

    np.testing.assert_array_equal(S, 0.0)


def test_normalization_applies_to_ensemble_output(data):
    transformation = {"T": Transformation(normalization=ZScore(2.0, 0.5))}
    obs = Observation(TIMES, data, transformation=transformation)
    ensemble = np.array([[2.0, 2.5, 3.0, 3.5], [2.0, 2.0, 2.0, 2.0]])

    (T, _) = obs.transformed({"T": ensemble, "S": ensemble})

    np.testing.assert_array_equal(T, [[0.0, 1.0, 2.0, 3.0], [0.0, 0.0, 0.0, 0.0]])


def test_rescaled_zscore_multiplies_result():
    normalization = RescaledZScore(10.0, ZScore(1.0, 2.0))
    np.testing.assert_array_equal(normalization(np.array([1.0, 3.0])), [0.0, 10.0])


def test_unfitted_zscore_cannot_be_applied():
    with pytest.raises(ValueError, match="not set"):
        ZScore()(np.zeros(3))


def test_initial_state_takes_precedence(data):
    obs = Observation(TIMES, data, initial_state={"T": 10.0, "U": 3.0})

    assert obs.initial_value("T") == 10.0
    assert obs.initial_value("U") == 3.0
    assert obs.initial_value("S") == 5.0


def test_unknown_initial_value(data):
    obs = Observation(TIMES, data)
    with pytest.raises(ConfigurationError, match="Unknown initial value of 'U'"):
        obs.initial_value("U")


@pytest.mark.parametrize(
    "times, message",
    [
        ([0.0], "at least two points"),
        ([0.0, 2.0, 1.0, 3.0], "strictly increasing"),
    ],
)
def test_invalid_times(times, message):
    with pytest.raises(ConfigurationError, match=message):
        Observation(times, {"T": np.zeros(len(times))})


def test_length_mismatch():
    with pytest.raises(ConfigurationError, match=r"\(3 != 4\)"):
        Observation(TIMES, {"T": np.zeros(3)})


def test_no_fields():
    with pytest.raises(ConfigurationError, match="no fields"):
        Observation(TIMES, {})


def test_transformation_of_unknown_field(data):
    with pytest.raises(ConfigurationError, match="unknown fields"):
        Observation(TIMES, data, transformation={"U": Transformation()})


def test_single_observation_is_batch_of_one(data):
    obs = Observation(TIMES, data)
    batch = as_batch(obs)
    assert len(batch) == 1
    assert batch[0] is obs


def test_empty_batch():
    with pytest.raises(ConfigurationError, match="Empty batch"):
        as_batch([])


def test_batch_names_and_times(data):
    batch = [Observation(TIMES, data), Observation(TIMES, data)]

    assert observation_names(batch) == ("T", "S")
    np.testing.assert_array_equal(observation_times(batch), TIMES)


def test_batch_with_different_fields(data):
    batch = [Observation(TIMES, data), Observation(TIMES, {"T": data["T"]})]
    with pytest.raises(ConfigurationError, match="different fields"):
        observation_names(batch)


def test_batch_with_different_times(data):
    batch = [Observation(TIMES, data), Observation(TIMES + 1, data)]
    with pytest.raises(ConfigurationError, match="different times"):
        observation_times(batch)
