from dataclasses import dataclass

import numpy as np
import pytest

from ekical.errors import ConfigurationError
from ekical.parameters import (
    FreeParameters,
    expand_parameters,
    model_with_parameters,
    new_model_ensemble,
    parameter_record,
)
from ekical.priors import LogNormal, Normal, ScaledLogitNormal


@pytest.fixture()
def params():
    priors = {
        "a": Normal(0, 1),
        "b": LogNormal(0, 1),
        "c": ScaledLogitNormal(bounds=(0, 10)),
    }
    return FreeParameters(priors)


def test_names_follow_prior_order(params):
    assert params.names == ("a", "b", "c")
    assert len(params) == 3


def test_names_select_subset_of_priors():
    priors = {"a": Normal(), "b": Normal(), "c": Normal()}
    params = FreeParameters(priors, names=["c", "a"])

    assert params.names == ("c", "a")
    assert list(params.priors) == ["c", "a"]


def test_missing_prior_is_rejected():
    with pytest.raises(ConfigurationError, match="No prior specified"):
        FreeParameters({"a": Normal()}, names=["a", "b"])


def test_duplicate_names_are_rejected():
    with pytest.raises(ConfigurationError, match="not unique"):
        FreeParameters({"a": Normal()}, names=["a", "a"])


def test_string_representation_lists_priors(params):
    text = str(params)
    assert text.startswith("FreeParameters with 3 parameters")
    for name in params.names:
        assert name in text


def test_to_constrained_works_on_ensembles(params):
    X = np.zeros((3, 4))
    theta = params.to_constrained(X)

    assert theta.shape == (3, 4)
    np.testing.assert_allclose(theta[0], 0)
    np.testing.assert_allclose(theta[1], 1)
    np.testing.assert_allclose(theta[2], 5)


def test_to_unconstrained_inverts_to_constrained(params):
    theta = np.array([[0.3, -1.0], [2.0, 0.5], [1.0, 9.0]])
    X = params.to_unconstrained(theta)
    np.testing.assert_allclose(params.to_constrained(X), theta)


def test_wrong_number_of_rows_is_rejected(params):
    with pytest.raises(ConfigurationError, match="Expected 3 parameters"):
        params.to_constrained(np.zeros((2, 5)))


def test_sample_unconstrained_shape(params, rng):
    X = params.sample_unconstrained(rng, 7)
    assert X.shape == (3, 7)


def test_parameter_record_from_mapping(params):
    record = parameter_record(params, {"c": 3, "a": 1, "b": 2, "extra": 4})
    assert list(record.items()) == [("a", 1), ("b", 2), ("c", 3)]


def test_parameter_record_missing_values(params):
    with pytest.raises(ConfigurationError, match="Missing values"):
        parameter_record(params, {"a": 1})


def test_expand_single_vector_fills_ensemble(params):
    records = expand_parameters(params, [1.0, 2.0, 3.0], 4)

    assert len(records) == 4
    assert all(r == {"a": 1.0, "b": 2.0, "c": 3.0} for r in records)


def test_expand_single_mapping_fills_ensemble(params):
    records = expand_parameters(params, {"a": 1.0, "b": 2.0, "c": 3.0}, 2)
    assert records == [{"a": 1.0, "b": 2.0, "c": 3.0}] * 2


def test_expand_matrix_uses_columns(params):
    theta = np.array([[1.0, 4.0], [2.0, 5.0], [3.0, 6.0]])

    records = expand_parameters(params, theta, 3)

    assert records[0] == {"a": 1.0, "b": 2.0, "c": 3.0}
    assert records[1] == {"a": 4.0, "b": 5.0, "c": 6.0}
    assert records[2] == records[1]


def test_expand_list_of_mappings(params):
    theta = [{"a": 1, "b": 2, "c": 3}, {"a": 4, "b": 5, "c": 6}]
    records = expand_parameters(params, theta, 2)
    assert records == theta


def test_expand_pads_with_copies(params):
    records = expand_parameters(params, [[1, 2, 3]], 3)

    records[1]["a"] = 100
    assert records[2]["a"] == 1


def test_expand_rejects_too_many_sets(params):
    theta = np.zeros((3, 5))
    with pytest.raises(ConfigurationError, match="2 more parameter sets"):
        expand_parameters(params, theta, 3)


def test_expand_rejects_empty_ensemble(params):
    with pytest.raises(ConfigurationError, match="Empty"):
        expand_parameters(params, [], 3)


def test_expand_is_idempotent(params):
    once = expand_parameters(params, [1.0, 2.0, 3.0], 3)
    twice = expand_parameters(params, once, 3)
    assert once == twice


@dataclass
class Closure:
    nu: float = 1.0
    kappa: float = 2.0
    name: str = "closure"

    @property
    def params(self):
        return ("nu", "kappa", "name")


class PlainClosure:
    params = ("nu",)

    def __init__(self, nu):
        self.nu = nu


def test_model_with_parameters_replaces_values():
    model = Closure()
    new_model = model_with_parameters(model, {"nu": 5.0})

    assert new_model == Closure(nu=5.0)
    assert model == Closure()


def test_model_with_parameters_ignores_unknown_names():
    new_model = model_with_parameters(Closure(), {"kappa": 3.0, "other": 1.0})
    assert new_model == Closure(kappa=3.0)


def test_model_with_parameters_copies_plain_objects():
    model = PlainClosure(1.0)
    new_model = model_with_parameters(model, {"nu": 2.0})

    assert new_model is not model
    assert new_model.nu == 2.0
    assert model.nu == 1.0


def test_new_model_ensemble_creates_independent_members():
    models = new_model_ensemble(Closure(), [{"nu": 1.5}, {"nu": 2.5}])

    assert [m.nu for m in models] == [1.5, 2.5]
    assert models[0] is not models[1]


@dataclass
class SubModel:
    a: float
    b: float


@dataclass
class CompositeClosure:
    sub: SubModel
    c: float


def test_model_with_parameters_updates_sub_models():
    model = CompositeClosure(SubModel(1, 2), 3)

    new_model = model_with_parameters(model, {"a": 12, "d": 7})

    assert new_model == CompositeClosure(SubModel(12, 2), 3)
    assert model.sub.a == 1


def test_model_with_parameters_sub_model_and_top_level():
    model = CompositeClosure(SubModel(1.0, 2.0), 3.0)

    new_model = model_with_parameters(model, {"b": 5.0, "c": 6.0})

    assert new_model == CompositeClosure(SubModel(1.0, 5.0), 6.0)
    assert new_model.sub is not model.sub
