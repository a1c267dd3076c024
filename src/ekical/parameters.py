import copy
import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, TypeVar

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ekical.errors import ConfigurationError
from ekical.priors import Prior
from ekical.utils import zip_to_dict

ParameterRecord = dict[str, float]
"""Values of all the free parameters of a single ensemble member."""


class FreeParameters:
    """
    Ordered collection of calibrated parameters and their priors.

    The order of `names` defines the layout of parameter vectors and the rows of
    parameter ensemble matrices.

    Parameters
    ----------
    priors : mapping of str to Prior
        Prior distribution of each parameter.
    names : iterable of str, optional
        Names of the free parameters. By default, all the keys of `priors`, in the
        iteration order of the mapping.

    Examples
    --------
    >>> from ekical.priors import Normal
    >>> free_parameters = FreeParameters({"nu": Normal(1e-4, 1e-5), "kappa": Normal()})
    >>> free_parameters.names
    ('nu', 'kappa')
    """

    def __init__(self, priors: Mapping[str, Prior], names: Iterable[str] | None = None):
        names = tuple(priors if names is None else names)

        if len(set(names)) != len(names):
            raise ConfigurationError(f"Parameter names are not unique: {names}")

        missing = [name for name in names if name not in priors]
        if missing:
            raise ConfigurationError(f"No prior specified for parameters {missing}")

        self.names = names
        self.priors = {name: priors[name] for name in names}

    def __len__(self) -> int:
        return len(self.names)

    def __str__(self) -> str:
        lines = [
            f"FreeParameters with {len(self)} parameters",
            f"├── names: {self.names}",
            "└── priors:",
        ]
        width = max((len(name) for name in self.names), default=0)
        for i, name in enumerate(self.names):
            prefix = "    └──" if i == len(self) - 1 else "    ├──"
            lines.append(f"{prefix} {name:>{width}} => {self.priors[name]}")
        return "\n".join(lines)

    def to_constrained(self, X: ArrayLike) -> NDArray[np.float64]:
        """
        Transform unconstrained parameters to physical values.

        Parameters
        ----------
        X : array_like, shape (Nparams,) or (Nparams, Nensemble)
            Single unconstrained parameter vector, or an ensemble of them stored in
            columns.

        Returns
        -------
        ndarray
            Array of the same shape with constrained parameter values.
        """
        X = self._check_rows(X)
        rows = [prior.to_constrained(X[i]) for i, prior in enumerate(self._prior_list)]
        return np.array(rows, dtype=float)

    def to_unconstrained(self, theta: ArrayLike) -> NDArray[np.float64]:
        """Inverse of `to_constrained`."""
        theta = self._check_rows(theta)
        rows = [
            prior.to_unconstrained(theta[i]) for i, prior in enumerate(self._prior_list)
        ]
        return np.array(rows, dtype=float)

    def sample_unconstrained(
        self, rng: np.random.Generator, ensemble_size: int
    ) -> NDArray[np.float64]:
        """
        Draw an ensemble from the priors in the unconstrained space.

        Parameters
        ----------
        rng : Generator
            Source of randomness.
        ensemble_size : int
            Number of ensemble members.

        Returns
        -------
        ndarray, shape (Nparams, ensemble_size)
            Ensemble matrix, one member per column.
        """
        rows = [
            prior.sample_unconstrained(rng, ensemble_size)
            for prior in self._prior_list
        ]
        return np.array(rows, dtype=float).reshape(len(self), ensemble_size)

    @property
    def _prior_list(self) -> list[Prior]:
        return [self.priors[name] for name in self.names]

    def _check_rows(self, X: ArrayLike) -> NDArray[np.float64]:
        X = np.asarray(X, dtype=float)
        if X.shape[:1] != (len(self),):
            raise ConfigurationError(
                f"Expected {len(self)} parameters, got array of shape {X.shape}"
            )
        return X


def parameter_record(
    free_parameters: FreeParameters, theta: Mapping[str, float] | ArrayLike
) -> ParameterRecord:
    """
    Convert a single parameter set to a record.

    Parameters
    ----------
    free_parameters : FreeParameters
        Parameters being calibrated.
    theta : mapping or array_like
        Parameter values, either keyed by name, or a vector ordered like
        ``free_parameters.names``.

    Returns
    -------
    dict
        Record with values of all the free parameters, in canonical order.
    """
    names = free_parameters.names

    if isinstance(theta, Mapping):
        missing = [name for name in names if name not in theta]
        if missing:
            raise ConfigurationError(f"Missing values of parameters {missing}")
        return {name: theta[name] for name in names}

    values = np.asarray(theta, dtype=float).ravel()
    if values.size != len(names):
        raise ConfigurationError(
            f"Expected {len(names)} parameter values, got {values.size}"
        )
    return zip_to_dict(names, values.tolist())


def expand_parameters(
    free_parameters: FreeParameters, theta: Any, ensemble_size: int
) -> list[ParameterRecord]:
    """
    Convert parameters to a list of exactly `ensemble_size` records.

    `theta` may represent an ensemble of parameter sets as:

    - a matrix with one parameter set per column,
    - a sequence of parameter vectors,
    - a sequence of mappings from names to values,

    or a single parameter set, given as a vector or a mapping.

    If there are fewer parameter sets than ensemble members, the last one is copied
    to fill the remaining slots.

    Parameters
    ----------
    free_parameters : FreeParameters
        Parameters being calibrated.
    theta : object
        Parameter ensemble or a single parameter set.
    ensemble_size : int
        Number of ensemble members of the simulation.

    Returns
    -------
    list of dict
        Parameter records of all the ensemble members.

    Raises
    ------
    ConfigurationError
        If there are more parameter sets than ensemble members, or a parameter set
        has wrong number of values.
    """
    if isinstance(theta, Mapping):
        sets = [theta]
    elif isinstance(theta, np.ndarray) and theta.ndim == 2:
        sets = list(theta.T)
    elif isinstance(theta, Sequence | np.ndarray) and _is_single_vector(theta):
        sets = [theta]
    else:
        sets = list(theta)

    if not sets:
        raise ConfigurationError("Empty parameter ensemble")

    nfewer = ensemble_size - len(sets)
    if nfewer < 0:
        raise ConfigurationError(
            f"There are {-nfewer} more parameter sets than ensemble members"
        )

    records = [parameter_record(free_parameters, t) for t in sets]
    records.extend(dict(records[-1]) for _ in range(nfewer))
    return records


def _is_single_vector(theta) -> bool:
    return len(theta) > 0 and all(
        np.ndim(x) == 0 and not isinstance(x, Mapping) for x in theta
    )


_M = TypeVar("_M")


def _parameter_names(model) -> tuple[str, ...]:
    if hasattr(model, "params"):
        return tuple(model.params)
    if dataclasses.is_dataclass(model):
        return tuple(f.name for f in dataclasses.fields(model) if f.init)
    return ()


def _is_submodel(value) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def model_with_parameters(model: _M, parameters: Mapping[str, Any]) -> _M:
    """
    Create a copy of the model with some of its parameters replaced.

    Entries of `parameters` that do not correspond to model parameters are ignored,
    so the same record can be used for models that only depend on a subset of the
    calibrated parameters. Parameters that are themselves dataclass instances
    (sub-models) are rebuilt recursively, so their fields can be calibrated too.
    The original model is left untouched.

    Parameters
    ----------
    model : object
        Model configuration, exposing the names of its parameters as ``params``.
        Dataclasses without ``params`` use their fields.
    parameters : mapping
        New parameter values.

    Returns
    -------
    object
        New model configuration.

    Examples
    --------
    >>> from dataclasses import dataclass
    >>> @dataclass
    ... class SubModel:
    ...     a: float
    ...     b: float
    >>> @dataclass
    ... class Closure:
    ...     sub: SubModel
    ...     c: float
    >>> model_with_parameters(Closure(SubModel(1, 2), 3), {"a": 12, "d": 7})
    Closure(sub=SubModel(a=12, b=2), c=3)
    """
    overrides = {}
    for name in _parameter_names(model):
        if name in parameters:
            overrides[name] = parameters[name]
        else:
            value = getattr(model, name)
            if _is_submodel(value):
                overrides[name] = model_with_parameters(value, parameters)

    if dataclasses.is_dataclass(model):
        return dataclasses.replace(model, **overrides)

    new_model = copy.copy(model)
    for name, value in overrides.items():
        setattr(new_model, name, value)
    return new_model


def new_model_ensemble(model: _M, parameters: Iterable[Mapping[str, Any]]) -> list[_M]:
    """Build one model configuration per parameter record."""
    return [model_with_parameters(model, p) for p in parameters]
