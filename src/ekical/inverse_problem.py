from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ekical.errors import ConfigurationError
from ekical.observations import (
    Observation,
    as_batch,
    observation_names,
    observation_times,
)
from ekical.parameters import FreeParameters, expand_parameters
from ekical.simulation import BatchedSimulation, TimeSeriesCollector


@dataclass(frozen=True)
class ConcatenatedOutputMap:
    """
    Output map concatenating transformed time series of all the observed fields.

    For each batch member, fields are taken in the order of the observation and their
    time series are transformed as specified by the observation. Results are
    concatenated into a single vector per ensemble member.
    """

    def observation_map(self, observations: Sequence[Observation]) -> NDArray:
        parts = [
            np.concatenate(obs.transformed(obs.field_time_series))
            for obs in observations
        ]
        return np.concatenate(parts)

    def transform_forward_map_output(
        self, observations: Sequence[Observation], collector: TimeSeriesCollector
    ) -> NDArray:
        parts = []
        for j, obs in enumerate(observations):
            # each part has shape (Nensemble, K)
            parts.extend(obs.transformed(collector.batch_member(j)))
        return np.concatenate(parts, axis=1).T


@dataclass(frozen=True)
class VectorNormMap:
    """
    Output map reducing the output of each ensemble member to a single number.

    The number is the Euclidean norm of the difference between the concatenated
    output of the member and the concatenated observations, so the observation map is
    always zero.
    """

    def observation_map(self, observations: Sequence[Observation]) -> NDArray:
        return np.zeros(1)

    def transform_forward_map_output(
        self, observations: Sequence[Observation], collector: TimeSeriesCollector
    ) -> NDArray:
        concatenated = ConcatenatedOutputMap()
        G = concatenated.transform_forward_map_output(observations, collector)
        y = concatenated.observation_map(observations)
        return np.linalg.norm(G - y[:, np.newaxis], axis=0, keepdims=True)


OutputMap: TypeAlias = ConcatenatedOutputMap | VectorNormMap


@dataclass(frozen=True)
class InverseProblem:
    """
    Problem of finding parameters of a simulation matching the observations.

    Attributes
    ----------
    observations : Observation or list of Observation
        Observed data. A list of observations is a batch: each of them is compared
        with the corresponding batch member of the simulation.
    simulation : BatchedSimulation
        Simulation with one member per parameter set of the ensemble.
    free_parameters : FreeParameters
        Calibrated parameters.
    output_map : ConcatenatedOutputMap or VectorNormMap
        Transformation of the simulation output and observations to vectors.
    time_series_collector : TimeSeriesCollector, optional
        Storage of the simulation output. By default, a collector of all the
        observed fields at observation times is created.
    """

    observations: Observation | list[Observation]
    simulation: BatchedSimulation
    free_parameters: FreeParameters
    output_map: OutputMap = ConcatenatedOutputMap()
    time_series_collector: TimeSeriesCollector | None = None

    def __post_init__(self):
        if not isinstance(self.output_map, ConcatenatedOutputMap | VectorNormMap):
            raise ConfigurationError(f"Unknown output map: {self.output_map!r}")

        batch = as_batch(self.observations)
        if len(batch) != self.simulation.batch_size:
            raise ConfigurationError(
                f"Number of observations ({len(batch)}) does not match the batch size "
                f"of the simulation ({self.simulation.batch_size})"
            )

        names = observation_names(batch)
        missing = [n for n in names if n not in self.simulation.available_fields]
        if missing:
            raise ConfigurationError(f"Simulation does not produce fields {missing}")

        if self.time_series_collector is None:
            collector = TimeSeriesCollector(
                names,
                observation_times(batch),
                self.simulation.ensemble_size,
                self.simulation.batch_size,
            )
            object.__setattr__(self, "time_series_collector", collector)

    @property
    def batch(self) -> list[Observation]:
        return as_batch(self.observations)

    @property
    def ensemble_size(self) -> int:
        return self.simulation.ensemble_size

    def __str__(self) -> str:
        out_map = type(self.output_map).__name__
        fields = observation_names(self.batch)
        return "\n".join(
            [
                f"InverseProblem{{{out_map}}}",
                f"├── observations: {len(self.batch)} x {fields}",
                f"├── simulation: {type(self.simulation).__name__} with "
                f"{self.ensemble_size} ensemble members",
                f"├── free_parameters: {self.free_parameters.names}",
                f"└── output map: {out_map}",
            ]
        )

    def __call__(self, theta: Any) -> NDArray:
        return forward_map(self, theta)


def forward_run(ip: InverseProblem, parameters: Any) -> None:
    """
    Run the simulation with given parameters.

    Output is stored in ``ip.time_series_collector``.

    Parameters
    ----------
    ip : InverseProblem
        Problem whose simulation is run.
    parameters : object
        Parameter ensemble, in any form accepted by `expand_parameters`.

    Raises
    ------
    ConfigurationError
        If the parameters do not fit in the ensemble of the simulation. In this case
        the simulation is not run.
    """
    records = expand_parameters(ip.free_parameters, parameters, ip.ensemble_size)
    collector = ip.time_series_collector

    ip.simulation.set_parameters(records)
    ip.simulation.initialize(ip.batch)
    collector.reset()
    ip.simulation.run(collector)


def forward_map(ip: InverseProblem, parameters: Any) -> NDArray[np.float64]:
    """
    Run the simulation with given parameters and transform its output.

    Parameters
    ----------
    ip : InverseProblem
        Problem to evaluate.
    parameters : object
        Parameter ensemble, in any form accepted by `expand_parameters`. If it has
        fewer parameter sets than the ensemble size of the simulation, the last one
        is repeated.

    Returns
    -------
    ndarray, shape (output_size, Nensemble)
        Output of each ensemble member, comparable with `observation_map`.
    """
    forward_run(ip, parameters)
    collector = ip.time_series_collector
    return ip.output_map.transform_forward_map_output(ip.batch, collector)


def inverting_forward_map(ip: InverseProblem, X: ArrayLike) -> NDArray[np.float64]:
    """
    Evaluate the forward map on an ensemble of unconstrained parameters.

    Parameters
    ----------
    ip : InverseProblem
        Problem to evaluate.
    X : array_like, shape (Nparams, N)
        Unconstrained parameters, one set per column. ``N`` must not exceed the
        ensemble size.

    Returns
    -------
    ndarray, shape (output_size, Nensemble)
        Output of each ensemble member.
    """
    theta = ip.free_parameters.to_constrained(X)
    if theta.ndim == 1:
        theta = theta[:, np.newaxis]
    return forward_map(ip, theta)


def observation_map(ip: InverseProblem) -> NDArray[np.float64]:
    """
    Transform the observations of the problem into a vector.

    Returns
    -------
    ndarray, shape (output_size,)
        Observations transformed in the same way as the forward map output.
    """
    return ip.output_map.observation_map(ip.batch)


def observation_map_variance_across_time(ip: InverseProblem) -> NDArray[np.float64]:
    """
    Compute variance of the observations accumulated over time.

    For each element of `observation_map`, the result is the variance of the
    transformed field values up to and including the corresponding time point. It is
    zero at the first time point. The result is a reasonable diagonal of the noise
    covariance when no better estimate of the observation error is available.

    Returns
    -------
    ndarray, shape (output_size,)
        Variance of each element of the observation map.

    Raises
    ------
    ConfigurationError
        If the output map of the problem is not `ConcatenatedOutputMap`.
    """
    if not isinstance(ip.output_map, ConcatenatedOutputMap):
        raise ConfigurationError(
            "Variance across time is only defined for ConcatenatedOutputMap"
        )

    parts = []
    for obs in ip.batch:
        for data in obs.transformed(obs.field_time_series):
            parts.append([np.var(data[: t + 1]) for t in range(data.size)])
    return np.concatenate(parts)
