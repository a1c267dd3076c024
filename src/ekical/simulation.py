"""
Batched simulations evaluated by the forward map.

A batched simulation runs ``ensemble_size * batch_size`` independent model instances:
one per ensemble member (parameter set) and batch member (observation). Results are
stored in a `TimeSeriesCollector`.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import numpy as np
from numpy.typing import NDArray

from ekical.errors import ConfigurationError
from ekical.observations import Observation
from ekical.ode import ODE, failed_solution, solve
from ekical.parameters import new_model_ensemble

logger = logging.getLogger(__name__)


class TimeSeriesCollector:
    """
    Storage of simulated field time series.

    Parameters
    ----------
    field_names : sequence of str
        Names of the collected fields.
    times : ndarray, shape (Nt,)
        Times at which the fields are collected.
    ensemble_size : int
        Number of ensemble members.
    batch_size : int
        Number of batch members.

    Attributes
    ----------
    field_time_series : dict of ndarray, shape (ensemble_size, batch_size, Nt)
        Collected data. Entries not written since the last `reset` are NaN.
    """

    def __init__(
        self,
        field_names: Sequence[str],
        times: NDArray,
        ensemble_size: int,
        batch_size: int = 1,
    ):
        self.field_names = tuple(field_names)
        self.times = np.asarray(times, dtype=float)
        shape = (ensemble_size, batch_size, self.times.size)
        self.field_time_series = {name: np.full(shape, np.nan) for name in field_names}

    @property
    def ensemble_size(self) -> int:
        return self._shape[0]

    @property
    def batch_size(self) -> int:
        return self._shape[1]

    @property
    def _shape(self) -> tuple[int, ...]:
        return next(iter(self.field_time_series.values())).shape

    def reset(self) -> None:
        """Overwrite all the collected data with NaN."""
        for data in self.field_time_series.values():
            data.fill(np.nan)

    def record(self, member: int, batch: int, solution: Mapping[str, NDArray]) -> None:
        """Store time series of a single simulation run."""
        for name, data in self.field_time_series.items():
            data[member, batch, :] = solution[name]

    def batch_member(self, batch: int) -> dict[str, NDArray]:
        """
        Return data collected for one batch member.

        Returns
        -------
        dict of ndarray, shape (ensemble_size, Nt)
            Time series of all the ensemble members.
        """
        series = self.field_time_series
        return {name: data[:, batch, :] for name, data in series.items()}


class BatchedSimulation(Protocol):
    """Interface of simulations used by `InverseProblem`."""

    @property
    def ensemble_size(self) -> int: ...

    @property
    def batch_size(self) -> int: ...

    @property
    def available_fields(self) -> tuple[str, ...]: ...

    def set_parameters(self, parameters: Sequence[Mapping[str, Any]]) -> None:
        """Configure ensemble members with given parameter records."""

    def initialize(self, observations: Sequence[Observation]) -> None:
        """Set initial conditions of each batch member from its observation."""

    def run(self, collector: TimeSeriesCollector) -> None:
        """Run all the members to completion, storing results in `collector`."""


@dataclass
class EnsembleSimulation:
    """
    Ensemble of ODE systems sharing the structure of a base model.

    Each ensemble member is a copy of `model` with some parameters replaced. Members
    are solved independently; a member with non-finite parameters, or whose solver
    does not converge, produces NaN output.

    Attributes
    ----------
    model : ODE
        Base model configuration.
    ensemble_size : int
        Number of ensemble members.
    batch_size : int
        Number of batch members, i.e. of different initial conditions.
    solver_options : dict
        Additional arguments passed to `scipy.integrate.solve_ivp`.
    """

    model: ODE
    ensemble_size: int
    batch_size: int = 1
    solver_options: dict[str, Any] = field(default_factory=dict)
    members: list[ODE] = field(init=False, repr=False)
    initial_states: list[NDArray] = field(init=False, repr=False)

    def __post_init__(self):
        if self.ensemble_size < 1 or self.batch_size < 1:
            raise ConfigurationError(
                f"Invalid simulation size ({self.ensemble_size}, {self.batch_size})"
            )
        self.members = [self.model] * self.ensemble_size
        self.initial_states = []

    @property
    def available_fields(self) -> tuple[str, ...]:
        return self.model.output_vars

    def set_parameters(self, parameters):
        if len(parameters) != self.ensemble_size:
            raise ConfigurationError(
                f"Expected {self.ensemble_size} parameter sets, got {len(parameters)}"
            )
        self.members = new_model_ensemble(self.model, parameters)

    def initialize(self, observations):
        if len(observations) != self.batch_size:
            raise ConfigurationError(
                f"Simulation batch size {self.batch_size} does not match the number "
                f"of observations {len(observations)}"
            )
        self.initial_states = [
            np.array([obs.initial_value(name) for name in self.model.state_vars])
            for obs in observations
        ]

    def run(self, collector):
        if not self.initial_states:
            raise ConfigurationError("Simulation has not been initialized")

        times = collector.times
        for k, member in enumerate(self.members):
            for j, init in enumerate(self.initial_states):
                if member.has_finite_params():
                    solution = solve(member, init, times, **self.solver_options)
                else:
                    logger.debug("Member %d has non-finite parameters", k)
                    solution = failed_solution(member, times)
                collector.record(k, j, solution)
