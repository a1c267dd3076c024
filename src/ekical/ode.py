import math
import warnings
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, fields, is_dataclass
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.integrate import solve_ivp


@dataclass
class ODE(ABC):
    """
    Base class for ODE systems simulated by `EnsembleSimulation`.

    Parameters of the system are the dataclass fields of the subclass. Calibration
    never modifies an instance: each ensemble member gets its own copy with the
    parameter values replaced.
    """

    @property
    @abstractmethod
    def state_vars(self) -> tuple[str, ...]:
        """
        Return names of state variables of the system.

        These are the quantities whose time derivatives appear on the left-hand side of
        the equation.
        """

    @property
    @abstractmethod
    def derived_vars(self) -> tuple[str, ...]:
        """
        Return names of derived variables.

        These quantities are computed from the state, but do not appear directly in the
        system equations, e.g. a sum of two state variables.
        """

    @abstractmethod
    def rhs(self, t: float, state: NDArray) -> ArrayLike:
        """
        Compute the right-hand side of the equation.

        Parameters
        ----------
        t : float
            Time point.
        state : ndarray
            Vector of state variables.

        Returns
        -------
        array_like
            Vector of time derivatives of state variables at the specified time point.
        """

    @abstractmethod
    def derived(self, state: NDArray) -> ArrayLike:
        """
        Compute the derived variables form state.

        Parameters
        ----------
        state : ndarray
            Vector of state variables.

        Returns
        -------
        array_like
            Vector of output variables computed from the system state.
        """

    @property
    def output_vars(self) -> tuple[str, ...]:
        """Names of all the quantities produced by `solve`."""
        return tuple(self.state_vars) + tuple(self.derived_vars)

    @property
    def params(self) -> tuple[str, ...]:
        """
        Return names of ODE parameters.

        The solution of ODE should be uniquely determined by these parameters and the
        initial state vector.
        """
        return tuple(f.name for f in fields(type(self)))

    def param_dict(self) -> dict[str, Any]:
        """
        Return dictionary with parameter values of the ODE instance.

        Returns
        -------
        dict
            Dictionary of ODE parameters.
        """
        return {name: getattr(self, name) for name in self.params}

    def has_finite_params(self) -> bool:
        """Check if all the numeric parameters, also of sub-models, are finite."""
        return _all_finite(self.param_dict().values())


def solve(
    ode: ODE, init: ArrayLike, time_points: NDArray, **solver_options
) -> dict[str, NDArray]:
    """
    Solve an ODE system.

    Given an ODE system and initial state vector, it computes values of state and output
    variables at specified points in time. If the solver fails before reaching the final
    time point, values at the remaining points are NaN.

    Parameters
    ----------
    ode : ODE
        Object representing the differential equation to solve.
    init : array_like, shape (N,)
        Initial state.
    time_points : ndarray, shape (M,)
        Times at which to store the computed solution, must be sorted.

    Returns
    -------
    dict of ndarray, shape (M,)
        Dictionary containing time series of state and output variables.

    Other Parameters
    ----------------
    **solver_options : dict, optional
        Additional arguments passed to `scipy.integrate.solve_ivp` method.

    Warns
    -----
    UserWarning
        If the ODE solver does not converge.
    """
    domain = (time_points[0], time_points[-1])
    result = solve_ivp(ode.rhs, domain, init, t_eval=time_points, **solver_options)

    if not result.success:
        warnings.warn(f"ODE solver did not converge: {result.message}", stacklevel=2)

    state = np.full((len(ode.state_vars), time_points.size), np.nan)
    computed = result.y.shape[1]
    state[:, :computed] = result.y

    if ode.derived_vars:
        derived = np.apply_along_axis(ode.derived, axis=0, arr=state)
    else:
        derived = np.empty((0, time_points.size))

    state_dict = _separate_vars(state, ode.state_vars)
    derived_dict = _separate_vars(derived, ode.derived_vars)

    return state_dict | derived_dict


def failed_solution(ode: ODE, time_points: NDArray) -> dict[str, NDArray]:
    """Return NaN time series of all the output variables."""
    return {name: np.full(time_points.size, np.nan) for name in ode.output_vars}


def _all_finite(values: Iterable[Any]) -> bool:
    for v in values:
        if is_dataclass(v) and not isinstance(v, type):
            if not _all_finite(getattr(v, f.name) for f in fields(v)):
                return False
        elif isinstance(v, int | float) and not math.isfinite(v):
            return False
    return True


def _separate_vars(array: NDArray, names: Iterable[str]) -> dict[str, NDArray]:
    return {name: array[i, ...] for i, name in enumerate(names)}
