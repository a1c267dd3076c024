"""
Ensemble Kalman Inversion.

Each iteration evaluates the forward map for every member of the parameter ensemble,
repairs members with non-finite output, and moves each member towards parameters
whose output matches a perturbed copy of the observations::

    θⱼ' = θⱼ + Cθg (Cgg + Γ)⁻¹ (yⱼ - G(θⱼ))

where ``Cθg`` is the cross-covariance of parameters and outputs, ``Cgg`` is the
covariance of outputs, and ``yⱼ`` are the observations perturbed with noise drawn
from ``N(0, Γ)``. The update acts on unconstrained parameters, see `ekical.priors`.
"""

from __future__ import annotations

import functools
import logging
import warnings
from dataclasses import dataclass
from datetime import timedelta

import numpy as np
import scipy.linalg
from numpy.typing import ArrayLike, NDArray
from tqdm import tqdm

from ekical.errors import ConfigurationError
from ekical.inverse_problem import (
    InverseProblem,
    inverting_forward_map,
    observation_map,
)
from ekical.parameters import FreeParameters, ParameterRecord
from ekical.resampling import Resampler, resample
from ekical.utils import make_rng, traced, zip_to_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationSummary:
    """
    Snapshot of the parameter ensemble after an iteration.

    Statistics are computed from the physical (constrained) parameter values.

    Attributes
    ----------
    iteration : int
        Number of the iteration, 0 for the initial ensemble.
    parameters : list of dict
        Parameter values of each ensemble member.
    ensemble_mean : ndarray, shape (Nparams,)
        Mean of the ensemble.
    ensemble_cov : ndarray, shape (Nparams, Nparams)
        Covariance of the ensemble.
    ensemble_var : ndarray, shape (Nparams,)
        Variance of each parameter.
    unconstrained_parameters : ndarray, shape (Nparams, Nensemble)
        Ensemble in the space of the Kalman update.
    """

    iteration: int
    parameters: list[ParameterRecord]
    ensemble_mean: NDArray[np.float64]
    ensemble_cov: NDArray[np.float64]
    ensemble_var: NDArray[np.float64]
    unconstrained_parameters: NDArray[np.float64]

    @classmethod
    def from_ensemble(
        cls, free_parameters: FreeParameters, X: NDArray, iteration: int
    ) -> IterationSummary:
        X = np.array(X, dtype=float)
        X.flags.writeable = False

        theta = free_parameters.to_constrained(X)
        cov = np.atleast_2d(np.cov(theta))
        names = free_parameters.names

        return cls(
            iteration=iteration,
            parameters=[zip_to_dict(names, column.tolist()) for column in theta.T],
            ensemble_mean=theta.mean(axis=1),
            ensemble_cov=cov,
            ensemble_var=np.diag(cov).copy(),
            unconstrained_parameters=X,
        )

    @property
    def ensemble_size(self) -> int:
        return len(self.parameters)

    def mean_parameters(self) -> ParameterRecord:
        """Return the ensemble mean as a parameter record."""
        return zip_to_dict(self.parameters[0], self.ensemble_mean.tolist())

    def __str__(self) -> str:
        names = list(self.parameters[0])
        width = max(len(n) for n in names)
        lines = [f"IterationSummary for {self.ensemble_size} particles"]
        lines.append(f"{'':>{width}}  {'mean':>12}  {'std':>12}")
        for name, mean, var in zip(
            names, self.ensemble_mean, self.ensemble_var, strict=True
        ):
            lines.append(f"{name:>{width}}  {mean:12.4e}  {np.sqrt(var):12.4e}")
        return "\n".join(lines)


def noise_covariance_matrix(noise_covariance: ArrayLike, size: int) -> NDArray:
    """
    Build the noise covariance matrix.

    Parameters
    ----------
    noise_covariance : float or array_like
        Scalar variance of each output, vector with the diagonal of the covariance
        matrix, or the full matrix.
    size : int
        Size of the output vector.

    Returns
    -------
    ndarray, shape (size, size)
        Noise covariance matrix.
    """
    gamma = np.asarray(noise_covariance, dtype=float)

    if gamma.ndim == 0:
        gamma = gamma * np.eye(size)
    elif gamma.ndim == 1:
        gamma = np.diag(gamma)

    if gamma.shape != (size, size):
        raise ConfigurationError(
            f"Noise covariance of shape {gamma.shape} does not match the output "
            f"size {size}"
        )
    if not np.all(np.isfinite(gamma)) or not np.allclose(gamma, gamma.T):
        raise ConfigurationError("Noise covariance must be a finite symmetric matrix")
    if np.any(np.diag(gamma) < 0):
        raise ConfigurationError("Noise covariance has negative variances")
    tol = 1e-10 * max(1.0, float(np.abs(gamma).max()))
    if np.linalg.eigvalsh(gamma).min() < -tol:
        raise ConfigurationError("Noise covariance is not positive semi-definite")
    return gamma


def _solve_symmetric(A: NDArray, B: NDArray) -> NDArray:
    try:
        factor = scipy.linalg.cho_factor(A)
        return scipy.linalg.cho_solve(factor, B)
    except np.linalg.LinAlgError:
        warnings.warn(
            "Output covariance is not positive definite, using least squares solve",
            RuntimeWarning,
            stacklevel=3,
        )
        solution, *_ = scipy.linalg.lstsq(A, B)
        return solution


def ensemble_kalman_update(
    X: NDArray,
    G: NDArray,
    y: NDArray,
    noise_covariance: NDArray,
    rng: np.random.Generator,
    tikhonov: float = 0.0,
) -> NDArray[np.float64]:
    """
    Perform the ensemble Kalman analysis step.

    Parameters
    ----------
    X : ndarray, shape (Nparams, Nensemble)
        Unconstrained parameter ensemble.
    G : ndarray, shape (output_size, Nensemble)
        Forward map output of the ensemble, must be finite.
    y : ndarray, shape (output_size,)
        Observations.
    noise_covariance : ndarray, shape (output_size, output_size)
        Covariance of the observation noise.
    rng : Generator
        Source of the observation perturbations.
    tikhonov : float, optional
        Multiple of identity added to ``Cgg + Γ`` before solving.

    Returns
    -------
    ndarray, shape (Nparams, Nensemble)
        Updated ensemble.
    """
    nensemble = X.shape[1]

    noise = rng.multivariate_normal(np.zeros(y.size), noise_covariance, size=nensemble)
    perturbed = y[:, np.newaxis] + noise.T

    dX = X - X.mean(axis=1, keepdims=True)
    dG = G - G.mean(axis=1, keepdims=True)
    cov_theta_g = dX @ dG.T / (nensemble - 1)
    cov_g_g = dG @ dG.T / (nensemble - 1)

    A = cov_g_g + noise_covariance + tikhonov * np.eye(y.size)
    increments = _solve_symmetric(A, perturbed - G)

    return X + cov_theta_g @ increments


class EnsembleKalmanInversion:
    """
    Calibration of an inverse problem by Ensemble Kalman Inversion.

    On construction, the initial ensemble is drawn from the priors and recorded as
    the iteration 0 summary. Each call to `iterate` appends one summary per
    iteration.

    Parameters
    ----------
    inverse_problem : InverseProblem
        Problem to solve. The ensemble size is that of its simulation.
    noise_covariance : float or array_like, optional
        Covariance of the observation noise: a scalar variance, a vector of
        variances or a full matrix.
    resampler : Resampler, optional
        Policy of repairing failed ensemble members.
    rng : int or Generator, optional
        Seed or generator used for all the random draws.
    tikhonov : float, optional
        Regularization of the Kalman gain.
    initial_ensemble : array_like, shape (Nparams, Nensemble), optional
        Unconstrained initial ensemble. By default, it is drawn from the priors.

    Attributes
    ----------
    iteration : int
        Number of completed iterations.
    iteration_summaries : list of IterationSummary
        History of the calibration, indexed by iteration.
    observations : ndarray
        Observation vector ``y``.
    """

    def __init__(
        self,
        inverse_problem: InverseProblem,
        noise_covariance: ArrayLike = 1.0,
        resampler: Resampler | None = None,
        rng: int | np.random.Generator | None = None,
        tikhonov: float = 0.0,
        initial_ensemble: ArrayLike | None = None,
    ):
        nensemble = inverse_problem.ensemble_size
        if nensemble < 2:
            raise ConfigurationError(
                f"Ensemble Kalman inversion needs at least 2 members (got {nensemble})"
            )
        if tikhonov < 0:
            raise ConfigurationError(f"Negative regularization {tikhonov}")

        self.inverse_problem = inverse_problem
        self.resampler = Resampler() if resampler is None else resampler
        self.rng = make_rng(rng)
        self.tikhonov = tikhonov
        self.observations = observation_map(inverse_problem)
        if not np.all(np.isfinite(self.observations)):
            raise ConfigurationError("Observations contain non-finite values")
        self.noise_covariance = noise_covariance_matrix(
            noise_covariance, self.observations.size
        )
        self._forward_map = traced(
            functools.partial(inverting_forward_map, inverse_problem)
        )

        free_parameters = inverse_problem.free_parameters
        if initial_ensemble is None:
            X = free_parameters.sample_unconstrained(self.rng, nensemble)
        else:
            X = np.asarray(initial_ensemble, dtype=float)
            if X.shape != (len(free_parameters), nensemble):
                raise ConfigurationError(
                    f"Initial ensemble of shape {X.shape} does not match "
                    f"{len(free_parameters)} parameters and {nensemble} members"
                )

        self.iteration = 0
        initial = IterationSummary.from_ensemble(free_parameters, X, 0)
        self.iteration_summaries = [initial]

    @property
    def free_parameters(self) -> FreeParameters:
        return self.inverse_problem.free_parameters

    @property
    def ensemble_size(self) -> int:
        return self.inverse_problem.ensemble_size

    @property
    def unconstrained_parameters(self) -> NDArray[np.float64]:
        """Writable copy of the current unconstrained ensemble."""
        return self.iteration_summaries[-1].unconstrained_parameters.copy()

    @property
    def forward_map_calls(self) -> int:
        return self._forward_map.call_count

    @property
    def forward_map_time(self) -> timedelta:
        return self._forward_map.elapsed_time

    def evaluate(self, X: ArrayLike) -> NDArray[np.float64]:
        """Evaluate the forward map on unconstrained parameters."""
        return self._forward_map(X)

    def step(self) -> IterationSummary:
        """
        Perform a single iteration.

        Returns
        -------
        IterationSummary
            Summary of the new ensemble.

        Raises
        ------
        FatalCalibrationFailure
            If the ensemble cannot be repaired. No summary is recorded then.
        """
        X = self.unconstrained_parameters
        G = self.evaluate(X)

        resample(self.resampler, X, G, self)

        X_next = ensemble_kalman_update(
            X, G, self.observations, self.noise_covariance, self.rng, self.tikhonov
        )

        summary = IterationSummary.from_ensemble(
            self.free_parameters, X_next, self.iteration + 1
        )
        self.iteration_summaries.append(summary)
        self.iteration += 1

        mismatch = np.linalg.norm(G.mean(axis=1) - self.observations)
        logger.debug("Iteration %d, output mismatch %g", self.iteration, mismatch)
        return summary

    def iterate(self, iterations: int = 1, show_progress: bool = True) -> None:
        """
        Perform several iterations.

        Parameters
        ----------
        iterations : int, optional
            Number of iterations.
        show_progress : bool, optional
            Whether to display a progress bar.
        """
        for _ in tqdm(range(iterations), desc="EKI", disable=not show_progress):
            self.step()

    def __str__(self) -> str:
        return "\n".join(
            [
                f"EnsembleKalmanInversion with {self.ensemble_size} particles",
                f"├── iteration: {self.iteration}",
                f"├── free_parameters: {self.free_parameters.names}",
                f"├── resampler: {self.resampler}",
                f"└── forward map calls: {self.forward_map_calls}",
            ]
        )


def iterate(
    eki: EnsembleKalmanInversion, iterations: int = 1, show_progress: bool = True
) -> None:
    """
    Advance the calibration by `iterations` steps.

    See `EnsembleKalmanInversion.iterate`.
    """
    eki.iterate(iterations, show_progress=show_progress)
