"""
Detection and repair of failed ensemble members.

A member fails if its forward map output contains a non-finite value, e.g. because
the simulation diverged. Before the Kalman update, failed members are replaced by
parameters drawn from a Gaussian fitted to the current ensemble, and the forward map
is re-evaluated for them.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from ekical.errors import (
    ConfigurationError,
    FatalCalibrationFailure,
    NumericalFailureWarning,
)

if TYPE_CHECKING:
    from ekical.eki import EnsembleKalmanInversion

logger = logging.getLogger(__name__)


def column_has_nan(G: NDArray) -> NDArray[np.bool_]:
    """
    Find ensemble members with non-finite output.

    Parameters
    ----------
    G : ndarray, shape (output_size, Nensemble)
        Forward map output.

    Returns
    -------
    ndarray of bool, shape (Nensemble,)
        ``True`` for columns containing at least one NaN or infinite value.
    """
    return ~np.all(np.isfinite(G), axis=0)


def _gaussian(X: NDArray):
    mean = X.mean(axis=1)
    cov = np.atleast_2d(np.cov(X))
    return stats.multivariate_normal(mean, cov, allow_singular=True)


@dataclass(frozen=True)
class FullEnsembleDistribution:
    """Gaussian fitted to all the members of the ensemble, failed or not."""

    def fit_distribution(self, X: NDArray, failed: NDArray[np.bool_]):
        return _gaussian(X)


@dataclass(frozen=True)
class SuccessfulEnsembleDistribution:
    """
    Gaussian fitted to the members of the ensemble whose output is finite.

    At least two successful members are needed to estimate the covariance.
    """

    def fit_distribution(self, X: NDArray, failed: NDArray[np.bool_]):
        successful = X[:, ~failed]
        if successful.shape[1] < 2:
            raise FatalCalibrationFailure(
                f"Cannot fit resampling distribution to {successful.shape[1]} "
                f"successful ensemble member(s)"
            )
        return _gaussian(successful)


ResamplingDistribution: TypeAlias = (
    FullEnsembleDistribution | SuccessfulEnsembleDistribution
)


@dataclass(frozen=True)
class Resampler:
    """
    Policy of repairing ensembles with failed members.

    Attributes
    ----------
    acceptable_failure_fraction : float
        Largest fraction of failed members that can be repaired. If more members
        fail, the calibration fails.
    only_failed_particles : bool
        If ``True``, only failed members are replaced; otherwise the whole ensemble
        is redrawn whenever `resample` is called.
    distribution : FullEnsembleDistribution or SuccessfulEnsembleDistribution
        Distribution from which the replacements are drawn.
    max_attempts : int
        Number of times a replacement is redrawn if its output is still non-finite.
    """

    acceptable_failure_fraction: float = 0.5
    only_failed_particles: bool = True
    distribution: ResamplingDistribution = FullEnsembleDistribution()
    max_attempts: int = 10

    def __post_init__(self):
        if not 0 <= self.acceptable_failure_fraction <= 1:
            raise ConfigurationError(
                f"Acceptable failure fraction must lie in [0, 1] "
                f"(got {self.acceptable_failure_fraction})"
            )
        if not isinstance(
            self.distribution, FullEnsembleDistribution | SuccessfulEnsembleDistribution
        ):
            raise ConfigurationError(f"Unknown distribution: {self.distribution!r}")
        if self.max_attempts < 1:
            raise ConfigurationError(f"Invalid number of attempts: {self.max_attempts}")


def _draw(dist, rng: np.random.Generator, nparams: int, n: int) -> NDArray:
    sample = dist.rvs(size=n, random_state=rng)
    return np.reshape(sample, (n, nparams)).T


def resample(
    resampler: Resampler, X: NDArray, G: NDArray, eki: EnsembleKalmanInversion
) -> None:
    """
    Replace failed ensemble members.

    `X` and `G` are modified in place. Columns that are not resampled are left
    untouched.

    Parameters
    ----------
    resampler : Resampler
        Resampling policy.
    X : ndarray, shape (Nparams, Nensemble)
        Unconstrained parameter ensemble.
    G : ndarray, shape (output_size, Nensemble)
        Forward map output of the ensemble.
    eki : EnsembleKalmanInversion
        Calibration providing the forward map and the source of randomness.

    Raises
    ------
    FatalCalibrationFailure
        If too many members failed, the resampling distribution cannot be fitted,
        or replacements keep failing after ``resampler.max_attempts`` draws. In the
        first two cases, `X` and `G` are not modified.

    Warns
    -----
    NumericalFailureWarning
        If some members failed and are being replaced.
    """
    failed = column_has_nan(G)
    nfailed = int(failed.sum())
    nensemble = G.shape[1]

    failure_fraction = nfailed / nensemble
    if failure_fraction > resampler.acceptable_failure_fraction:
        raise FatalCalibrationFailure(
            f"{nfailed} of {nensemble} ensemble members failed, more than the "
            f"acceptable fraction {resampler.acceptable_failure_fraction}"
        )

    targets = failed if resampler.only_failed_particles else np.ones_like(failed)
    pending = np.flatnonzero(targets)
    if pending.size == 0:
        return

    dist = resampler.distribution.fit_distribution(X, failed)

    if nfailed > 0:
        msg = f"{nfailed} of {nensemble} ensemble members produced non-finite output"
        warnings.warn(msg, NumericalFailureWarning, stacklevel=2)

    logger.info("Resampling %d of %d ensemble members", pending.size, nensemble)

    for attempt in range(resampler.max_attempts):
        X_new = _draw(dist, eki.rng, X.shape[0], pending.size)
        G_new = eki.evaluate(X_new)[:, : pending.size]

        X[:, pending] = X_new
        G[:, pending] = G_new

        pending = pending[column_has_nan(G_new)]
        if pending.size == 0:
            return
        logger.debug(
            "Attempt %d: %d resampled members still failing", attempt + 1, pending.size
        )

    raise FatalCalibrationFailure(
        f"Resampled ensemble members {pending.tolist()} still fail "
        f"after {resampler.max_attempts} attempts"
    )
