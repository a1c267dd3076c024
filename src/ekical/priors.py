"""
Prior distributions of free parameters.

The ensemble Kalman update is linear, so it operates on an unconstrained
representation of the parameters, in which every prior is Gaussian. Each prior
provides the transform between this space and the space of physical parameter
values. For bounded priors the inverse transform maps the whole real line into the
declared bounds, so updated parameters can never leave them.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import special

from ekical.errors import ConfigurationError
from ekical.interval import Interval


class Prior(ABC):
    """
    Base class of prior distributions.

    A prior is a normal distribution ``N(mean, std)`` in the unconstrained space,
    pushed forward into the constrained space by `to_constrained`.
    """

    mean: float
    std: float

    @abstractmethod
    def to_unconstrained(self, x: ArrayLike) -> NDArray[np.float64]:
        """
        Map physical parameter values to the unconstrained space.

        Parameters
        ----------
        x : array_like
            Parameter values.

        Returns
        -------
        ndarray
            Corresponding unconstrained values.
        """

    @abstractmethod
    def to_constrained(self, z: ArrayLike) -> NDArray[np.float64]:
        """
        Map unconstrained values to physical parameter values.

        Parameters
        ----------
        z : array_like
            Unconstrained values.

        Returns
        -------
        ndarray
            Corresponding parameter values.
        """

    def sample_unconstrained(
        self, rng: np.random.Generator, size: int | None = None
    ) -> NDArray[np.float64]:
        """
        Draw samples in the unconstrained space.

        Parameters
        ----------
        rng : Generator
            Source of randomness.
        size : int, optional
            Number of samples.

        Returns
        -------
        ndarray
            Samples of the underlying normal distribution.
        """
        return rng.normal(self.mean, self.std, size=size)

    def sample(
        self, rng: np.random.Generator, size: int | None = None
    ) -> NDArray[np.float64]:
        """Draw samples of physical parameter values."""
        return self.to_constrained(self.sample_unconstrained(rng, size))


def _check_std(std: float) -> None:
    if not std > 0:
        raise ConfigurationError(f"Standard deviation must be positive (got {std})")


@dataclass(frozen=True)
class Normal(Prior):
    """Normal prior, for parameters with unbounded support."""

    mean: float = 0.0
    std: float = 1.0

    def __post_init__(self):
        _check_std(self.std)

    def to_unconstrained(self, x):
        return np.asarray(x, dtype=float)

    def to_constrained(self, z):
        return np.asarray(z, dtype=float)


@dataclass(frozen=True)
class LogNormal(Prior):
    """
    Log-normal prior, for positive parameters.

    Attributes
    ----------
    mean : float
        Mean of the logarithm of the parameter.
    std : float
        Standard deviation of the logarithm of the parameter.
    """

    mean: float = 0.0
    std: float = 1.0

    def __post_init__(self):
        _check_std(self.std)

    def to_unconstrained(self, x):
        return np.log(x)

    def to_constrained(self, z):
        return np.exp(z)


def lognormal_with_mean_std(mean: float, std: float) -> LogNormal:
    """
    Build a log-normal prior with given mean and standard deviation.

    Parameters
    ----------
    mean : float
        Mean of the parameter (not of its logarithm), must be positive.
    std : float
        Standard deviation of the parameter.

    Returns
    -------
    LogNormal
        Prior whose moments match the specified values.

    Examples
    --------
    >>> prior = lognormal_with_mean_std(2.0, 0.5)
    >>> round(math.exp(prior.mean + prior.std**2 / 2), 6)
    2.0
    """
    if not mean > 0:
        raise ConfigurationError(f"Mean of log-normal prior must be positive ({mean})")
    k = (std / mean) ** 2 + 1
    return LogNormal(mean=math.log(mean / math.sqrt(k)), std=math.sqrt(math.log(k)))


@dataclass(frozen=True)
class ScaledLogitNormal(Prior):
    """
    Logit-normal prior scaled to the interval ``bounds``.

    Parameter value is ``lower + (upper - lower) * expit(z)``, where ``z`` is normally
    distributed. Values are kept strictly inside the bounds.

    Attributes
    ----------
    bounds : Interval
        Support of the distribution.
    mean : float
        Mean of the unconstrained variable.
    std : float
        Standard deviation of the unconstrained variable.
    """

    bounds: Interval = Interval(0.0, 1.0)
    mean: float = 0.0
    std: float = 1.0

    def __post_init__(self):
        _check_std(self.std)
        lower, upper = self.bounds
        if not lower < upper:
            raise ConfigurationError(f"Empty prior support {Interval(lower, upper)}")
        # accept plain tuples
        object.__setattr__(self, "bounds", Interval(lower, upper))

    def to_unconstrained(self, x):
        scaled = (np.asarray(x, dtype=float) - self.bounds.lower) / self.bounds.length
        return special.logit(scaled)

    def to_constrained(self, z):
        x = self.bounds.lower + self.bounds.length * special.expit(z)
        return self.bounds.interior(x)
