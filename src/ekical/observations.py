from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from ekical.errors import ConfigurationError


@dataclass(frozen=True)
class ZScore:
    """
    Normalization subtracting the mean and dividing by the standard deviation.

    Unspecified statistics are computed from the observed data when the observation
    is created.
    """

    mean: float | None = None
    std: float | None = None

    def fitted(self, data: NDArray) -> ZScore:
        mean = float(np.nanmean(data)) if self.mean is None else self.mean
        std = float(np.nanstd(data)) if self.std is None else self.std
        # constant time series are only shifted
        return ZScore(mean, std if std > 0 else 1.0)

    def __call__(self, data: NDArray) -> NDArray:
        if self.mean is None or self.std is None:
            raise ValueError("ZScore statistics are not set")
        return (data - self.mean) / self.std


@dataclass(frozen=True)
class RescaledZScore:
    """`ZScore` normalization followed by multiplication by a constant."""

    scale: float
    zscore: ZScore = ZScore()

    def fitted(self, data: NDArray) -> RescaledZScore:
        return RescaledZScore(self.scale, self.zscore.fitted(data))

    def __call__(self, data: NDArray) -> NDArray:
        return self.scale * self.zscore(data)


Normalization: TypeAlias = ZScore | RescaledZScore


@dataclass(frozen=True)
class Transformation:
    """
    Transformation of a field time series into a vector of comparable values.

    Attributes
    ----------
    time : slice or sequence of int, optional
        Indices of time points used in the comparison. By default, all of them.
    normalization : ZScore or RescaledZScore, optional
        Normalization applied to the selected values.
    """

    time: slice | Sequence[int] | None = None
    normalization: Normalization | None = None

    def select(self, data: NDArray) -> NDArray:
        """Select the time points along the last axis of `data`."""
        if self.time is None:
            return data
        if isinstance(self.time, slice):
            return data[..., self.time]
        return data[..., list(self.time)]

    def fitted(self, data: NDArray) -> Transformation:
        """Compute unspecified normalization statistics from the observed data."""
        if self.normalization is None:
            return self
        normalization = self.normalization.fitted(self.select(data))
        return dataclasses.replace(self, normalization=normalization)

    def __call__(self, data: NDArray) -> NDArray:
        """
        Apply the transformation.

        Parameters
        ----------
        data : ndarray, shape (..., Nt)
            Time series, possibly for many ensemble members at once.

        Returns
        -------
        ndarray, shape (..., K)
            Selected and normalized values.
        """
        selected = self.select(np.asarray(data, dtype=float))
        if self.normalization is not None:
            selected = self.normalization(selected)
        return selected


@dataclass(frozen=True)
class Observation:
    """
    Observed time series of named fields.

    Attributes
    ----------
    times : ndarray, shape (Nt,)
        Observation times, strictly increasing. The first one is the initial time of
        the simulation.
    field_time_series : dict of ndarray, shape (Nt,)
        Observed values of each field.
    transformation : dict of Transformation
        Transformation of each field. Fields without explicitly specified
        transformation use all the time points without normalization.
    initial_state : dict of float, optional
        Initial values of simulation state variables. By default, first values of
        observed fields are used.
    """

    times: NDArray[np.float64]
    field_time_series: dict[str, NDArray[np.float64]]
    transformation: dict[str, Transformation] = field(default_factory=dict)
    initial_state: dict[str, float] | None = None

    def __post_init__(self):
        times = np.asarray(self.times, dtype=float)
        if times.ndim != 1 or times.size < 2:
            raise ConfigurationError(
                f"Observation times must be a 1D array with at least two points "
                f"(shape {times.shape})"
            )
        if np.any(np.diff(times) <= 0):
            raise ConfigurationError("Observation times are not strictly increasing")

        if not self.field_time_series:
            raise ConfigurationError("Observation contains no fields")

        series = {}
        for name, data in self.field_time_series.items():
            data = np.asarray(data, dtype=float)
            if data.ndim != 1:
                raise ConfigurationError(
                    f"Value of '{name}' is not one-dimensional (shape {data.shape})"
                )
            if data.size != times.size:
                raise ConfigurationError(
                    f"Length of '{name}' does not match the time axis "
                    f"({data.size} != {times.size})"
                )
            series[name] = data

        unknown = set(self.transformation) - set(series)
        if unknown:
            raise ConfigurationError(f"Transformation of unknown fields {unknown}")

        transformation = {
            name: self.transformation.get(name, Transformation()).fitted(data)
            for name, data in series.items()
        }

        object.__setattr__(self, "times", times)
        object.__setattr__(self, "field_time_series", series)
        object.__setattr__(self, "transformation", transformation)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self.field_time_series)

    def initial_value(self, name: str) -> float:
        """
        Return initial value of a simulation state variable.

        Raises
        ------
        ConfigurationError
            If the initial value is neither specified nor observed.
        """
        if self.initial_state is not None and name in self.initial_state:
            return self.initial_state[name]
        if name in self.field_time_series:
            return float(self.field_time_series[name][0])
        raise ConfigurationError(f"Unknown initial value of '{name}'")

    def transformed(self, series: Mapping[str, NDArray]) -> list[NDArray]:
        """
        Transform time series of all the observed fields.

        Parameters
        ----------
        series : mapping of str to ndarray, shape (..., Nt)
            Time series of (at least) the observed fields.

        Returns
        -------
        list of ndarray
            Transformed data of each field, in the order of `field_names`.
        """
        return [self.transformation[name](series[name]) for name in self.field_names]


def as_batch(observations: Observation | Sequence[Observation]) -> list[Observation]:
    """Return list of observations in a batch (a single one, if not batched)."""
    if isinstance(observations, Observation):
        return [observations]
    batch = list(observations)
    if not batch:
        raise ConfigurationError("Empty batch of observations")
    return batch


def observation_names(
    observations: Observation | Sequence[Observation],
) -> tuple[str, ...]:
    """
    Return names of observed fields.

    All the observations in a batch must observe the same fields.
    """
    batch = as_batch(observations)
    names = batch[0].field_names
    for obs in batch[1:]:
        if set(obs.field_names) != set(names):
            raise ConfigurationError(
                f"Observations in a batch observe different fields: "
                f"{names} != {obs.field_names}"
            )
    return names


def observation_times(observations: Observation | Sequence[Observation]) -> NDArray:
    """
    Return observation times.

    All the observations in a batch must be taken at the same times.
    """
    batch = as_batch(observations)
    times = batch[0].times
    for obs in batch[1:]:
        if obs.times.shape != times.shape or not np.allclose(obs.times, times):
            raise ConfigurationError("Observations in a batch have different times")
    return times
