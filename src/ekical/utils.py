from __future__ import annotations

import functools
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from threading import Lock
from typing import ParamSpec, TypeVar

import numpy as np


def make_rng(seed: int | np.random.Generator | None = None) -> np.random.Generator:
    """
    Create a dedicated random number generator.

    All the stochastic parts of the calibration draw from an explicitly passed
    generator, so that the global `numpy.random` state is never used.

    Parameters
    ----------
    seed : int or Generator, optional
        Seed of the new generator. If a `numpy.random.Generator` is passed, it is
        returned unchanged.

    Returns
    -------
    Generator
        Random number generator.
    """
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


class stopwatch:
    """
    Context manager capturing time elapsed during the execution inside it.

    Attributes
    ----------
    elapsed_time : timedelta
        Time spend inside the context

    Examples
    --------
    >>> with stopwatch() as s:
    ...     pass
    >>> s.elapsed_time
    datetime.timedelta(...)
    """

    def __enter__(self):
        self.start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        self.end = time.monotonic()
        diff_sec = self.end - self.start
        self.elapsed_time = timedelta(seconds=diff_sec)


_P = ParamSpec("_P")
_T = TypeVar("_T")


class traced:
    """
    Decorator tracking number of calls and time elapsed during them.

    Used to report how many forward map evaluations a calibration needed, and how
    much time the simulation took. Time spent outside the wrapped function call
    (locking overhead etc.) is not included in `elapsed_time`.

    Parameters
    ----------
    fun : callable
        Function to decorate.

    Attributes
    ----------
    call_count : int
        Number of times the function was called.
    elapsed_time : timedelta
        Time spend during calls to the wrapped function.
    """

    def __init__(self, fun: Callable[_P, _T]):
        self._fun = fun
        self.call_count = 0
        self.elapsed_time = timedelta(seconds=0)
        self._lock = Lock()
        # preserve function metadata
        functools.update_wrapper(self, fun)

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs):
        with stopwatch() as s:
            result = self._fun(*args, **kwargs)

        with self._lock:
            self.call_count += 1
            self.elapsed_time += s.elapsed_time

        return result


def zip_to_dict(names: Iterable[str], values: Iterable[_T]) -> dict[str, _T]:
    """
    Combine sequences of names and values into a dict.

    Parameters
    ----------
    names : iterable of str
        Sequence of keys.
    values : iterable
        Sequence of values.

    Returns
    -------
    dict
        Dictionary of (k, v) pairs from the two passed sequences.
    """
    return dict(zip(names, values, strict=True))
