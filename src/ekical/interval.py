from typing import NamedTuple

import numpy as np
from numpy.typing import ArrayLike, NDArray


class Interval(NamedTuple):
    lower: float
    upper: float

    @property
    def length(self) -> float:
        return self.upper - self.lower

    def __str__(self) -> str:
        return f"[{self.lower}, {self.upper}]"

    def __contains__(self, x) -> bool:
        return self.lower <= x <= self.upper

    def interior(self, x: ArrayLike) -> NDArray[np.float64]:
        """
        Clip values to the open interval.

        Values on or outside the boundary are moved to the nearest floating point
        number strictly inside the interval.

        Parameters
        ----------
        x : array_like
            Values to clip.

        Returns
        -------
        ndarray
            Clipped values.
        """
        lo = np.nextafter(self.lower, self.upper)
        hi = np.nextafter(self.upper, self.lower)
        return np.clip(x, lo, hi)
