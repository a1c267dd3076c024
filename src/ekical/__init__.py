from .interval import Interval
from .calibration import CalibrationResult, solve_eki
from .eki import EnsembleKalmanInversion, IterationSummary, iterate
from .errors import (
    CalibrationError,
    ConfigurationError,
    FatalCalibrationFailure,
    NumericalFailureWarning,
)
from .inverse_problem import (
    ConcatenatedOutputMap,
    InverseProblem,
    VectorNormMap,
    forward_map,
    forward_run,
    inverting_forward_map,
    observation_map,
    observation_map_variance_across_time,
)
from .observations import Observation, RescaledZScore, Transformation, ZScore
from .parameters import FreeParameters, expand_parameters
from .priors import LogNormal, Normal, ScaledLogitNormal, lognormal_with_mean_std
from .resampling import (
    FullEnsembleDistribution,
    Resampler,
    SuccessfulEnsembleDistribution,
    column_has_nan,
    resample,
)
from .simulation import EnsembleSimulation, TimeSeriesCollector

__all__ = [
    "Interval",
    "CalibrationResult",
    "solve_eki",
    "EnsembleKalmanInversion",
    "IterationSummary",
    "iterate",
    "CalibrationError",
    "ConfigurationError",
    "FatalCalibrationFailure",
    "NumericalFailureWarning",
    "ConcatenatedOutputMap",
    "InverseProblem",
    "VectorNormMap",
    "forward_map",
    "forward_run",
    "inverting_forward_map",
    "observation_map",
    "observation_map_variance_across_time",
    "Observation",
    "RescaledZScore",
    "Transformation",
    "ZScore",
    "FreeParameters",
    "expand_parameters",
    "LogNormal",
    "Normal",
    "ScaledLogitNormal",
    "lognormal_with_mean_std",
    "FullEnsembleDistribution",
    "Resampler",
    "SuccessfulEnsembleDistribution",
    "column_has_nan",
    "resample",
    "EnsembleSimulation",
    "TimeSeriesCollector",
]
