import warnings
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ekical.eki import EnsembleKalmanInversion
from ekical.errors import ConfigurationError
from ekical.inverse_problem import InverseProblem
from ekical.resampling import (
    FullEnsembleDistribution,
    Resampler,
    ResamplingDistribution,
    SuccessfulEnsembleDistribution,
)
from ekical.utils import stopwatch

_DEFAULTS: dict[str, Any] = {
    "eki.noise_covariance": 1.0,
    "eki.tikhonov": 0.0,
    "eki.seed": None,
    "eki.show_progress": False,
    "resampler.acceptable_failure_fraction": 0.5,
    "resampler.only_failed_particles": True,
    "resampler.distribution": "full",
    "resampler.max_attempts": 10,
}

_KNOWN_PARAMS = {"eki.iterations", *_DEFAULTS}


@dataclass(frozen=True)
class CalibrationResult:
    """
    Outcome of the calibration.

    Attributes
    ----------
    params : dict
        Mean of the final parameter ensemble.
    model_calls : int
        Number of forward map evaluations, each running the whole ensemble.
    total_time : timedelta
        Time taken by the calibration.
    model_time : timedelta
        Time spent evaluating the forward map.
    eki : EnsembleKalmanInversion
        Calibration state, including the history of the ensemble.
    """

    params: dict[str, float]
    model_calls: int
    total_time: timedelta
    model_time: timedelta
    eki: EnsembleKalmanInversion


def _choose_distribution(name: str) -> ResamplingDistribution:
    match name:
        case "full":
            return FullEnsembleDistribution()
        case "successful":
            return SuccessfulEnsembleDistribution()
        case _:
            raise ConfigurationError(f"Unknown resampling distribution: '{name}'")


def _check_params(config: dict[str, Any]) -> None:
    for key in config:
        if key.startswith(("eki.", "resampler.")) and key not in _KNOWN_PARAMS:
            warnings.warn(f"Unknown parameter: '{key}'", stacklevel=3)


def build_resampler(config: dict[str, Any]) -> Resampler:
    """
    Create a resampler from configuration parameters.

    Parameters
    ----------
    config : dict
        Configuration, see `solve_eki`. Missing parameters take default values.

    Returns
    -------
    Resampler
        Configured resampler.
    """
    settings = _DEFAULTS | config
    return Resampler(
        acceptable_failure_fraction=settings["resampler.acceptable_failure_fraction"],
        only_failed_particles=settings["resampler.only_failed_particles"],
        distribution=_choose_distribution(settings["resampler.distribution"]),
        max_attempts=settings["resampler.max_attempts"],
    )


def solve_eki(problem: InverseProblem, config: dict[str, Any]) -> CalibrationResult:
    """
    Calibrate an inverse problem using Ensemble Kalman Inversion.

    Parameters
    ----------
    problem : InverseProblem
        Problem to solve.

    config : dict
        Configuration parameters of the calibration. Currently supported parameters:

        - 'eki.iterations': number of iterations
        - 'eki.noise_covariance' (optional): scalar, vector of variances or matrix,
          1 by default
        - 'eki.tikhonov' (optional): regularization of the Kalman gain, 0 by default
        - 'eki.seed' (optional): seed of the random number generator
        - 'eki.show_progress' (optional): display a progress bar, ``False`` by
          default
        - 'resampler.acceptable_failure_fraction' (optional): largest fraction of
          failed ensemble members that is repaired, 0.5 by default
        - 'resampler.only_failed_particles' (optional): ``True`` by default
        - 'resampler.distribution' (optional): 'full' (default) or 'successful'
        - 'resampler.max_attempts' (optional): 10 by default

    Returns
    -------
    CalibrationResult
        Mean of the final ensemble and runtime statistics.

    Raises
    ------
    ConfigurationError
        If the configuration is invalid.
    FatalCalibrationFailure
        If the ensemble cannot be repaired after simulation failures.

    Warns
    -----
    UserWarning
        If the configuration contains unknown parameters.
    """
    _check_params(config)
    if "eki.iterations" not in config:
        raise ConfigurationError("Missing required parameter 'eki.iterations'")

    settings = _DEFAULTS | config

    with stopwatch() as total:
        eki = EnsembleKalmanInversion(
            problem,
            noise_covariance=settings["eki.noise_covariance"],
            resampler=build_resampler(config),
            rng=settings["eki.seed"],
            tikhonov=settings["eki.tikhonov"],
        )
        show_progress = settings["eki.show_progress"]
        eki.iterate(settings["eki.iterations"], show_progress=show_progress)
        params = eki.iteration_summaries[-1].mean_parameters()

    return CalibrationResult(
        params,
        eki.forward_map_calls,
        total_time=total.elapsed_time,
        model_time=eki.forward_map_time,
        eki=eki,
    )
