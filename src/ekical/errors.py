class CalibrationError(Exception):
    """Base class of errors raised during calibration."""


class ConfigurationError(CalibrationError, ValueError):
    """
    Malformed calibration setup.

    Raised before any simulation is run, e.g. when more parameter sets than ensemble
    members are supplied, or the noise covariance does not match the output size.
    """


class FatalCalibrationFailure(CalibrationError, RuntimeError):
    """
    Ensemble could not be repaired.

    The current iteration is abandoned and no iteration summary is recorded. The
    engine stays in its last valid state, so the caller may adjust the resampling
    configuration and try again.
    """


class NumericalFailureWarning(RuntimeWarning):
    """Some ensemble members produced non-finite output and had to be resampled."""
