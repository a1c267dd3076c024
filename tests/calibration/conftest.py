import numpy as np
import pytest

from ekical.eki import EnsembleKalmanInversion


def assert_close_to_truth(params, truth, epsilon):
    __tracebackhide__ = True

    difference = np.array([truth[p] - params[p] for p in truth])
    error = np.linalg.norm(difference)

    if error >= epsilon:
        msg = f"Solution not good enough, error {error} >= {epsilon}\n"
        msg += "Parameters:\n"
        msg += "\n".join(f"  {p}: {params[p]}, exact: {truth[p]}" for p in truth)
        raise AssertionError(msg)


@pytest.fixture()
def check_solution():
    return assert_close_to_truth


@pytest.fixture()
def eki(inverse_problem):
    return EnsembleKalmanInversion(inverse_problem, noise_covariance=0.01, rng=11111)


@pytest.fixture()
def batched_eki(batched_inverse_problem):
    return EnsembleKalmanInversion(
        batched_inverse_problem, noise_covariance=0.01, rng=11111
    )
