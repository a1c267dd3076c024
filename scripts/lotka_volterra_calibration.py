# ---
# jupyter:
#   jupytext:
#     text_representation:
#       extension: .py
#       format_name: percent
#       format_version: '1.3'
#       jupytext_version: 1.16.1
#   kernelspec:
#     display_name: Python 3 (ipykernel)
#     language: python
#     name: python3
# ---

# %% [markdown]
# Perfect model calibration: synthetic observations are generated by the model with
# known parameters, which are then recovered by Ensemble Kalman Inversion.

# %% jupyter={"source_hidden": true}
import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from ekical import (
    EnsembleKalmanInversion,
    EnsembleSimulation,
    FreeParameters,
    InverseProblem,
    Observation,
    Resampler,
    Transformation,
    ZScore,
    forward_map,
    lognormal_with_mean_std,
    observation_map,
    observation_map_variance_across_time,
)
from ekical.ode import ODE, solve

logging.basicConfig(level=logging.INFO)


# %%
@dataclass
class LotkaVolterra(ODE):
    a: float = 1.0
    b: float = 0.5
    c: float = 0.3
    d: float = 0.8

    state_vars: ClassVar = ("x", "y")
    derived_vars: ClassVar = ("total",)

    def rhs(self, t, state):
        x, y = state
        return [(self.a - self.b * y) * x, (self.c * x - self.d) * y]

    def derived(self, state):
        x, y = state
        return [x + y]


# %% [markdown]
# Generate the observations with the true parameters. Only the prey `x` and the total
# population are observed; the first few time points are skipped.

# %%
true_params = {"a": 1.0, "d": 0.8}
truth = LotkaVolterra(**true_params)

times = np.linspace(0, 10, num=51)
init = {"x": 2.0, "y": 1.0}
solution = solve(truth, [init["x"], init["y"]], times)

transformation = {
    name: Transformation(time=slice(5, None), normalization=ZScore())
    for name in ("x", "total")
}
observation = Observation(
    times,
    {"x": solution["x"], "total": solution["total"]},
    transformation=transformation,
    initial_state=init,
)

# %% [markdown]
# Calibrate `a` and `d`, using log-normal priors to keep them positive.

# %%
priors = {
    "a": lognormal_with_mean_std(1.2, 0.3),
    "d": lognormal_with_mean_std(0.6, 0.2),
}
free_parameters = FreeParameters(priors)

simulation = EnsembleSimulation(LotkaVolterra(), ensemble_size=20)
problem = InverseProblem(observation, simulation, free_parameters)
print(problem)

# %%
noise_variance = observation_map_variance_across_time(problem) + 1e-5

eki = EnsembleKalmanInversion(
    problem,
    noise_covariance=noise_variance,
    resampler=Resampler(acceptable_failure_fraction=0.2),
    rng=11111,
)
eki.iterate(10)

print(eki.iteration_summaries[-1])

# %% [markdown]
# Distance of the ensemble mean to the true parameters and of its output to the
# observations.

# %%
y = observation_map(problem)
theta_star = np.array([true_params[name] for name in free_parameters.names])

for summary in eki.iteration_summaries:
    mean = summary.ensemble_mean
    G = forward_map(problem, mean)
    param_distance = np.linalg.norm(mean - theta_star)
    output_distance = np.linalg.norm(G[:, 0] - y)
    print(f"{summary.iteration:3d}  {param_distance:10.4e}  {output_distance:10.4e}")
