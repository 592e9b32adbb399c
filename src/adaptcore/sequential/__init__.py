"""Adaptive sequential designs for normally distributed statistics.

This package implements two families of adaptive group sequential designs
built on conditional Type I error (conditional rejection probability):

* Locally efficient designs, whose working test is the SPRT line
  ``xi + rho * t / 2`` and which approximate the fixed sample size design
  for effect sizes near ``min_effect_size``
* Globally efficient designs, whose working test is a Bayes-optimal group
  sequential test over a basic schedule of analyses

In both, the accumulated statistic follows Brownian motion in information
time with drift equal to the effect size. The number and timing of analyses
need not be fixed in advance; the significance level is preserved by handing
the conditional Type I error from one stage to the next.
"""

from adaptcore.sequential.schema import (
    AnalysisResult,
    DecisionRecord,
    DecisionState,
    Design,
    EstimateResult,
    PowerResult,
    SampleSizeResult,
    WorkingTest,
)
from adaptcore.sequential.numerics import BisectionResult, ConvergenceError, bisect
from adaptcore.sequential.local import adaptive_analysis_norm_local
from adaptcore.sequential.working_test import ConditionalErrorFunction, build_working_test
from adaptcore.sequential.global_design import adaptive_analysis_norm_global
from adaptcore.sequential.estimation import estimate_effect
from adaptcore.sequential.sample_size import (
    compute_power_global,
    compute_power_local,
    compute_sample_size_global,
    compute_sample_size_local,
)
from adaptcore.sequential.simulate import BrownianSimConfig, empirical_rejection_rate, simulate_brownian_paths
