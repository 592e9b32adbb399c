import math

import numpy as np
import pytest
from scipy.stats import norm

from adaptcore.sequential import compute_power_local, compute_sample_size_local
from adaptcore.sequential.sample_size import fixed_sample_size, local_interim_power
from adaptcore.sequential.simulate import BrownianSimConfig, simulate_brownian_paths

RHO = -math.log(0.65)


def test_documented_sample_size_reaches_target_power():
    res = compute_sample_size_local(
        overall_sig_level=0.025,
        min_effect_size=RHO,
        effect_size=11.11 / 20.02,
        time=20.02,
        target_power=0.75,
    )
    assert res.converged
    assert not res.overpowered
    assert res.sample_size > 20.02
    assert res.power >= 0.75 - 1e-12
    assert res.power == pytest.approx(0.75, abs=1e-6)

    below = compute_power_local(
        overall_sig_level=0.025,
        min_effect_size=RHO,
        effect_size=11.11 / 20.02,
        time=20.02,
        final_time=res.sample_size - 1e-3,
    )
    assert below.power < 0.75


def test_power_without_interim_is_fixed_sample_power():
    res = compute_power_local(overall_sig_level=0.025, min_effect_size=1.0, effect_size=1.0, time=0.0, final_time=4.0)
    assert res.interim_power == 0.0
    assert res.power == pytest.approx(norm.cdf(norm.ppf(0.025) + 2.0), abs=1e-12)


def test_sample_size_without_interim_is_fss():
    res = compute_sample_size_local(min_effect_size=1.0, effect_size=0.5, time=0.0, target_power=0.8)
    assert res.sample_size == pytest.approx(fixed_sample_size(0.025, 0.8, 0.5), rel=1e-6)


def test_overpowered_short_circuit():
    res = compute_sample_size_local(min_effect_size=1.0, effect_size=1.0, time=200.0, target_power=0.8)
    assert res.overpowered
    assert res.sample_size == 200.0
    assert res.interim_power >= 0.8
    assert res.iterations == 0


def test_final_time_before_interim_is_replaced():
    res = compute_power_local(min_effect_size=1.0, effect_size=0.8, time=10.0, final_time=5.0)
    assert res.final_time == 10.0
    assert res.warnings
    assert res.power == res.interim_power


def test_power_increases_with_final_time():
    powers = [
        compute_power_local(min_effect_size=RHO, effect_size=0.5, time=10.0, final_time=n).power
        for n in (12.0, 20.0, 30.0, 50.0)
    ]
    assert all(b > a for a, b in zip(powers, powers[1:]))


def test_interim_power_matches_simulated_crossings():
    alpha, rho, mu, m = 0.025, 1.0, 0.8, 6.0
    xi0 = -math.log(alpha) / rho
    # fine monitoring approximates the continuous line crossing
    times = tuple(m * (i + 1) / 600 for i in range(600))
    paths = simulate_brownian_paths(BrownianSimConfig(times=times, drift=mu, n_paths=4000, seed=3))
    crossed = (paths >= xi0 + 0.5 * rho * np.asarray(times)).any(axis=1).mean()
    # discrete monitoring crosses slightly less often
    assert crossed <= local_interim_power(alpha, rho, mu, m) + 0.03
    assert crossed >= local_interim_power(alpha, rho, mu, m) - 0.08


def test_sample_size_validation():
    with pytest.raises(ValueError, match="positive"):
        compute_sample_size_local(effect_size=-0.5, time=1.0)
    with pytest.raises(ValueError, match=r"\(0, 1\)"):
        compute_sample_size_local(effect_size=0.5, target_power=1.0)
    with pytest.raises(ValueError, match="non-negative"):
        compute_power_local(effect_size=0.5, time=-1.0, final_time=2.0)
