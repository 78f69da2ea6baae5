import numpy as np
import pytest
from scipy.integrate import quad
from scipy.stats import gamma

from outbreak_mcmc.core.data import (
    add_convolutions,
    convolve_generations,
    discretise_gamma,
    make_data,
)
from outbreak_mcmc.core.errors import ConfigurationError


def slow_reference_weights(mean, std, max_delay):
    """
    Slow but precise reference implementation using quad.
    """
    shape = (mean / std) ** 2
    scale = std ** 2 / mean
    g = gamma(a=shape, scale=scale)

    w = np.zeros(max_delay, dtype=float)
    for d in range(1, max_delay + 1):
        def integrand(u):
            tri = 1.0 - abs(u - d)
            if tri < 0.0:
                return 0.0
            return tri * g.pdf(u)

        val, _ = quad(integrand, d - 1, d + 1, epsabs=1e-10, epsrel=1e-10, points=[d])
        w[d - 1] = val

    w /= w.sum()
    return w


def test_weights_sum_to_one():
    w = discretise_gamma(mean=5.0, std=2.5, max_delay=20)
    assert w.shape == (20,)
    assert np.all(w >= 0)
    assert abs(w.sum() - 1.0) < 1e-12


def test_weights_match_reference():
    w_fast = discretise_gamma(mean=6.0, std=3.0, max_delay=15, nquad=64)
    w_slow = slow_reference_weights(6.0, 3.0, 15)

    # They should be very close
    assert np.allclose(w_fast, w_slow, atol=5e-4)


def test_invalid_max_delay():
    with pytest.raises(ValueError):
        discretise_gamma(mean=10.0, std=5.0, max_delay=0)


def test_make_data_normalises_distributions():
    data = make_data(dates=[0, 1, 4], w_dens=[1, 2, 1])

    assert data.n_cases == 3
    assert np.allclose(data.w_dens, [0.25, 0.5, 0.25])
    # f defaults to w
    assert np.array_equal(data.f_dens, data.w_dens)
    # indexed by delay: no zero-day delay
    assert data.log_f_dens[0] == -np.inf
    assert np.isclose(data.log_f_dens[2], np.log(0.5))
    assert data.log_w_dens is None
    assert not data.has_dna and not data.has_contacts


def test_calendar_dates_become_day_offsets():
    data = make_data(dates=["2024-01-03", "2024-01-01", "2024-01-10"], w_dens=[1.0])
    assert data.dates.tolist() == [2, 0, 9]


def test_fractional_dates_rejected():
    with pytest.raises(ConfigurationError):
        make_data(dates=[0, 1.5], w_dens=[1.0])


def test_dna_requires_sequence_length():
    with pytest.raises(ConfigurationError):
        make_data(dates=[0, 1], w_dens=[1.0], dna_distances=[[0, 1], [1, 0]])


def test_dna_distances_must_be_square():
    with pytest.raises(ConfigurationError):
        make_data(dates=[0, 1], w_dens=[1.0], dna_distances=[[0, 1]], sequence_length=10)


def test_contacts_are_symmetrised():
    contacts = np.zeros((3, 3))
    contacts[0, 2] = 1
    contacts[1, 1] = 1
    data = make_data(dates=[0, 1, 2], w_dens=[1.0], contacts=contacts)

    assert data.contacts[2, 0] and data.contacts[0, 2]
    # self contacts are dropped
    assert not data.contacts[1, 1]
    assert np.count_nonzero(data.contacts) == 2


def test_convolutions():
    w = np.array([0.5, 0.5])
    log_w = convolve_generations(w, max_kappa=3)
    dens = np.exp(log_w)

    # one generation: delays 1 and 2
    assert np.allclose(dens[0, :3], [0.0, 0.5, 0.5])
    # two generations: delays 2, 3, 4
    assert np.allclose(dens[1, :5], [0.0, 0.0, 0.25, 0.5, 0.25])
    # every row is a distribution
    assert np.allclose(dens.sum(axis=1), 1.0)


def test_add_convolutions_only_extends():
    data = make_data(dates=[0, 3], w_dens=[0.5, 0.5], max_kappa=2)
    assert data.max_kappa == 2
    assert add_convolutions(data, 1) is data
    assert add_convolutions(data, 4).max_kappa == 4
