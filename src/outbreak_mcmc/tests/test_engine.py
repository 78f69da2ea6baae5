import numpy as np
import pandas as pd
import pytest
from pandas.testing import assert_frame_equal
from scipy.stats import expon, kstest

from outbreak_mcmc.core.binding import custom_moves
from outbreak_mcmc.core.config import McmcConfig
from outbreak_mcmc.core.data import make_data
from outbreak_mcmc.core.engine import ChainPhase, McmcEngine, run_chains, run_mcmc
from outbreak_mcmc.core.errors import ConfigurationError, LikelihoodError
from outbreak_mcmc.core.likelihoods import LikelihoodRegistry
from outbreak_mcmc.core.state import NO_ANCESTOR
from outbreak_mcmc.tests.helpers import DATES, FLAT_W, assert_time_ordered, only


def test_sampled_iterations(outbreak):
    result = run_mcmc(outbreak, McmcConfig(n_iter=100, sample_every=10, seed=1, find_imports=False))
    assert result.trace.iterations.tolist() == list(range(0, 101, 10))
    assert result.n_iter == 100
    assert not result.aborted


def test_burnin_is_not_recorded(outbreak):
    config = McmcConfig(n_iter=100, sample_every=10, burnin=30, seed=1, find_imports=False)
    result = run_mcmc(outbreak, config)
    assert result.trace.iterations.tolist() == list(range(30, 101, 10))


def test_trace_dataframe(outbreak):
    result = run_mcmc(outbreak, McmcConfig(n_iter=50, sample_every=10, seed=2, find_imports=False))
    df = result.to_dataframe()

    assert len(df) == 6
    assert list(df.columns[:8]) == ["step", "post", "like", "prior", "mu", "pi", "eps", "lambda"]
    for prefix in ("alpha", "t_inf", "kappa"):
        assert [c for c in df.columns if c.startswith(prefix + "_")] == [f"{prefix}_{i}" for i in range(1, 7)]
    assert np.allclose(df["post"], df["like"] + df["prior"])
    # the earliest case of the star tree has no ancestor
    assert df["alpha_1"].isna().iloc[0]
    assert df["alpha_2"].iloc[0] == 1
    assert df["alpha_2"].dtype == pd.Int64Dtype()


def test_initial_infection_times(outbreak):
    engine = McmcEngine(outbreak, McmcConfig(find_imports=False))
    # flat sampling delay: most likely delay is the first one
    assert engine.state.t_inf.tolist() == [d - 1 for d in DATES]
    assert engine.phase is ChainPhase.INITIALIZING


def test_same_seed_same_chain(outbreak):
    config = McmcConfig(n_iter=200, sample_every=20, seed=123, find_imports=False)
    first = run_mcmc(outbreak, config).to_dataframe()
    second = run_mcmc(outbreak, config).to_dataframe()
    assert_frame_equal(first, second)


def test_run_only_once(outbreak):
    engine = McmcEngine(outbreak, McmcConfig(n_iter=10, sample_every=5, find_imports=False))
    engine.run()
    assert engine.phase is ChainPhase.FINISHED
    with pytest.raises(RuntimeError):
        engine.run()


def test_invalid_inputs(outbreak):
    with pytest.raises(ConfigurationError):
        McmcEngine({"dates": DATES}, McmcConfig())
    with pytest.raises(ConfigurationError):
        McmcEngine(outbreak, McmcConfig(), likelihoods={"genetic": None})
    with pytest.raises(ConfigurationError):
        McmcEngine(outbreak, McmcConfig(init_tree=[-1, 0, 0, 5, 1, 3]))
    with pytest.raises(ConfigurationError):
        McmcConfig(sample_every=0)


def test_mu_samples_prior_without_genetic_data(outbreak):
    config = McmcConfig(
        n_iter=10000,
        sample_every=1,
        seed=7,
        mu_kernel="prior",
        prior_mu=1000.0,
        **only(move_mu=True),
    )
    result = run_mcmc(outbreak, config)
    mu = result.trace.values("mu")[1:]
    # independence proposals from the prior are always accepted here
    assert result.stats["mu"].acceptance_rate == 1.0
    _, p = kstest(mu, expon(scale=1 / 1000.0).cdf)
    assert p > 0.001


def test_disabled_move_leaves_field_unchanged(outbreak):
    config = McmcConfig(n_iter=200, sample_every=20, seed=3, move_t_inf=False, find_imports=False)
    result = run_mcmc(outbreak, config)
    t_inf = result.trace.values("t_inf")
    assert (t_inf == t_inf[0]).all()
    assert "t_inf" not in result.stats
    assert result.stats["alpha"].proposals > 0


def test_long_chain_keeps_invariants(outbreak):
    config = McmcConfig(n_iter=300, sample_every=1, seed=4, max_kappa=3, find_imports=False, paranoid=True)
    result = run_mcmc(outbreak, config)
    for sample in result.trace:
        assert_time_ordered(sample.state)
        assert np.isfinite(sample.post)


def outlier_data():
    n = len(DATES)
    dna = np.ones((n, n))
    np.fill_diagonal(dna, 0)
    # last case shares nothing with the others
    dna[5, :5] = 60
    dna[:5, 5] = 60
    return make_data(dates=DATES, w_dens=FLAT_W, dna_distances=dna, sequence_length=100)


def import_config(**kwargs):
    settings = dict(
        n_iter=200,
        sample_every=10,
        seed=5,
        init_mu=0.01,
        max_kappa=1,
        n_iter_import=100,
        sample_every_import=10,
        outlier_threshold=3.0,
        move_mu=False,
        move_kappa=False,
        move_swap_cases=False,
    )
    settings.update(kwargs)
    return McmcConfig(**settings)


def test_import_detection():
    engine = McmcEngine(outlier_data(), import_config())
    assert "find_imports" not in [m.name for m in engine.moves]
    result = engine.run()

    assert result.imports.tolist() == [5]
    assert "find_imports" not in result.stats
    # the preliminary run is not recorded; every sample comes after detection
    df = result.to_dataframe()
    assert df["step"].tolist() == list(range(0, 201, 10))
    assert df["alpha_6"].isna().all()
    assert result.n_iter == 200
    # counters only cover the recorded iterations
    assert result.stats["alpha"].proposals <= 200 * 4


def test_import_detection_longer_than_chain():
    result = run_mcmc(outlier_data(), import_config(n_iter=20, sample_every=5))
    assert result.imports.tolist() == [5]
    assert result.trace.iterations.tolist() == [0, 5, 10, 15, 20]
    assert result.to_dataframe()["alpha_6"].isna().all()


def test_error_keeps_partial_trace(outbreak):
    def nan_beyond(data, state):
        return float("nan") if state.mu > 2e-4 else 0.0

    config = McmcConfig(n_iter=1000, sample_every=1, seed=7, sd_mu=1e-4, **only(move_mu=True))
    engine = McmcEngine(outbreak, config, likelihoods=LikelihoodRegistry(genetic=nan_beyond))
    with pytest.raises(LikelihoodError) as exc:
        engine.run()

    partial = exc.value.result
    assert partial.aborted
    assert partial.trace is engine.trace
    assert len(engine.trace) == partial.n_iter + 1
    assert engine.phase is ChainPhase.FINISHED
    # the failed proposal was undone
    assert engine.state.mu <= 2e-4
    assert engine.state == engine.trace[-1].state


def test_keyboard_interrupt_keeps_trace(outbreak):
    counter = {"calls": 0}

    def stop_at_25(state):
        counter["calls"] += 1
        if counter["calls"] == 25:
            raise KeyboardInterrupt
        return state

    config = McmcConfig(n_iter=100, sample_every=10, seed=6, **only())
    result = run_mcmc(outbreak, config, moves=custom_moves(stop=stop_at_25))

    assert result.aborted
    assert result.n_iter == 24
    assert result.trace.iterations.tolist() == [0, 10, 20]


def test_run_chains_differ_by_seed(outbreak):
    config = McmcConfig(n_iter=100, sample_every=10, find_imports=False)
    results = run_chains(outbreak, config, seeds=[1, 2, 1])
    frames = [r.to_dataframe() for r in results]
    assert_frame_equal(frames[0], frames[2])
    assert not frames[0].equals(frames[1])
    assert all(r.state.alpha[np.argmin(r.state.t_inf)] == NO_ANCESTOR for r in results)
