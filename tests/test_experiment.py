import os

import pytest

from probit_ep import experiment
from probit_ep.experiment import run_run


def test_run_run_metrics() -> None:
    res = run_run(n_samples=12, seed=4, n_its=4)
    assert set(res.keys()) == {
        "x_mse", "x_nlpd", "x_coverage", "y_brier", "y_nlpd", "time", "memory",
        "n_iters", "last_delta"}
    assert 0.0 <= res["x_coverage"] <= 1.0
    assert 0.0 <= res["y_brier"] <= 1.0
    assert res["y_nlpd"] > 0.0
    assert res["n_iters"] == 4
    assert res["last_delta"] < float("inf")


def test_run_run_returns_graph() -> None:
    res = run_run(n_samples=5, seed=1, n_its=2, return_fg=True)
    assert set(res["marginals"].keys()) == {f"x_{t}" for t in range(6)}
    assert ("probit__x_3", "x_3") in res["messages"]
    assert res["sim"].y.shape == (5,)


def test_run_run_to_convergence() -> None:
    res = run_run(n_samples=6, seed=1, n_its=100, cvg_tol=1e-8)
    assert res["n_iters"] < 100
    assert res["last_delta"] < 1e-8


def test_run_run_saves_figure(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(experiment, "FIG_DIR", str(tmp_path))
    run_run(
        n_samples=5, seed=7, n_its=2, job_name="fig_test",
        FINAL_PLOTS=True, SHOW_FIGURES=False, PLOT_TITLE=True)
    assert os.path.exists(tmp_path / "fig_test_7_posterior.pdf")


def test_run_run_needs_an_iteration() -> None:
    with pytest.raises(ValueError):
        run_run(n_samples=5, n_its=0)


def test_run_run_synchronous_with_few_iterations() -> None:
    res = run_run(n_samples=12, seed=4, n_its=4, schedule="synchronous")
    assert res["n_iters"] == 4
    assert 0.0 <= res["x_coverage"] <= 1.0
    assert res["y_nlpd"] > 0.0
