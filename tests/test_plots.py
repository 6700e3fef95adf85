import numpy as np
import torch
from matplotlib import pyplot as plt

from probit_ep.plots import (
    posterior_band_plot, convergence_plot, cov_sample_plot, cov_diag_plot)


def test_posterior_band_plot() -> None:
    fig, ax = plt.subplots()
    m = torch.linspace(-1, 1, 10)
    v = torch.full((10,), 0.25)
    out = posterior_band_plot(
        m, v, truth=m + 0.1, obs=(m > 0).to(m.dtype), ax=ax)
    assert out is fig
    # posterior mean and truth
    assert len(ax.lines) == 2
    assert len(fig.axes) == 2
    plt.close(fig)


def test_convergence_plot_drops_inf() -> None:
    fig, ax = plt.subplots()
    convergence_plot([float("inf"), 0.5, 0.1, 0.01], ax=ax)
    x, y = ax.lines[0].get_data()
    assert np.allclose(x, [1, 2, 3])
    assert np.allclose(y, [0.5, 0.1, 0.01])
    plt.close(fig)


def test_cov_plots() -> None:
    fig, ax = plt.subplots()
    m = torch.zeros(5)
    cov = torch.eye(5)
    cov_sample_plot(m, cov, n_samples=4, ax=ax)
    assert len(ax.lines) == 4
    cov_diag_plot(m, cov, ax=ax)
    plt.close(fig)
