from matplotlib import pyplot as plt
from matplotlib.lines import Line2D
import numpy as np
from einops import asnumpy

from .gaussian import fake_samples_from_moments


def posterior_band_plot(
        m, v, truth=None, obs=None, ax=None, t=None,
        color='C0', n_sd=2.0, label="posterior", alpha=0.3):
    """
    Posterior mean per time step with a +/- n_sd band,
    optionally the true latent path (dashed) and binary observations
    (markers on a twin axis).
    """
    if ax is None:
        ax = plt.gca()
    m = asnumpy(m).reshape(-1)
    sd = asnumpy(v).reshape(-1) ** 0.5
    if t is None:
        t = np.arange(len(m))
    handles = []
    line, = ax.plot(t, m, color=color, label=f"{label} mean")
    handles.append(line)
    band = ax.fill_between(
        t, m - n_sd * sd, m + n_sd * sd,
        color=color, alpha=alpha, label=f"{label} $\\pm{n_sd:g}$ sd")
    handles.append(band)
    if truth is not None:
        truth = asnumpy(truth).reshape(-1)
        truth_line, = ax.plot(
            t[-len(truth):], truth, linestyle='dashed', color='black',
            label="ground truth")
        handles.append(truth_line)
    if obs is not None:
        obs = asnumpy(obs).reshape(-1)
        ax_y = ax.twinx()
        obs_handle = ax_y.scatter(
            t[-len(obs):], obs, marker='x', color='red', s=12,
            label="observations")
        ax_y.set_ylim(-0.1, 1.1)
        ax_y.set_yticks([0, 1])
        ax_y.set_ylabel("y")
        handles.append(obs_handle)
    ax.set_xlabel("t")
    ax.set_ylabel("x")
    ax.legend(handles=handles, loc='best')
    return ax.get_figure()


def convergence_plot(deltas, ax=None, **kwargs):
    """
    max change in marginal means per sweep, log scale.
    """
    if ax is None:
        ax = plt.gca()
    deltas = np.asarray([d for d in deltas if np.isfinite(d)])
    ax.semilogy(np.arange(1, len(deltas) + 1), deltas, marker='o', **kwargs)
    ax.set_xlabel("iteration")
    ax.set_ylabel("max |change in mean|")
    return ax.get_figure()


def sample_plot(ens, ax=None, color='red', lw=0.1, alpha_scale=1.0, **kwargs):
    ens = asnumpy(ens)
    full_D = ens.shape[1]
    # the alpha exponent here chosen by trial-and-error
    alpha = min(alpha_scale * ens.shape[0] ** -0.5, 1.0)
    if ax is None:
        ax = plt.gca()

    for line_data in ens:
        ax.plot(
            np.arange(full_D),
            line_data, color=color, alpha=alpha, lw=lw)
    # return legend handle for labeling
    return Line2D([0], [0], color=color, lw=1)


def cov_sample_plot(m, cov, n_samples=50, **kwargs):
    ens = fake_samples_from_moments(
        m, cov, n_samples=n_samples)
    return sample_plot(ens, **kwargs)


def cov_diag_plot(m, cov, ax=None, **kwargs):
    if ax is None:
        ax = plt.gca()
    m = asnumpy(m)
    cov = asnumpy(cov)
    stds = np.diagonal(cov)**0.5
    x = np.arange(len(m))
    er = ax.errorbar(x, m, yerr=stds*2, **kwargs)
    return er
