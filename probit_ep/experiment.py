"""
Simulate, infer and score one run of EP on the probit random walk.
"""
import os
import time

import torch
from dotenv import load_dotenv
from memory_profiler import memory_usage

from .simulate import simulate_probit_random_walk
from .model import probit_ssm_graph, data_dict, var_name
from .algorithm import expectation_propagation_algorithm
from .dist_metrics import mse, gaussian_nlpd, coverage, brier_score

load_dotenv()

# Intermediate results we do not wish to version
LOG_DIR = os.getenv("LOG_DIR", "_logs")
# Outputs we wish to keep
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "outputs")
# Figures we wish to keep
FIG_DIR = os.getenv("FIG_DIR", "fig")


def run_run(
        ## process parameters
        n_samples=40,
        prior_mean=0.,
        prior_var=1.,
        process_var=1.,
        transition=1.,
        offset=0.,
        seed=2,
        ## inference params
        n_its=4,
        damping=0.0,
        schedule="sequential",
        inf_process_var=None,  # assumed process noise, defaults to truth
        cvg_tol=None,  # if set, run to convergence instead of n_its sweeps
        ## diagnostics
        job_name="probit_ssm",
        verbose=0,
        FINAL_PLOTS=False,
        SAVE_FIGURES=True,
        SHOW_FIGURES=True,
        PLOT_TITLE=False,
        return_fg=False,
    ):
    if verbose:
        print("==================")
        print(f"{job_name} seed {seed}")
        print("==================")
    if n_its < 1:
        raise ValueError(f"need at least one iteration, got {n_its}")
    if inf_process_var is None:
        inf_process_var = process_var
    sim = simulate_probit_random_walk(
        n_samples=n_samples,
        seed=seed,
        prior_mean=prior_mean,
        prior_var=prior_var,
        process_var=process_var,
        transition=transition,
        offset=offset,
    )
    data = data_dict(sim.y)

    peak_memory_start = memory_usage(max_usage=True)
    start_time = time.time()
    fg = probit_ssm_graph(
        n_samples,
        prior_mean=prior_mean,
        prior_var=prior_var,
        process_var=inf_process_var,
        transition=transition,
        offset=offset,
        damping=damping,
        schedule=schedule,
        verbose=verbose,
    )
    algo = expectation_propagation_algorithm(fg, "x")
    if verbose > 1:
        print(algo)
    if cvg_tol is None:
        messages = algo.init()
        marginals = {}
        deltas = []
        for i in range(n_its):
            deltas.append(algo.step(data, marginals, messages))
            if verbose:
                print(f"Iter {i+1}  --- max mean change {deltas[-1]:.3g}")
    else:
        deltas = algo.solve(data, n_iters=n_its, cvg_tol=cvg_tol)
        messages, marginals = algo.messages, algo.marginals
    elapsed_time = time.time() - start_time
    peak_memory_usage = memory_usage(max_usage=True) - peak_memory_start

    # x_0 is not simulated as part of the path we score against
    names = [var_name("x", t) for t in range(1, n_samples + 1)]
    m_x = torch.cat([marginals[k].mean() for k in names])
    v_x = torch.cat([marginals[k].var() for k in names])
    p_y = torch.stack([
        fg.get_factor_node(f"probit__{k}").predictive_probability(use_cavity=True)
        for k in names])
    # cavity predictive log probability of each observation
    log_Z = torch.stack([
        fg.get_factor_node(f"probit__{k}").get_log_normaliser() for k in names])

    if FINAL_PLOTS:
        from matplotlib import pyplot as plt
        from .plots import posterior_band_plot

        fig = plt.figure(figsize=(8, 3))
        ax = fig.add_subplot(1, 1, 1)
        posterior_band_plot(
            m_x, v_x, truth=sim.x, obs=sim.y, ax=ax,
            t=torch.arange(1, n_samples + 1).numpy())
        if PLOT_TITLE:
            ax.set_title(f"EP posterior, {n_its} iterations")
        if SAVE_FIGURES:
            os.makedirs(FIG_DIR, exist_ok=True)
            fig.savefig(f"{FIG_DIR}/{job_name}_{seed}_posterior.pdf")
        if SHOW_FIGURES:
            plt.show()

    res = dict(
        x_mse=mse(m_x, sim.x).item(),
        x_nlpd=gaussian_nlpd(m_x, v_x, sim.x).item(),
        x_coverage=coverage(m_x, v_x, sim.x).item(),
        y_brier=brier_score(p_y, sim.y).item(),
        y_nlpd=-log_Z.mean().item(),
        time=elapsed_time,
        memory=peak_memory_usage,
        n_iters=len(deltas),
        last_delta=deltas[-1] if len(deltas) else float("nan"),
    )
    if return_fg:
        res['fg'] = fg
        res['marginals'] = marginals
        res['messages'] = messages
        res['sim'] = sim
    return res
