# %%
"""
Replicate EP runs over seeds and a sweep of assumed process noise,
reporting percentiles of the error metrics.
"""
import os
from pprint import pprint

import torch
import submitit
from dotenv import load_dotenv

from probit_ep.experiment import run_run
from probit_ep.jobs import (
    run_trial, reduce_trial_jobs, compute_percentiles,
    submit_jobs, collate_job_results, save_artefact, construct_output_path)

load_dotenv()

# Intermediate results we do not wish to version
LOG_DIR = os.getenv("LOG_DIR", "_logs")

torch.set_default_dtype(torch.float64)

base_kwargs = dict(
    n_samples=40,
    n_its=10,
    FINAL_PLOTS=False,
)

# %%
# executor = submitit.AutoExecutor(folder=LOG_DIR)
executor = submitit.DebugExecutor(folder=LOG_DIR)
executor.update_parameters(timeout_min=59)

# %%
jobs = run_trial(run_run, base_kwargs, n_replicates=20, executor=executor)
percentiles = reduce_trial_jobs(jobs, compute_percentiles)
pprint(percentiles)

# %%
experiment_name = "ep_probit_inf_process_var"
job_info = submit_jobs(
    executor, run_run, base_kwargs,
    "inf_process_var", [0.25, 0.5, 1.0, 2.0, 4.0],
    n_replicates=10,
    experiment_name=experiment_name)
results = collate_job_results(job_info, "inf_process_var")
pprint({k: {rk: sum(rv)/len(rv) for rk, rv in v.items()} for k, v in results.items()})
save_artefact(results, construct_output_path(experiment_name))

# %%
