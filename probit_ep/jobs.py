"""
Running replicate experiments, locally or on a cluster, via submitit.

Executors only need a `submit(fn, **kwargs)` method returning something
with `.result()`, `.wait()`, `.state`; submitit's `AutoExecutor` and
`DebugExecutor` both qualify.
"""
import os
import bz2
import warnings

import numpy as np
import cloudpickle


def compute_percentiles(results, percentiles=[0.025, 0.5, 0.975]):
    """
    Percentiles of each float-valued key across a list of result dicts.
    """
    percentile_results = {}
    keys = results[0].keys()
    for key in keys:
        try:
            values = [float(result[key]) for result in results]
            percentile_results[key] = np.nanpercentile(
                values, [p * 100 for p in percentiles])
        except Exception as e:
            # re-raise but tell us which key failed.
            raise ValueError(f"Failed to compute percentiles for key {key}") from e
    return percentile_results


def run_trial(fn, trial_params, n_replicates, executor, batch=False):
    """
    Submit multiple runs of a function with the same parameters but varied seed
    """
    jobs = []
    if batch:
        with executor.batch():
            for run in range(n_replicates):
                job = executor.submit(fn, **trial_params, seed=run)
                jobs.append(job)
    else:
        for run in range(n_replicates):
            job = executor.submit(fn, **trial_params, seed=run)
            jobs.append(job)
    return jobs


def reduce_trial_jobs(jobs, reducer):
    results = []
    for job in jobs:
        job.wait()
        if job.state in ('DONE', 'COMPLETED', 'FINISHED'):
            results.append(job.result())
        else:
            warnings.warn(f"Job {job} not completed (state {job.state})")

    if len(results) == 0:
        raise ValueError("Empty trial")

    return reducer(results)


def submit_jobs(
        executor, fn, base_kwargs, sweep_param, sweep_values, n_replicates,
        experiment_name, job_info=None):
    """
    One job per (sweep value, replicate); seeds are distinct across the sweep.
    """
    if job_info is None:
        job_info = []
    seed = 0
    if hasattr(executor, "update_parameters"):
        executor.update_parameters(name=experiment_name)
    for value in sweep_values:
        for replicate in range(n_replicates):
            kwargs = base_kwargs.copy()
            kwargs[sweep_param] = value
            kwargs['seed'] = seed
            seed += 1
            print(f"experiment_name: {experiment_name} {sweep_param}={value} replicate={replicate}")
            job = executor.submit(fn, **kwargs)
            job_info.append({'job': job, 'params': kwargs})
    return job_info


def collate_job_results(job_info, sweep_param):
    """
    dict of sweep value -> dict of metric -> list over replicates
    """
    results = {}
    for info in job_info:
        job = info['job']
        sweep_value = info['params'][sweep_param]
        try:
            job_result = job.result()
        except Exception as e:
            warnings.warn(f"Job {job} failed with state {job.state}: {e}")
            continue
        results.setdefault(sweep_value, []).append(job_result)

    sorted_results = {k: results[k] for k in sorted(results)}
    # transform list of dicts to dict of lists
    return {
        k: {rk: [d[rk] for d in v] for rk in v[0]}
        for k, v in sorted_results.items() if v}


def save_artefact(artefact, file_path):
    """
    Zipped pickler that saves an artefact to a given file path,
    ensuring the existence of parent directories.
    """
    parent_dir = os.path.dirname(file_path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)
    with bz2.open(file_path, "wb") as f:
        cloudpickle.dump(artefact, f)
    return file_path


def load_artefact(file_path):
    with bz2.open(file_path, "rb") as f:
        return cloudpickle.load(f)


def construct_output_path(path_fragment, base_dir=None):
    """
    `{OUTPUT_DIR}/{path_fragment}.pkl.bz2`
    """
    if base_dir is None:
        base_dir = os.getenv("OUTPUT_DIR", "outputs")
    return os.path.join(base_dir, f"{path_fragment}.pkl.bz2")
