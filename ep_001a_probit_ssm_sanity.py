# %%
"""
sanity check that EP on the probit random walk runs ok,
and that the schedules agree.
"""
from pprint import pprint

import torch
import matplotlib.pyplot as plt
from tueplots import bundles

from probit_ep.experiment import run_run

torch.set_default_dtype(torch.float64)
plt.rcParams.update(bundles.icml2022(usetex=False))

#%% sanity check
base_kwargs = dict(
    n_samples=40,
    prior_var=1.,
    process_var=1.,
    ## inference params
    n_its=4,
    damping=0.0,
    schedule="sequential",
    ## diagnostics
    verbose=1,
    FINAL_PLOTS=True,
    SAVE_FIGURES=True,
    job_name="ep_probit_sanity",
)
#%%
ep_result = run_run(**base_kwargs, seed=75)
pprint(ep_result)
damped_result = run_run(**{**base_kwargs, 'damping': 0.3, 'n_its': 20, 'cvg_tol': 1e-8, 'job_name': "ep_probit_damped_sanity"}, seed=75)
pprint(damped_result)
sync_result = run_run(**{**base_kwargs, 'schedule': "synchronous", 'n_its': 200, 'cvg_tol': 1e-8, 'job_name': "ep_probit_sync_sanity"}, seed=75)
pprint(sync_result)

# %%
