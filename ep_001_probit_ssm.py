# %%
"""
Expectation propagation in a random walk observed through a probit link

X0---->X1---->X2---->X3 ...
       |      |      |
       v      v      v
       Y1     Y2     Y3

x_t ~ N(x_{t-1}, 1), y_t ~ Bernoulli(Phi(x_t)).
The target is the path x_0..x_T.
"""
# %load_ext autoreload
# %autoreload 2
import os

import torch
from matplotlib import pyplot as plt
from dotenv import load_dotenv

from probit_ep.simulate import simulate_probit_random_walk
from probit_ep.model import probit_ssm_graph, data_dict
from probit_ep.algorithm import expectation_propagation_algorithm
from probit_ep.plots import posterior_band_plot, convergence_plot, cov_sample_plot

load_dotenv()

# Figures we wish to keep
FIG_DIR = os.getenv("FIG_DIR", "fig")

torch.set_default_dtype(torch.float64)
import lovely_tensors as lt
lt.monkey_patch()

# %%
#@title Generate data
n_samples = 40
sim = simulate_probit_random_walk(n_samples=n_samples, seed=2)
data = data_dict(sim.y)
t = torch.arange(1, n_samples + 1)

plt.plot(t, sim.x, color="black", label="x")
plt.scatter(t, sim.y, color="red", marker="x", label="y")
plt.legend()
plt.show()

# %%
#@title Build model
fg = probit_ssm_graph(n_samples, prior_mean=0., prior_var=1., process_var=1.)
fg.print(brief=True)

# %%
#@title Generate algorithm
algo = expectation_propagation_algorithm(fg, "x")
print(algo)

# %%
#@title Execute algorithm
messages = algo.init()
marginals = {}

n_its = 4
deltas = []
for i in range(n_its):
    deltas.append(algo.step(data, marginals, messages))
    print(f"Iter {i+1}  --- max mean change {deltas[-1]:.3g}")

# %%
#@title Plot results
m_x = torch.cat([marginals[f"x_{k}"].mean() for k in range(1, n_samples + 1)])
v_x = torch.cat([marginals[f"x_{k}"].var() for k in range(1, n_samples + 1)])

fig = plt.figure(figsize=(8, 3))
ax = fig.add_subplot(1, 1, 1)
posterior_band_plot(m_x, v_x, truth=sim.x, obs=sim.y, ax=ax, t=t.numpy())
os.makedirs(FIG_DIR, exist_ok=True)
fig.savefig(f"{FIG_DIR}/ep_001_probit_ssm_posterior.pdf")
plt.show()

# %%
#@title How fast did it settle?
convergence_plot(deltas)
plt.show()

# %%
#@title Check against the dense joint built from the same sites
joint_marginals = fg.get_joint_marginals_d()
print(
    "max |belief - joint| mean:",
    max([
        (joint_marginals[k].mean() - marginals[k].mean()).abs().max().item()
        for k in marginals]))

# %%
#@title Posterior paths drawn from the dense joint
mean, cov = fg.get_joint().mean_and_cov()
plt.figure(figsize=(8, 3))
# x_1..x_T; x_0 is unobserved
cov_sample_plot(mean[1:], cov[1:, 1:], n_samples=50)
plt.plot(sim.x, color="black", linestyle="dashed")
plt.show()
