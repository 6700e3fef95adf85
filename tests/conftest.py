import matplotlib
import pytest
import torch

matplotlib.use("Agg")
torch.set_default_dtype(torch.float64)


@pytest.fixture
def small_data():
    from probit_ep.simulate import simulate_probit_random_walk
    from probit_ep.model import data_dict
    sim = simulate_probit_random_walk(n_samples=8, seed=3)
    return sim, data_dict(sim.y)
