"""
Synthetic data: a Gaussian random walk observed through probit-thresholded
Bernoulli draws.
"""
from collections import namedtuple

import torch
from torch.special import log_ndtr

SimulatedData = namedtuple(
    'SimulatedData',
    ['x0', 'x', 'y', 'p']
)


def simulate_probit_random_walk(
        n_samples=40,
        seed=1,
        prior_mean=0.,
        prior_var=1.,
        process_var=1.,
        transition=1.,
        offset=0.,
        dtype=None):
    """
    Returns x0, latent x_1..x_T, binary y_1..y_T and the success
    probabilities Phi(x_t).
    Uses its own generator, so the global torch RNG is left alone.
    """
    if dtype is None:
        dtype = torch.get_default_dtype()
    if n_samples < 1:
        raise ValueError(f"need at least one sample, got {n_samples}")
    if prior_var < 0. or process_var < 0.:
        raise ValueError("variances must be non-negative")
    gen = torch.Generator().manual_seed(seed)
    x0 = prior_mean + prior_var ** 0.5 * torch.randn((), generator=gen, dtype=dtype)
    noise = process_var ** 0.5 * torch.randn(n_samples, generator=gen, dtype=dtype)
    x = torch.empty(n_samples, dtype=dtype)
    prev = x0
    for t in range(n_samples):
        prev = transition * prev + offset + noise[t]
        x[t] = prev
    p = torch.exp(log_ndtr(x))
    y = (torch.rand(n_samples, generator=gen, dtype=dtype) < p).to(dtype)
    return SimulatedData(x0, x, y, p)
