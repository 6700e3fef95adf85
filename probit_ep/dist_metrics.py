import math

import torch
from torch.special import ndtr


def kl_normal(mu1, mu2, var1, var2, eps=1e-10):
    """
    KL(N(mu1, var1) || N(mu2, var2)) for full covariances.
    """
    assert mu1.shape == mu2.shape
    assert var1.shape == var2.shape
    size = mu1.shape[0]
    # + epsilon*I to avoid numerical precision problems; copies, not in place
    var1 = var1 + eps * torch.eye(size, dtype=var1.dtype)
    var2 = var2 + eps * torch.eye(size, dtype=var2.dtype)
    return (
        torch.trace(torch.linalg.solve(var2, var1))
        + (mu2 - mu1) @ torch.linalg.solve(var2, mu2 - mu1)
        - size
        + torch.logdet(var2)
        - torch.logdet(var1)
    )/2


def mse(m, truth):
    return ((m - truth)**2).mean()


def gaussian_nlpd(m, v, truth):
    """
    mean negative log density of truth under independent N(m, v)
    """
    return (
        0.5 * math.log(2 * math.pi)
        + 0.5 * torch.log(v)
        + 0.5 * (truth - m)**2 / v
    ).mean()


def coverage(m, v, truth, n_sd=2.0):
    """
    fraction of truth within m +/- n_sd sd
    """
    return ((truth - m).abs() <= n_sd * v.sqrt()).to(m.dtype).mean()


def nominal_coverage(n_sd=2.0):
    return 2. * ndtr(torch.as_tensor(n_sd)) - 1.


def brier_score(p, y):
    return ((p - y)**2).mean()
