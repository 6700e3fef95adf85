"""
Gaussians in canonical (information) form.

Messages and beliefs are both stored as `Gaussian`, i.e. a pair
(eta, lam) of information vector and precision matrix.
An all-zero precision is a valid *message* (it is the uninformative one)
but not a valid *belief*; asking for its moments raises.
"""
from typing import List, Optional

import torch
from torch.linalg import cholesky_ex
from torch.distributions import MultivariateNormal


class Gaussian:
    def __init__(
            self, dim: int, eta: Optional[torch.Tensor] = None,
            lam: Optional[torch.Tensor] = None,
            type: Optional[torch.dtype] = None):
        if type is None:
            type = torch.get_default_dtype()
        self.dim = dim

        if eta is not None:
            eta = torch.as_tensor(eta, dtype=type).reshape(-1)
            if eta.shape != torch.Size([dim]):
                raise ValueError(
                    f"eta has shape {tuple(eta.shape)}, expected ({dim},)")
            self.eta = eta
        else:
            self.eta = torch.zeros(dim, dtype=type)

        if lam is not None:
            lam = torch.as_tensor(lam, dtype=type)
            if lam.shape != torch.Size([dim, dim]):
                raise ValueError(
                    f"lam has shape {tuple(lam.shape)}, expected ({dim}, {dim})")
            self.lam = lam
        else:
            self.lam = torch.zeros([dim, dim], dtype=type)

    @classmethod
    def from_moments(cls, mean: torch.Tensor, cov: torch.Tensor) -> "Gaussian":
        mean = torch.as_tensor(mean).reshape(-1)
        g = cls(mean.shape[0], type=mean.dtype)
        g.set_with_cov_form(mean, cov)
        return g

    def __repr__(self):
        return f"{type(self).__name__}(eta={self.eta}, lam={self.lam})"

    def copy(self) -> "Gaussian":
        return type(self)(self.dim, self.eta.clone(), self.lam.clone(), type=self.eta.dtype)

    def is_vacuous(self) -> bool:
        """
        Zero precision; carries no information.
        """
        return not torch.any(self.lam != 0.)

    def is_proper(self) -> bool:
        _, info = cholesky_ex(self.lam)
        return info.item() == 0

    def _check_proper(self) -> None:
        if not self.is_proper():
            raise ValueError(
                f"precision is not positive definite: {self.lam}")

    def mean(self) -> torch.Tensor:
        self._check_proper()
        return torch.linalg.solve(self.lam, self.eta)

    def cov(self) -> torch.Tensor:
        self._check_proper()
        return torch.inverse(self.lam)

    def mean_and_cov(self) -> List[torch.Tensor]:
        cov = self.cov()
        mean = torch.matmul(cov, self.eta)
        return [mean, cov]

    def var(self) -> torch.Tensor:
        """
        marginal variances
        """
        return torch.diagonal(self.cov())

    def set_with_cov_form(self, mean: torch.Tensor, cov: torch.Tensor) -> None:
        mean = torch.as_tensor(mean, dtype=self.eta.dtype).reshape(-1)
        cov = torch.as_tensor(cov, dtype=self.eta.dtype).reshape(self.dim, -1)
        self.lam = torch.inverse(cov)
        self.eta = self.lam @ mean

    def __mul__(self, other: "Gaussian") -> "Gaussian":
        return type(self)(
            self.dim, self.eta + other.eta, self.lam + other.lam,
            type=self.eta.dtype)

    def __truediv__(self, other: "Gaussian") -> "Gaussian":
        return type(self)(
            self.dim, self.eta - other.eta, self.lam - other.lam,
            type=self.eta.dtype)

    def damp(self, old: "Gaussian", damping: float = 0.) -> "Gaussian":
        """
        Convex combination of natural parameters, weighting `old` by
        `damping`.
        """
        if damping == 0.:
            return self
        return type(self)(
            self.dim,
            (1 - damping) * self.eta + damping * old.eta,
            (1 - damping) * self.lam + damping * old.lam,
            type=self.eta.dtype)

    def log_prob(self, x: torch.Tensor) -> torch.Tensor:
        return MultivariateNormal(
            self.mean(), precision_matrix=self.lam
        ).log_prob(torch.as_tensor(x, dtype=self.eta.dtype).reshape(-1))


def canonical_from_moments(m, cov):
    """
    Canonical-form representation from moments
    """
    m = torch.as_tensor(m).reshape(-1)
    prec = torch.inverse(torch.as_tensor(cov, dtype=m.dtype).reshape(m.shape[0], -1))
    return prec @ m, prec


def moments_from_canonical(e, prec):
    """
    Moments-form representation from canonical.
    """
    var = torch.inverse(prec)
    return var @ e, var


def scalar_moments(g: Gaussian):
    """
    mean and variance of a 1-d Gaussian as python-ish scalar tensors.
    """
    if g.dim != 1:
        raise ValueError(f"expected a 1-d Gaussian, got dim {g.dim}")
    m, cov = g.mean_and_cov()
    return m[0], cov[0, 0]


def fake_samples_from_moments(m, cov, n_samples=1):
    """
    Draw samples with the right statistics; handy for visualising joints.
    """
    return MultivariateNormal(
        loc=m, covariance_matrix=cov).sample((n_samples,))

