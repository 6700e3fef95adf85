"""
Declarative construction of the probit random-walk state-space model

    x_0 ~ N(prior_mean, prior_var)
    x_t | x_{t-1} ~ N(transition x_{t-1} + offset, process_var)
    y_t | x_t ~ Bernoulli(Phi(c^T x_t))

with variables `x_0 .. x_T` and data placeholders `y_1 .. y_T`.
"""
import torch

from .factor_graph import FactorGraph
from .factor_graph._base import _factor_name
from .factor_graph.var_node import realize_cov

LINKS = ("probit", "gaussian")


def var_name(prefix, t):
    return f"{prefix}_{t}"


def _as_matrix(a, dofs, dtype):
    a = torch.as_tensor(a, dtype=dtype)
    if a.numel() == 1:
        return torch.eye(dofs, dtype=dtype) * a.reshape(())
    if a.shape != torch.Size([dofs, dofs]):
        raise ValueError(
            f"transition has shape {tuple(a.shape)}, expected ({dofs}, {dofs})")
    return a


def add_transition(fg, prev_name, name, transition, offset, process_var):
    """
    x_t - A x_{t-1} = offset + N(0, process_var)
    """
    dofs = fg.get_var_node(name).get_dim()
    dtype = torch.get_default_dtype()
    A = _as_matrix(transition, dofs, dtype)
    J = torch.cat([-A, torch.eye(dofs, dtype=dtype)], dim=1)
    offset = torch.as_tensor(offset, dtype=dtype).reshape(-1).expand(dofs)
    return fg.add_gaussian_factor(
        [prev_name, name], J, realize_cov(process_var, dofs, dtype),
        measurement=offset,
        name=_factor_name("transition", [prev_name, name]))


def probit_ssm_graph(
        n_samples,
        prior_mean=0.,
        prior_var=1.,
        process_var=1.,
        transition=1.,
        offset=0.,
        c=None,
        link="probit",
        obs_var=1.,
        x_prefix="x",
        y_prefix="y",
        **settings):
    """
    Build the factor graph for `n_samples` observations.

    `link="gaussian"` observes c^T x_t + N(0, obs_var) instead, which has an
    exact Gaussian posterior; handy for checking the message passing.
    Extra keyword arguments become graph settings.
    """
    if link not in LINKS:
        raise ValueError(f"unknown link {link}; expected one of {LINKS}")
    if n_samples < 1:
        raise ValueError(f"need at least one sample, got {n_samples}")
    prior_mean = torch.as_tensor(
        prior_mean, dtype=torch.get_default_dtype()).reshape(-1)
    dofs = prior_mean.shape[0]
    if c is None:
        c = torch.ones(dofs)
    fg = FactorGraph(**settings)
    prev = fg.add_var_node(
        var_name(x_prefix, 0), dofs, prior_mean=prior_mean, prior_cov=prior_var)
    for t in range(1, n_samples + 1):
        name = fg.add_var_node(var_name(x_prefix, t), dofs)
        add_transition(fg, prev, name, transition, offset, process_var)
        placeholder = var_name(y_prefix, t)
        if link == "probit":
            fg.add_probit_factor(
                name, placeholder, c=c,
                name=_factor_name("probit", [name]))
        else:
            fg.add_gaussian_factor(
                [name], c, obs_var, name=_factor_name("obs", [name]),
                placeholder=placeholder)
        prev = name
    return fg


def data_dict(y, y_prefix="y"):
    """
    Observations y_1..y_T as a placeholder-keyed dict.
    """
    return {var_name(y_prefix, t + 1): y[t] for t in range(len(y))}
