"""
Moment matching for the probit likelihood

    p(y | x) = Phi(x)^y (1 - Phi(x))^(1 - y),   y in {0, 1}

against a Gaussian cavity N(x; m, v).
With s = 2y - 1 and z = s m / sqrt(1 + v) the tilted distribution
Phi(s x) N(x; m, v) has normaliser Phi(z) and

    mean = m + v * alpha
    var  = v - v**2 * gamma

where r = N(z) / Phi(z), alpha = s r / sqrt(1 + v), gamma = r (z + r) / (1 + v).
r is evaluated in log space so that cavities deep in the wrong tail do not
produce 0/0.
"""
import math
import warnings

import torch
from torch.special import log_ndtr

_LOG_SQRT_2PI = 0.5 * math.log(2 * math.pi)


def probit_sign(y, dtype=None):
    """
    Map a binary observation to s = 2y - 1.
    """
    if dtype is None:
        dtype = torch.get_default_dtype()
    try:
        y = torch.as_tensor(y, dtype=dtype)
    except (TypeError, ValueError, RuntimeError) as e:
        raise ValueError(f"probit observations must be 0 or 1, got {y!r}") from e
    if not torch.all((y == 0.) | (y == 1.)):
        raise ValueError(f"probit observations must be 0 or 1, got {y}")
    return 2. * y - 1.


def normal_logpdf(z):
    return -0.5 * z**2 - _LOG_SQRT_2PI


def probit_tilted_moments(y, m, v):
    """
    log normaliser, mean and variance of Phi(s x) N(x; m, v).
    """
    m = torch.as_tensor(m, dtype=torch.get_default_dtype())
    v = torch.as_tensor(v, dtype=m.dtype)
    if torch.any(v <= 0.):
        raise ValueError(f"cavity variance must be positive, got {v}")
    s = probit_sign(y, dtype=m.dtype)
    sd = torch.sqrt(1. + v)
    z = s * m / sd
    log_Z = log_ndtr(z)
    r = torch.exp(normal_logpdf(z) - log_Z)
    alpha = s * r / sd
    gamma = r * (z + r) / (1. + v)
    mean_hat = m + v * alpha
    var_hat = v - v**2 * gamma
    return log_Z, mean_hat, var_hat


def probit_site_update(y, m_cav, v_cav, min_precision=0.):
    """
    New site parameters (tau, nu), i.e. the tilted moments divided by the
    cavity, in natural parameters.
    """
    m_cav = torch.as_tensor(m_cav, dtype=torch.get_default_dtype())
    v_cav = torch.as_tensor(v_cav, dtype=m_cav.dtype)
    _, mean_hat, var_hat = probit_tilted_moments(y, m_cav, v_cav)
    tau = 1. / var_hat - 1. / v_cav
    nu = mean_hat / var_hat - m_cav / v_cav
    if torch.any(tau < 0.):
        warnings.warn(
            f"negative probit site precision {tau}; clamping to {min_precision}")
    tau = torch.clamp(tau, min=min_precision)
    return tau, nu


def probit_predictive(m, v):
    """
    P(y = 1) under x ~ N(m, v).
    """
    m = torch.as_tensor(m, dtype=torch.get_default_dtype())
    v = torch.as_tensor(v, dtype=m.dtype)
    # via log_ndtr, since ndtr underflows to 0 in the lower tail
    return torch.exp(log_ndtr(m / torch.sqrt(1. + v)))
