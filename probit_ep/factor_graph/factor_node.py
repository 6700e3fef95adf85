import torch
from torch.linalg import cholesky_ex

from ..gaussian import Gaussian
from ..math_helpers import jacobian_factory, schur_marginal
from ..probit import probit_site_update, probit_predictive, probit_tilted_moments
from .var_node import realize_cov
from ._base import _factor_name, var_slices_d


class MeasModel:
    """
    Measurement model `meas_fn(x) = measurement + noise`, noise ~ N(0, cov).

    If no `jac_fn` is supplied it is computed with autograd.
    Only linear models are supported by the message updates, so the Jacobian
    is evaluated once, at zero.
    """
    def __init__(self, meas_fn, cov, jac_fn=None) -> None:
        self._meas_fn = meas_fn
        if jac_fn is None:
            jac_fn = jacobian_factory(meas_fn)
        self._jac_fn = jac_fn
        self.cov = torch.as_tensor(cov, dtype=torch.get_default_dtype())

    def jac_fn(self, x: torch.Tensor) -> torch.Tensor:
        return self._jac_fn(x)

    def meas_fn(self, x: torch.Tensor) -> torch.Tensor:
        return self._meas_fn(x)

    def get_dim(self):
        return self.cov.shape[0]


class LinearModel(MeasModel):
    """
    meas_fn(x) = J @ x
    """
    def __init__(self, J, cov) -> None:
        J = torch.as_tensor(J, dtype=torch.get_default_dtype())
        if J.ndim == 1:
            J = J.unsqueeze(0)
        self.J = J
        cov = realize_cov(cov, J.shape[0], dtype=J.dtype)
        MeasModel.__init__(self, self._apply, cov, self._jac)

    def _apply(self, x):
        return self.J @ x

    def _jac(self, x):
        return self.J


class FactorNode:
    """
    A factor node in the factor graph.

    Holds its outgoing message to each adjacent variable, keyed by variable
    name.
    Subclasses say how to compute a new message for one variable given the
    current beliefs of all adjacent variables.
    """
    kind = "factor"

    def __init__(self, var_nodes, name=None, placeholder=None, fg=None):
        self.var_nodes = {}
        self.messages = {}
        self.placeholder = placeholder
        self.fg = fg
        for v in var_nodes:
            self.add_var_node(v.name, v)
        if name is None:
            name = _factor_name(self.kind, list(self.var_nodes.keys()))
        self.name = name

    def __repr__(self):
        return (
            f"{type(self).__name__}("
            f"{self.name},"
            f"{list(self.var_nodes.keys())},"
            ")"
        )

    def set_fg(self, fg):
        self.fg = fg

    def diagnosis(self):
        """
        Return a dict of diagnostic information about the factor node.
        """
        return dict(
            kind=self.kind,
            placeholder=self.placeholder,
            messages={
                k: dict(
                    eta=m.eta.detach().clone(),
                    lam_diag=torch.diagonal(m.lam).detach().clone())
                for k, m in self.messages.items()
            },
        )

    def add_var_node(self, name, node):
        self.var_nodes[name] = node
        self.messages[name] = Gaussian(node.get_dim())

    def get_var_names(self):
        return list(self.var_nodes.keys())

    def get_dim(self):
        return sum([v.get_dim() for v in self.var_nodes.values()])

    def get_message(self, var_name):
        return self.messages[var_name]

    def set_message(self, var_name, message):
        if var_name not in self.messages:
            raise KeyError(f"{self.name} is not connected to {var_name}")
        self.messages[var_name] = message

    def reset_messages(self):
        for k, v in self.var_nodes.items():
            self.messages[k] = Gaussian(v.get_dim())

    def observe(self, data):
        """
        Pick up this factor's observation from a data dict.
        Factors without a placeholder ignore the data.
        """
        pass

    def can_send(self, var_name):
        """
        Whether the current beliefs support an update to `var_name`.
        """
        return True

    def compute_message(self, var_name, damping=0., **kwargs):
        raise NotImplementedError()

    def send_message(self, var_name, damping=0., **kwargs):
        """
        Compute and store the message to one variable.
        Does not update that variable's belief.
        """
        self.messages[var_name] = self.compute_message(
            var_name, damping=damping, **kwargs)
        return self.messages[var_name]

    def get_site(self):
        """
        The Gaussian this factor currently contributes to the joint, over the
        concatenation of its variables.
        """
        raise NotImplementedError()


class GaussianFactor(FactorNode):
    """
    A linear-Gaussian factor.

    For linear models the factor potential is exact and independent of any
    linearisation point.
    If a `placeholder` is given, the measurement is read from the data on
    each `observe`.
    """
    kind = "gaussian"

    def __init__(
            self, var_nodes, meas_model, measurement=None,
            name=None, placeholder=None, fg=None):
        FactorNode.__init__(
            self, var_nodes, name=name, placeholder=placeholder, fg=fg)
        self.meas_model = meas_model
        if measurement is None:
            measurement = torch.zeros(meas_model.get_dim())
        self.measurement = torch.as_tensor(
            measurement, dtype=torch.get_default_dtype()).reshape(-1)
        self.factor = Gaussian(self.get_dim())
        self.linpoint = torch.zeros(self.get_dim())
        self.compute_factor()

    def observe(self, data):
        if self.placeholder is None:
            return
        if self.placeholder not in data:
            raise KeyError(
                f"no data for placeholder {self.placeholder} of {self.name}")
        self.measurement = torch.as_tensor(
            data[self.placeholder],
            dtype=torch.get_default_dtype()).reshape(-1)
        self.compute_factor()

    def compute_factor(self):
        """
        factor precision J^T Lambda J, information J^T Lambda (J x0 + z - h(x0))
        """
        J = self.meas_model.jac_fn(self.linpoint)
        if J.shape != torch.Size([self.meas_model.get_dim(), self.get_dim()]):
            raise ValueError(
                f"{self.name}: Jacobian has shape {tuple(J.shape)}, expected"
                f" ({self.meas_model.get_dim()}, {self.get_dim()})")
        pred_measurement = self.meas_model.meas_fn(self.linpoint)
        effective_lam = torch.inverse(self.meas_model.cov)
        self.factor.lam = J.T @ effective_lam @ J
        self.factor.eta = (
            (J.T @ effective_lam)
            @ (J @ self.linpoint + self.measurement - pred_measurement)
        ).flatten()

    def _with_cavities(self, var_name):
        """
        Factor times the cavities of all variables except `var_name`.
        """
        slices = var_slices_d(self.var_nodes)
        eta_factor = self.factor.eta.clone()
        lam_factor = self.factor.lam.clone()
        for k, var in self.var_nodes.items():
            if k == var_name:
                continue
            s = slices[k]
            cavity = var.belief / self.messages[k]
            eta_factor[s] += cavity.eta
            lam_factor[s, s] += cavity.lam
        return eta_factor, lam_factor, slices

    def can_send(self, var_name):
        """
        The block being marginalised out must be positive definite, which
        fails when a neighbouring cavity is still empty and the factor alone
        does not pin it down (e.g. a zero transition).
        """
        _, lam, slices = self._with_cavities(var_name)
        keep = slices[var_name]
        mask = torch.ones(lam.shape[0], dtype=torch.bool)
        mask[keep] = False
        if not torch.any(mask):
            return True
        _, info = cholesky_ex(lam[mask][:, mask])
        return info.item() == 0

    def compute_message(self, var_name, damping=0., **kwargs):
        """
        Product of factor with the cavities of all other variables,
        marginalised onto `var_name`.
        """
        eta_factor, lam_factor, slices = self._with_cavities(var_name)
        eta, lam = schur_marginal(eta_factor, lam_factor, slices[var_name])
        new_message = Gaussian(
            self.var_nodes[var_name].get_dim(), eta, lam, type=eta.dtype)
        return new_message.damp(self.messages[var_name], damping)

    def get_site(self):
        return self.factor


class ProbitFactor(FactorNode):
    """
    Probit observation factor on a single variable,
    p(y | x) = Phi(c^T x)^y (1 - Phi(c^T x))^(1 - y).

    The EP site lives in the 1-d projected space: the message to x is
    lam = tau c c^T, eta = nu c.
    With no observation (`None` in the data) the site is uninformative.
    """
    kind = "probit"

    def __init__(
            self, var_node, placeholder=None, c=None, name=None, fg=None):
        FactorNode.__init__(
            self, [var_node], name=name, placeholder=placeholder, fg=fg)
        self.var_node = var_node
        if c is None:
            c = torch.ones(var_node.get_dim())
        self.c = torch.as_tensor(c, dtype=torch.get_default_dtype()).reshape(-1)
        if self.c.shape[0] != var_node.get_dim():
            raise ValueError(
                f"{self.name}: projection has {self.c.shape[0]} entries,"
                f" expected {var_node.get_dim()}")
        self.observation = None
        self.tau = torch.zeros(())
        self.nu = torch.zeros(())

    def observe(self, data):
        if self.placeholder is None:
            return
        if self.placeholder not in data:
            raise KeyError(
                f"no data for placeholder {self.placeholder} of {self.name}")
        self.set_observation(data[self.placeholder])

    def set_observation(self, y):
        if y is not None:
            try:
                y = torch.as_tensor(
                    y, dtype=torch.get_default_dtype()).reshape(())
            except (TypeError, ValueError, RuntimeError) as e:
                raise ValueError(
                    f"{self.name}: probit observations must be 0 or 1, got {y!r}"
                ) from e
            if y.item() not in (0., 1.):
                raise ValueError(
                    f"{self.name}: probit observations must be 0 or 1, got {y}")
        self.observation = y

    def is_observed(self):
        return self.observation is not None

    def site_from_message(self, message):
        """
        Recover (tau, nu) from a message of the form (nu c, tau c c^T).
        """
        cc = self.c @ self.c
        tau = self.c @ message.lam @ self.c / cc**2
        nu = self.c @ message.eta / cc
        return tau, nu

    def message_from_site(self, tau, nu):
        return Gaussian(
            self.var_node.get_dim(),
            nu * self.c,
            tau * torch.outer(self.c, self.c),
            type=self.c.dtype)

    def set_message(self, var_name, message):
        FactorNode.set_message(self, var_name, message)
        self.tau, self.nu = self.site_from_message(message)

    def reset_messages(self):
        FactorNode.reset_messages(self)
        self.tau = torch.zeros(())
        self.nu = torch.zeros(())

    def get_projected_cavity(self):
        """
        Mean and variance of c^T x under the cavity.
        """
        cavity = self.var_node.get_cavity(self.name)
        try:
            m, cov = cavity.mean_and_cov()
        except ValueError as e:
            raise ValueError(
                f"{self.name}: cavity for {self.var_node.name} is improper;"
                " does the variable have a prior or other informative factors?"
            ) from e
        return self.c @ m, self.c @ cov @ self.c

    def compute_message(self, var_name, damping=0., min_precision=0., **kwargs):
        if var_name != self.var_node.name:
            raise KeyError(f"{self.name} is not connected to {var_name}")
        old = self.messages[var_name]
        if not self.is_observed():
            return Gaussian(self.var_node.get_dim())
        m_cav, v_cav = self.get_projected_cavity()
        tau, nu = probit_site_update(
            self.observation, m_cav, v_cav, min_precision=min_precision)
        new_message = self.message_from_site(tau, nu)
        return new_message.damp(old, damping)

    def send_message(self, var_name, damping=0., **kwargs):
        message = FactorNode.send_message(self, var_name, damping=damping, **kwargs)
        self.tau, self.nu = self.site_from_message(message)
        return message

    def can_send(self, var_name):
        """
        An EP update needs a proper cavity; early in a synchronous sweep the
        variable may not have one yet.
        """
        cavity = self.var_node.get_cavity(self.name)
        return cavity.is_proper()

    def get_site(self):
        return self.messages[self.var_node.name]

    def get_log_normaliser(self):
        """
        log Z of the tilted distribution at the current cavity,
        i.e. the approximate log predictive probability of the observation.
        """
        if not self.is_observed():
            return torch.zeros(())
        m_cav, v_cav = self.get_projected_cavity()
        log_Z, _, _ = probit_tilted_moments(self.observation, m_cav, v_cav)
        return log_Z

    def predictive_probability(self, use_cavity=False):
        """
        P(y = 1) under the current belief (or the cavity, which excludes this
        factor's own observation).
        """
        if use_cavity:
            m, v = self.get_projected_cavity()
        else:
            mean, cov = self.var_node.get_moments_belief()
            m, v = self.c @ mean, self.c @ cov @ self.c
        return probit_predictive(m, v)

    def diagnosis(self):
        diagnosis = FactorNode.diagnosis(self)
        diagnosis.update(
            observation=self.observation,
            tau=self.tau,
            nu=self.nu,
        )
        return diagnosis
