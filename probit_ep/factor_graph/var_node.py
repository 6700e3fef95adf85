import torch

from ..gaussian import Gaussian
from ..utils import isscalar


def variable_product_message(messages, dim):
    """
    Product of a list of canonical-form messages, i.e. the sum of their
    natural parameters.
    """
    prod = Gaussian(dim)
    for m in messages:
        prod = prod * m
    return prod


def realize_cov(cov, dofs, dtype=None):
    """
    Upcast a scalar, diagonal or full covariance to a (dofs, dofs) matrix.
    """
    if dtype is None:
        dtype = torch.get_default_dtype()
    cov = torch.as_tensor(cov, dtype=dtype)
    if isscalar(cov):
        return torch.eye(dofs, dtype=dtype) * cov.reshape(())
    elif cov.ndim == 1 and cov.shape[0] == dofs:
        # Diagonal covariance case
        return torch.diag(cov)
    elif cov.ndim == 2 and cov.shape == torch.Size([dofs, dofs]):
        # Full covariance matrix case
        return cov
    raise ValueError(
        "Invalid covariance: must be a float, 1D tensor (for diagonal),"
        f" or 2D tensor of size {dofs} (for full covariance matrix);"
        f" got shape {tuple(cov.shape)}")


class VarNode:
    """
    A variable node in the factor graph.

    The prior is stored on the node rather than as a separate factor.
    A variable without a prior has an all-zero prior precision.
    """
    def __init__(
            self, name, dofs=1, prior_mean=None, prior_cov=None,
            factor_nodes={}, fg=None):
        self.name = name
        self.dofs = dofs
        self.factor_nodes = {}
        self.prior = Gaussian(dofs)
        self.belief = Gaussian(dofs)
        self.fg = fg
        if prior_mean is not None and prior_cov is not None:
            self.set_prior(prior_mean, prior_cov)
        elif prior_mean is not None or prior_cov is not None:
            raise ValueError(
                f"{name}: prior_mean and prior_cov must be given together")
        for k, v in factor_nodes.items():
            self.add_factor_node(k, v)
        self.update_belief()

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"

    def set_fg(self, fg):
        self.fg = fg

    def diagnosis(self):
        """
        Return a dict of diagnostic information about the var node.
        """
        diagnosis = dict(
            dofs=self.dofs,
            has_prior=self.has_prior(),
            factors=list(self.factor_nodes.keys()),
        )
        if not self.belief.is_vacuous():
            diagnosis['belief_lam_diag'] = torch.diagonal(self.belief.lam)
        return diagnosis

    def get_dim(self):
        """
        return the dimension of the variable
        """
        return self.dofs

    def set_prior(self, mean, cov):
        mean = torch.as_tensor(
            mean, dtype=torch.get_default_dtype()).reshape(-1)
        if mean.shape[0] == 1 and self.dofs > 1:
            mean = mean.expand(self.dofs)
        if mean.shape[0] != self.dofs:
            raise ValueError(
                f"{self.name}: prior mean has {mean.shape[0]} entries,"
                f" expected {self.dofs}")
        self.prior.set_with_cov_form(
            mean, realize_cov(cov, self.dofs, dtype=mean.dtype))

    def has_prior(self):
        return not self.prior.is_vacuous()

    def add_factor_node(self, factor_name, factor_node):
        self.factor_nodes[factor_name] = factor_node

    def compute_belief(self):
        """
        Product of the prior with all incoming messages.
        """
        return variable_product_message(
            [self.prior] + [
                f.get_message(self.name) for f in self.factor_nodes.values()],
            self.dofs)

    def update_belief(self):
        """
        Update local belief estimate by taking product of all incoming messages
        along all edges.
        """
        self.belief = self.compute_belief()

    def get_cavity(self, factor_name):
        """
        Belief with one factor's message divided out.
        """
        return self.belief / self.factor_nodes[factor_name].get_message(self.name)

    def get_belief(self):
        """
        What is my belief in canonical form?
        """
        return self.belief

    def get_moments_belief(self):
        """
        What is my belief in intuitive moments form?
        """
        return self.belief.mean_and_cov()

    def get_residual(self, obs):
        mean, _ = self.get_moments_belief()
        return torch.as_tensor(obs, dtype=mean.dtype).reshape(-1) - mean

    def get_mse(self, obs):
        """
        residual wrt belief
        """
        residual = self.get_residual(obs)
        return (residual**2).mean()

    def get_loglik(self, obs):
        """
        log likelihood of obs wrt belief
        """
        return self.belief.log_prob(obs)
