import torch

from ..gaussian import Gaussian
from ._base import var_slices_d
from .var_node import VarNode
from .factor_node import GaussianFactor, ProbitFactor, LinearModel


class FactorGraph:
    """
    FactorGraph objects hold dicts of var and factor nodes, keyed by name,
    all of whom are aware of each other.

    Variables are kept in insertion order, which the EP schedule uses as the
    chain order.
    """
    def __init__(self, **settings):
        self.var_nodes = {}
        self.factor_nodes = {}
        self._settings = settings
        self._settings.setdefault("damping", 0.0)
        self._settings.setdefault("min_precision", 1e-12)
        self._settings.setdefault("max_steps", 20)
        self._settings.setdefault("cvg_tol", 1e-6)
        self._settings.setdefault("schedule", "sequential")
        self._settings.setdefault("verbose", 0)
        self._settings.setdefault("callback", lambda i, fg: None)

    def __repr__(self):
        return f"{type(self).__name__}({self.factor_nodes}, {self.var_nodes})"

    def diagnosis(self):
        """
        Return a dict of diagnostic information about the graph.
        """
        return dict(
            var_nodes={
                k: v.diagnosis()
                for k, v in self.var_nodes.items()},
            factor_nodes={
                k: f.diagnosis()
                for k, f in self.factor_nodes.items()},
        )

    # construction
    def add_var_node(self, name, dofs=1, prior_mean=None, prior_cov=None):
        if name in self.var_nodes:
            raise ValueError(f"duplicate variable name {name}")
        self.var_nodes[name] = VarNode(
            name, dofs, prior_mean=prior_mean, prior_cov=prior_cov, fg=self)
        return name

    def add_factor(self, factor_node):
        """
        Register an already-constructed factor node.
        """
        if factor_node.name in self.factor_nodes:
            raise ValueError(f"duplicate factor name {factor_node.name}")
        for var_name, var_node in factor_node.var_nodes.items():
            if self.var_nodes.get(var_name) is not var_node:
                raise KeyError(
                    f"{factor_node.name} refers to unknown variable {var_name}")
        self.factor_nodes[factor_node.name] = factor_node
        factor_node.set_fg(self)
        for var_node in factor_node.var_nodes.values():
            var_node.add_factor_node(factor_node.name, factor_node)
            var_node.update_belief()
        return factor_node.name

    def add_gaussian_factor(
            self, var_names, J, cov, measurement=None,
            name=None, placeholder=None):
        """
        J @ concat(vars) = measurement + N(0, cov)
        """
        var_nodes = [self.get_var_node(k) for k in var_names]
        return self.add_factor(GaussianFactor(
            var_nodes, LinearModel(J, cov), measurement=measurement,
            name=name, placeholder=placeholder))

    def add_probit_factor(self, var_name, placeholder, c=None, name=None):
        return self.add_factor(ProbitFactor(
            self.get_var_node(var_name), placeholder=placeholder, c=c,
            name=name))

    # access
    def get_var_node(self, name):
        """
        Get a variable node by name.
        """
        try:
            return self.var_nodes[name]
        except KeyError:
            raise KeyError(f"unknown variable {name}") from None

    def get_factor_node(self, name):
        """
        Get a factor node by name.
        """
        try:
            return self.factor_nodes[name]
        except KeyError:
            raise KeyError(f"unknown factor {name}") from None

    def get_factor_for(self, names):
        """
        Get the factor node implicating exactly these vars by name
        """
        names = set(names)
        candidates = [
            v for v in self.factor_nodes.values()
            if names == set(v.var_nodes.keys())]
        if len(candidates) == 0:
            raise KeyError(f"No factor node with vars {names}")
        elif len(candidates) > 1:
            raise KeyError(f"Multiple factor nodes with vars {names}")
        return candidates[0]

    def get_placeholders(self):
        return [
            f.placeholder for f in self.factor_nodes.values()
            if f.placeholder is not None]

    def get_edges(self):
        """
        (factor name, var name) for every edge, in factor insertion order.
        """
        return [
            (f_name, v_name)
            for f_name, f in self.factor_nodes.items()
            for v_name in f.var_nodes.keys()]

    # settings
    def get_settings(self):
        """
        Get the settings for this factor graph inference
        """
        return self._settings

    def get_setting(self, key, *fallbackarg):
        """
        Get a setting for this factor graph inference
        """
        if len(fallbackarg) > 0:
            return self._settings.get(key, fallbackarg[0])
        return self._settings[key]

    def set_settings(self, **settings):
        """
        update the settings for this factor graph inference
        """
        self._settings.update(settings)

    # inference state
    def observe_d(self, data):
        """
        Hand the data dict to every factor; each picks out its own placeholder.
        """
        for factor_node in self.factor_nodes.values():
            factor_node.observe(data)

    def reset_messages(self):
        for factor_node in self.factor_nodes.values():
            factor_node.reset_messages()
        self.update_all_beliefs()

    def get_messages_d(self):
        return {
            (f_name, v_name): self.factor_nodes[f_name].get_message(v_name)
            for f_name, v_name in self.get_edges()}

    def set_messages_d(self, messages):
        for (f_name, v_name), message in messages.items():
            self.get_factor_node(f_name).set_message(v_name, message)

    def update_all_beliefs(self):
        for var_node in self.var_nodes.values():
            var_node.update_belief()

    def get_marginals_d(self, names=None):
        if names is None:
            names = self.var_nodes.keys()
        return {k: self.get_var_node(k).get_belief() for k in names}

    def get_mean_d(self, names=None):
        return {
            k: v.mean() for k, v in self.get_marginals_d(names).items()}

    def get_var_d(self, names=None):
        return {
            k: v.var() for k, v in self.get_marginals_d(names).items()}

    # dense reference
    def get_joint_dim(self):
        return sum([var.get_dim() for var in self.var_nodes.values()])

    def get_joint(self):
        """
        Get the joint distribution over all variables in the information form,
        from priors, Gaussian factors and the current EP sites.
        """
        dim = self.get_joint_dim()
        joint = Gaussian(dim)
        slices = var_slices_d(self.var_nodes)
        for k, var in self.var_nodes.items():
            s = slices[k]
            joint.eta[s] += var.prior.eta
            joint.lam[s, s] += var.prior.lam
        for factor in self.factor_nodes.values():
            site = factor.get_site()
            f_slices = var_slices_d(factor.var_nodes)
            for k in factor.var_nodes.keys():
                joint.eta[slices[k]] += site.eta[f_slices[k]]
                for k2 in factor.var_nodes.keys():
                    joint.lam[slices[k], slices[k2]] += site.lam[
                        f_slices[k], f_slices[k2]]
        return joint

    def get_joint_marginals_d(self):
        """
        Exact marginals of `get_joint()`, by dense inversion.
        For checking message passing on small graphs.
        """
        mean, cov = self.get_joint().mean_and_cov()
        slices = var_slices_d(self.var_nodes)
        return {
            k: Gaussian.from_moments(mean[s], cov[s, s])
            for k, s in slices.items()}

    def MAP(self):
        return self.get_joint().mean()

    def belief_means(self):
        """ Get an array containing all current estimates of belief means. """
        return torch.cat([var.belief.mean() for var in self.var_nodes.values()])

    def belief_vars(self):
        """ Get an array containing all current marginal variances. """
        return torch.cat([var.belief.var() for var in self.var_nodes.values()])

    def print(self, brief=False):
        print("\nFactor Graph:")
        print(f"# Variable nodes: {len(self.var_nodes)}")
        if not brief:
            for k, var in self.var_nodes.items():
                print(f"Variable {k}: connects to factors {list(var.factor_nodes.keys())}")
                print(f"    dofs: {var.dofs}")
                if var.has_prior():
                    print(f"    prior mean: {var.prior.mean().numpy()}")
                    print(f"    prior covariance: diagonal sigma {torch.diagonal(var.prior.cov()).numpy()}")
        print(f"# Factors: {len(self.factor_nodes)}")
        if not brief:
            for k, factor in self.factor_nodes.items():
                print(f"{type(factor).__name__} {k}: connects to variables {factor.get_var_names()}")
                if factor.placeholder is not None:
                    print(f"    placeholder: {factor.placeholder}")
        print("\n")
