"""
Generate and run an expectation propagation schedule on a `FactorGraph`.

Usage mirrors a generated message-passing algorithm:

    algo = expectation_propagation_algorithm(fg, "x")
    messages = algo.init()
    marginals = {}
    for i in range(n_its):
        algo.step(data, marginals, messages)

`messages` is keyed by (factor name, var name), `marginals` by var name;
`step` updates both in place.
"""
import re
import warnings

import torch

from .factor_graph import Converged
from .gaussian import Gaussian

SCHEDULES = ("sequential", "synchronous")


def resolve_targets(fg, targets):
    """
    Turn a var name, list of var names, or a name prefix into a list of var
    names in graph order.
    A prefix `x` matches `x_0, x_1, ...`, ordered by index.
    """
    if isinstance(targets, str):
        if targets in fg.var_nodes:
            return [targets]
        pattern = re.compile(rf"^{re.escape(targets)}_(\d+)$")
        matches = []
        for name in fg.var_nodes.keys():
            match = pattern.match(name)
            if match:
                matches.append((int(match.group(1)), name))
        if len(matches) == 0:
            raise KeyError(f"no variables match target {targets}")
        return [name for _, name in sorted(matches)]
    names = list(targets)
    if len(names) == 0:
        raise KeyError("empty target list")
    for name in names:
        fg.get_var_node(name)
    order = list(fg.var_nodes.keys())
    return sorted(names, key=order.index)


def sweep_schedule(fg, targets):
    """
    Forward-backward ordering of the (factor, var) updates that the targets
    need.

    Forward: walking the targets in order, each factor sends to the latest of
    its target variables, once all earlier ones have been reached.
    Backward: walking in reverse, each factor sends to its remaining target
    variables.
    On a chain one forward-backward sweep is exact for Gaussian factors.
    """
    rank = {k: i for i, k in enumerate(targets)}
    forward = []
    backward = []
    seen = set()
    for v_name in targets:
        var_node = fg.get_var_node(v_name)
        for f_name, factor in var_node.factor_nodes.items():
            if f_name in seen:
                continue
            adj = [k for k in factor.var_nodes.keys() if k in rank]
            latest = max(adj, key=rank.get)
            if latest == v_name:
                seen.add(f_name)
                forward.append((f_name, v_name))
    for v_name in reversed(targets):
        var_node = fg.get_var_node(v_name)
        for f_name, factor in var_node.factor_nodes.items():
            adj = [k for k in factor.var_nodes.keys() if k in rank]
            latest = max(adj, key=rank.get)
            if latest != v_name:
                backward.append((f_name, v_name))
    return forward + backward


class EPAlgorithm:
    """
    An explicit EP schedule bound to a factor graph.
    """
    def __init__(self, fg, targets, schedule=None, kind=None):
        self.fg = fg
        self.targets = targets
        if kind is None:
            kind = fg.get_setting("schedule")
        if kind not in SCHEDULES:
            raise ValueError(f"unknown schedule {kind}; expected one of {SCHEDULES}")
        self.kind = kind
        if schedule is None:
            schedule = sweep_schedule(fg, targets)
        self.schedule = schedule
        self.messages = None
        self.marginals = None

    def __repr__(self):
        return (
            f"{type(self).__name__}("
            f"{self.targets[0]}..{self.targets[-1]}, "
            f"{len(self.schedule)} updates, {self.kind})")

    def __str__(self):
        lines = [
            f"# EP algorithm ({self.kind}) for {', '.join(self.targets)}",
            "def step(data, marginals, messages):",
        ]
        for i, (f_name, v_name) in enumerate(self.schedule):
            factor = self.fg.get_factor_node(f_name)
            rule = "ep" if factor.kind == "probit" else "sum_product"
            lines.append(
                f"    messages[{f_name!r}, {v_name!r}] = "
                f"{rule}({f_name!r} -> {v_name!r})  # {i + 1}")
        for v_name in self.targets:
            lines.append(
                f"    marginals[{v_name!r}] = product of messages into {v_name!r}")
        return "\n".join(lines)

    def init(self):
        """
        Fresh, uninformative messages on every edge.
        """
        return {
            (f_name, v_name): Gaussian(self.fg.get_var_node(v_name).get_dim())
            for f_name, v_name in self.fg.get_edges()}

    def _send(self, f_name, v_name, update_belief=True):
        factor = self.fg.get_factor_node(f_name)
        factor.send_message(
            v_name,
            damping=self.fg.get_setting("damping"),
            min_precision=self.fg.get_setting("min_precision"))
        if update_belief:
            self.fg.get_var_node(v_name).update_belief()

    def step(self, data, marginals, messages):
        """
        One sweep of the schedule. Updates `marginals` and `messages` in place
        and returns the largest absolute change of any target marginal mean.
        """
        fg = self.fg
        fg.observe_d(data)
        fg.set_messages_d(messages)
        fg.update_all_beliefs()
        prev_means = {}
        for k in self.targets:
            if k in marginals and marginals[k].is_proper():
                prev_means[k] = marginals[k].mean()
        kind = self.kind
        if kind == "synchronous" and not all(
                fg.get_var_node(k).get_belief().is_proper()
                for k in self.targets):
            # parallel updates move information one link per sweep;
            # initialise with a sequential sweep
            kind = "sequential"
        if kind == "sequential":
            for f_name, v_name in self.schedule:
                self._send(f_name, v_name)
        else:
            new_messages = {}
            for f_name, v_name in self.schedule:
                factor = fg.get_factor_node(f_name)
                if not factor.can_send(v_name):
                    continue
                new_messages[(f_name, v_name)] = factor.compute_message(
                        v_name,
                        damping=fg.get_setting("damping"),
                        min_precision=fg.get_setting("min_precision"))
            fg.set_messages_d(new_messages)
            fg.update_all_beliefs()
        messages.update(fg.get_messages_d())
        marginals.update(fg.get_marginals_d(self.targets))
        delta = 0.
        for k in self.targets:
            if k not in prev_means or not marginals[k].is_proper():
                # no previous estimate, or still uninformed
                delta = float("inf")
                continue
            delta = max(
                delta,
                torch.max(torch.abs(marginals[k].mean() - prev_means[k])).item())
        return delta

    def solve(self, data, n_iters=None, cvg_tol=None, callback=None):
        """
        Complete inference loop from fresh messages.
        Stops after `n_iters` sweeps or three consecutive sweeps with mean
        change under `cvg_tol`.
        `callback(i, algo)` may raise `Converged` to stop early; non-None
        return values are logged.
        """
        fg = self.fg
        if n_iters is None:
            n_iters = fg.get_setting("max_steps")
        if cvg_tol is None:
            cvg_tol = fg.get_setting("cvg_tol")
        if callback is None:
            callback = fg.get_setting("callback")
        verbose = fg.get_setting("verbose")
        self.messages = self.init()
        self.marginals = {}
        self.deltas = []
        self._callback_log = []
        count = 0
        converged = False
        for i in range(n_iters):
            delta = self.step(data, self.marginals, self.messages)
            self.deltas.append(delta)
            if verbose > 0:
                print(f"Iter {i+1}  --- max mean change {delta:.3g}")
            try:
                callback_rtn = callback(i + 1, self)
            except Converged:
                converged = True
                break
            if callback_rtn is not None:
                self._callback_log.append(callback_rtn)
            if delta < cvg_tol:
                count += 1
                if count == 3:
                    converged = True
                    break
            else:
                count = 0
        if not converged and n_iters > 0 and self.deltas[-1] >= cvg_tol:
            warnings.warn(
                f"EP did not converge after {n_iters} iterations;"
                f" last change {self.deltas[-1]:.3g}")
        return self.deltas

    def get_means(self, marginals=None):
        if marginals is None:
            marginals = self.marginals
        return torch.cat([marginals[k].mean() for k in self.targets])

    def get_vars(self, marginals=None):
        if marginals is None:
            marginals = self.marginals
        return torch.cat([marginals[k].var() for k in self.targets])


def expectation_propagation_algorithm(fg, targets, kind=None):
    """
    Build the EP algorithm for the target variables of `fg`.
    """
    targets = resolve_targets(fg, targets)
    return EPAlgorithm(fg, targets, kind=kind)
