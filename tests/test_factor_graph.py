"""Factor graph construction and exact Gaussian message passing."""

import pytest
import torch

from probit_ep.factor_graph import FactorGraph, ProbitFactor, LinearModel, MeasModel, GaussianFactor
from probit_ep.model import probit_ssm_graph, data_dict
from probit_ep.algorithm import expectation_propagation_algorithm


def dense_random_walk_posterior(y, prior_var, process_var, obs_var):
    """Hand-built tridiagonal precision for x_0..x_T."""
    T = len(y)
    lam = torch.zeros(T + 1, T + 1)
    eta = torch.zeros(T + 1)
    lam[0, 0] += 1.0 / prior_var
    for t in range(1, T + 1):
        lam[t - 1, t - 1] += 1.0 / process_var
        lam[t, t] += 1.0 / process_var
        lam[t - 1, t] -= 1.0 / process_var
        lam[t, t - 1] -= 1.0 / process_var
        lam[t, t] += 1.0 / obs_var
        eta[t] += y[t - 1] / obs_var
    cov = torch.inverse(lam)
    return cov @ eta, torch.diagonal(cov)


def test_gaussian_link_one_sweep_is_exact() -> None:
    y = torch.tensor([0.3, -1.2, 0.8, 2.0, 1.1])
    fg = probit_ssm_graph(
        len(y), prior_var=1.0, process_var=0.5, link="gaussian", obs_var=0.3)
    algo = expectation_propagation_algorithm(fg, "x")
    messages = algo.init()
    marginals = {}
    algo.step(data_dict(y), marginals, messages)

    mean, var = dense_random_walk_posterior(y, 1.0, 0.5, 0.3)
    got_mean = torch.cat([marginals[f"x_{t}"].mean() for t in range(len(y) + 1)])
    got_var = torch.cat([marginals[f"x_{t}"].var() for t in range(len(y) + 1)])
    assert torch.allclose(got_mean, mean, atol=1e-10)
    assert torch.allclose(got_var, var, atol=1e-10)


def test_vector_state_matches_dense_joint() -> None:
    y = torch.tensor([0.5, -0.2, 1.0, 0.4])
    fg = probit_ssm_graph(
        len(y),
        prior_mean=torch.zeros(2),
        prior_var=torch.tensor([1.0, 2.0]),
        process_var=0.3,
        transition=torch.tensor([[1.0, 0.1], [0.0, 0.9]]),
        c=torch.tensor([1.0, 0.5]),
        link="gaussian",
        obs_var=0.2,
    )
    algo = expectation_propagation_algorithm(fg, "x")
    messages = algo.init()
    marginals = {}
    algo.step(data_dict(y), marginals, messages)
    joint_marginals = fg.get_joint_marginals_d()
    for k, g in marginals.items():
        m, cov = g.mean_and_cov()
        m_ref, cov_ref = joint_marginals[k].mean_and_cov()
        assert torch.allclose(m, m_ref, atol=1e-8)
        assert torch.allclose(cov, cov_ref, atol=1e-8)


def test_prior_only_belief() -> None:
    fg = FactorGraph()
    fg.add_var_node("a", 2, prior_mean=torch.tensor([1.0, 2.0]), prior_cov=0.5)
    m, cov = fg.get_var_node("a").get_moments_belief()
    assert torch.allclose(m, torch.tensor([1.0, 2.0]))
    assert torch.allclose(cov, 0.5 * torch.eye(2))


def test_measmodel_jacobian_by_autograd() -> None:
    fg = FactorGraph()
    fg.add_var_node("a", 1, prior_mean=0.0, prior_cov=1.0)
    fg.add_var_node("b", 1, prior_mean=0.0, prior_cov=1.0)
    model = MeasModel(lambda x: 2.0 * x[1:] - x[:1], torch.eye(1))
    factor = GaussianFactor(
        [fg.get_var_node("a"), fg.get_var_node("b")], model,
        measurement=torch.tensor([0.0]))
    fg.add_factor(factor)
    J = torch.tensor([[-1.0, 2.0]])
    assert torch.allclose(factor.factor.lam, J.T @ J)


def test_duplicate_and_unknown_names() -> None:
    fg = FactorGraph()
    fg.add_var_node("a", 1, prior_mean=0.0, prior_cov=1.0)
    with pytest.raises(ValueError):
        fg.add_var_node("a", 1)
    with pytest.raises(KeyError):
        fg.add_gaussian_factor(["a", "nope"], torch.tensor([[1.0, -1.0]]), 1.0)
    with pytest.raises(KeyError):
        fg.get_factor_node("nope")
    fg.add_probit_factor("a", "y_a", name="p")
    with pytest.raises(ValueError):
        fg.add_probit_factor("a", "y_b", name="p")


def test_bad_prior_cov_raises() -> None:
    fg = FactorGraph()
    with pytest.raises(ValueError):
        fg.add_var_node("a", 2, prior_mean=torch.zeros(2), prior_cov=torch.ones(3))
    with pytest.raises(ValueError):
        fg.add_var_node("b", 2, prior_mean=torch.zeros(2))


def test_missing_placeholder_raises() -> None:
    fg = probit_ssm_graph(3)
    algo = expectation_propagation_algorithm(fg, "x")
    with pytest.raises(KeyError):
        algo.step({"y_1": 1, "y_2": 0}, {}, algo.init())


def test_bad_observation_raises() -> None:
    fg = probit_ssm_graph(2)
    algo = expectation_propagation_algorithm(fg, "x")
    with pytest.raises(ValueError):
        algo.step({"y_1": 1, "y_2": 3}, {}, algo.init())


def test_get_factor_for() -> None:
    fg = probit_ssm_graph(3)
    assert fg.get_factor_for(["x_1", "x_2"]).name == "transition__x_1_x_2"
    assert isinstance(fg.get_factor_for(["x_2"]), ProbitFactor)
    with pytest.raises(KeyError):
        fg.get_factor_for(["x_0", "x_3"])


def test_placeholders_and_edges() -> None:
    fg = probit_ssm_graph(4)
    assert fg.get_placeholders() == ["y_1", "y_2", "y_3", "y_4"]
    # two edges per transition, one per probit factor
    assert len(fg.get_edges()) == 3 * 4


def test_probit_site_roundtrip() -> None:
    fg = FactorGraph()
    fg.add_var_node("a", 2, prior_mean=torch.zeros(2), prior_cov=1.0)
    fg.add_probit_factor("a", "y", c=torch.tensor([1.0, -2.0]), name="p")
    factor = fg.get_factor_node("p")
    message = factor.message_from_site(torch.tensor(0.7), torch.tensor(-0.3))
    tau, nu = factor.site_from_message(message)
    assert tau.item() == pytest.approx(0.7)
    assert nu.item() == pytest.approx(-0.3)


def test_linear_model_shapes() -> None:
    model = LinearModel(torch.tensor([1.0, 2.0]), 0.5)
    assert model.J.shape == (1, 2)
    assert model.cov.shape == (1, 1)


def test_graph_accessors_after_inference(small_data) -> None:
    sim, data = small_data
    fg = probit_ssm_graph(len(sim.y), damping=0.1)
    algo = expectation_propagation_algorithm(fg, "x")
    algo.solve(data, n_iters=100, cvg_tol=1e-10)

    assert fg.get_setting("damping") == 0.1
    assert fg.get_setting("missing", 3) == 3
    fg.set_settings(verbose=2)
    assert fg.get_settings()["verbose"] == 2

    means = fg.get_mean_d()
    variances = fg.get_var_d(["x_1", "x_2"])
    assert set(variances.keys()) == {"x_1", "x_2"}
    assert torch.allclose(fg.belief_means(), algo.get_means())
    assert torch.allclose(fg.belief_vars(), algo.get_vars())
    # the dense joint mode agrees with the chain beliefs
    assert torch.allclose(fg.MAP(), fg.belief_means(), atol=1e-6)

    var_node = fg.get_var_node("x_1")
    truth = sim.x[:1]
    assert var_node.get_mse(truth).item() == pytest.approx(
        ((means["x_1"] - truth)**2).item())
    expected = torch.distributions.Normal(
        means["x_1"], variances["x_1"].sqrt()).log_prob(truth).sum()
    assert var_node.get_loglik(truth).item() == pytest.approx(expected.item())

    factor = fg.get_factor_node("probit__x_1")
    diagnosis = fg.diagnosis()
    assert diagnosis["factor_nodes"]["probit__x_1"]["tau"] > 0
    assert diagnosis["var_nodes"]["x_0"]["has_prior"]
    assert 0.0 < factor.get_log_normaliser().exp().item() < 1.0

    fg.reset_messages()
    assert all(m.is_vacuous() for m in fg.get_messages_d().values())
    assert fg.get_var_node("x_3").get_belief().is_vacuous()


@pytest.mark.parametrize("y", ["1", [1, 0]])
def test_malformed_observation_raises_value_error(y) -> None:
    fg = probit_ssm_graph(2)
    algo = expectation_propagation_algorithm(fg, "x")
    with pytest.raises(ValueError):
        algo.step({"y_1": 1, "y_2": y}, {}, algo.init())


def test_gaussian_factor_cannot_marginalise_an_empty_singular_block() -> None:
    fg = probit_ssm_graph(3, transition=0.0)
    factor = fg.get_factor_node("transition__x_1_x_2")
    # x_1 has no prior and an empty cavity; with zero transition the factor
    # puts no precision on it either
    assert not factor.can_send("x_2")
    assert factor.can_send("x_1")
    # single-variable factors have nothing to marginalise
    fg = probit_ssm_graph(3, link="gaussian")
    assert fg.get_factor_node("obs__x_1").can_send("x_1")


def test_zero_transition_synchronous_matches_sequential(small_data) -> None:
    sim, data = small_data
    seq = expectation_propagation_algorithm(
        probit_ssm_graph(len(sim.y), transition=0.0), "x")
    seq.solve(data, n_iters=50, cvg_tol=1e-12)
    sync = expectation_propagation_algorithm(
        probit_ssm_graph(len(sim.y), transition=0.0, schedule="synchronous"),
        "x")
    sync.solve(data, n_iters=50, cvg_tol=1e-12)
    assert torch.allclose(sync.get_means(), seq.get_means(), atol=1e-8)
    assert torch.allclose(sync.get_vars(), seq.get_vars(), atol=1e-8)
