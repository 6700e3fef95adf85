import math

import pytest
import torch

from probit_ep.dist_metrics import (
    kl_normal, mse, gaussian_nlpd, coverage, nominal_coverage,
    brier_score)


def test_kl_zero_for_identical() -> None:
    mu = torch.tensor([0.5, -1.0])
    cov = torch.tensor([[2.0, 0.3], [0.3, 1.0]])
    assert kl_normal(mu, mu, cov, cov).item() == pytest.approx(0.0, abs=1e-8)


def test_kl_does_not_mutate() -> None:
    mu = torch.zeros(2)
    cov1 = torch.eye(2)
    cov2 = 2 * torch.eye(2)
    kl_normal(mu, mu, cov1, cov2)
    assert torch.equal(cov1, torch.eye(2))


def test_kl_scalar_case() -> None:
    kl = kl_normal(
        torch.tensor([0.0]), torch.tensor([1.0]),
        torch.tensor([[1.0]]), torch.tensor([[2.0]]), eps=0.0)
    expected = 0.5 * (0.5 + 0.5 - 1.0 + math.log(2.0))
    assert kl.item() == pytest.approx(expected)


def test_scores() -> None:
    m = torch.tensor([0.0, 1.0])
    v = torch.tensor([1.0, 4.0])
    truth = torch.tensor([1.0, 1.0])
    assert mse(m, truth).item() == pytest.approx(0.5)
    nlpd = 0.5 * math.log(2 * math.pi) + 0.5 * (0.5 * math.log(4.0)) + 0.25
    assert gaussian_nlpd(m, v, truth).item() == pytest.approx(nlpd)
    assert coverage(m, v, truth).item() == pytest.approx(1.0)
    assert coverage(m, v, torch.tensor([3.0, 1.0])).item() == pytest.approx(0.5)


def test_nominal_coverage() -> None:
    assert nominal_coverage(2.0).item() == pytest.approx(0.9545, abs=1e-4)


def test_brier() -> None:
    p = torch.tensor([0.5, 0.9])
    y = torch.tensor([1.0, 0.0])
    assert brier_score(p, y).item() == pytest.approx((0.25 + 0.81) / 2)
