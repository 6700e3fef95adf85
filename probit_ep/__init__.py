"""
Expectation propagation for linear-Gaussian state-space models observed
through a probit link.
"""
from .gaussian import Gaussian
from .factor_graph import FactorGraph, Converged
from .model import probit_ssm_graph, data_dict
from .algorithm import expectation_propagation_algorithm, EPAlgorithm
from .simulate import simulate_probit_random_walk
