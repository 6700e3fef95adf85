"""
Gaussian message passing with expectation-propagation sites.

Loosely inspired by Ortiz

* https://colab.research.google.com/drive/1-nrE95X4UC9FBLR0-cTnsIP_XhA_PZKW
* https://github.com/joeaortiz/gbp/blob/master/gbp/gbp.py

Data structures of note:

1. every message and belief is a `Gaussian` in canonical form (eta, lam)
2. methods that end in `_d` operate on dictionaries keyed by node name
3. a variable's belief is its prior times all incoming factor messages;
   the cavity for factor f is that belief divided by f's own message.

Linear-Gaussian factors send exact messages (Schur complement of the factor
times cavities).
Probit factors send EP messages: the moment-matched tilted distribution
divided by the cavity.
"""

from ._base import Converged
from .factor_graph import FactorGraph
from .factor_node import FactorNode, GaussianFactor, ProbitFactor, MeasModel, LinearModel
from .var_node import VarNode
