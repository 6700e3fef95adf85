import torch
from torch.autograd import grad


def jacobian_factory(func):
    """
    Wrap `func` so that calling the result returns the Jacobian of `func`
    at its first argument, computed row by row with autograd.
    """
    def jacobian_func(input_tensor, *func_args, **func_kwargs):
        input_tensor = input_tensor.detach().clone().requires_grad_(True)

        # Call the original function with any additional arguments
        output_tensor = func(input_tensor, *func_args, **func_kwargs)

        # Initialize the Jacobian matrix
        jacobian = torch.zeros(
            output_tensor.numel(), input_tensor.numel(),
            dtype=input_tensor.dtype)

        # Compute the Jacobian entries
        for i in range(output_tensor.numel()):
            grad_output = torch.zeros_like(output_tensor)
            grad_output.view(-1)[i] = 1.0
            grad_input = grad(
                output_tensor, input_tensor, grad_outputs=grad_output,
                retain_graph=True, allow_unused=True)[0]
            if grad_input is not None:
                jacobian[i, :] = grad_input.view(-1)

        return jacobian

    return jacobian_func


def schur_marginal(eta, lam, keep):
    """
    Marginalise a canonical-form Gaussian onto the index slice `keep`,
    via the Schur complement of the rest.
    """
    n = eta.shape[0]
    idx = torch.arange(n)
    mask = torch.zeros(n, dtype=torch.bool)
    mask[keep] = True
    o, no = idx[mask], idx[~mask]
    eo = eta[o]
    loo = lam[o][:, o]
    if no.numel() == 0:
        return eo, loo
    eno = eta[no]
    lono = lam[o][:, no]
    lnoo = lam[no][:, o]
    lnono = lam[no][:, no]
    return (
        eo - lono @ torch.linalg.solve(lnono, eno),
        loo - lono @ torch.linalg.solve(lnono, lnoo),
    )
