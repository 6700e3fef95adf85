import torch


def isscalar(v):
    """
    how is this not a builtin?
    """
    v = torch.as_tensor(v)
    return (
        v.shape == torch.Size([]) or
        v.shape == torch.Size([1]))
