class Converged(Exception):
    pass


def _factor_name(kind, var_names):
    return kind + "__" + "_".join(var_names)


def var_slices_d(var_nodes):
    """
    return slices for each var node
    """
    var_slices = {}
    offset = 0
    for k, v in var_nodes.items():
        next_offset = offset + v.get_dim()
        var_slices[k] = slice(offset, next_offset)
        offset = next_offset
    return var_slices
