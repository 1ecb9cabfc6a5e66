"""Launch geometry for NDRange kernels.

A kernel is launched with a global size that must be an integer multiple of
its local (work-group) size in every dimension. Callers describe the work
they need as a *minimum* global size; :func:`resolve_global_size` rounds each
dimension up to the next multiple of the local size.
"""

from numbers import Integral
from typing import Sequence, Tuple, Union

from clkit.errors import ContractViolation

NDRange = Tuple[int, ...]
NDRangeLike = Union[int, Sequence[int]]

MAX_DIMENSIONS = 3


def as_ndrange(value: NDRangeLike) -> NDRange:
    """Normalise an integer or a sequence of integers to a tuple.

    Parameters
    ----------
    value
        A single extent or a sequence of up to three extents.

    Returns
    -------
    tuple of int
        The extents as plain Python integers.

    Raises
    ------
    ContractViolation
        If ``value`` is empty, has more than three entries, or contains
        something other than integers.
    """
    if isinstance(value, Integral):
        extents = (int(value),)
    else:
        try:
            extents = tuple(value)
        except TypeError as e:
            raise ContractViolation(
                f"NDRange must be an int or a sequence of ints, got {value!r}"
            ) from e
        if not all(isinstance(extent, Integral) for extent in extents):
            raise ContractViolation(
                f"NDRange entries must be integers, got {value!r}"
            )
        extents = tuple(int(extent) for extent in extents)

    if not 1 <= len(extents) <= MAX_DIMENSIONS:
        raise ContractViolation(
            f"NDRange must have between 1 and {MAX_DIMENSIONS} dimensions, "
            f"got {len(extents)}"
        )
    return extents


def round_up_to_multiple(minimum: int, local: int) -> int:
    """Return the smallest multiple of ``local`` that is ``>= minimum``."""
    multiple = (minimum // local) * local
    if multiple != minimum:
        multiple += local
    return multiple


def resolve_global_size(
    minimum: NDRangeLike, local: NDRangeLike
) -> NDRange:
    """Compute a hardware-valid global size.

    Parameters
    ----------
    minimum
        Smallest number of work items required in each dimension.
    local
        Work-group size in each dimension.

    Returns
    -------
    tuple of int
        Per-dimension global size that is a multiple of ``local`` and no
        smaller than ``minimum``.

    Raises
    ------
    ContractViolation
        If the two ranges differ in dimensionality, a local extent is not
        positive, or a minimum extent is negative.

    Notes
    -----
    This is evaluated on every enqueue because the minimum size may change
    between calls of the same kernel.
    """
    minimum = as_ndrange(minimum)
    local = as_ndrange(local)
    if len(minimum) != len(local):
        raise ContractViolation(
            f"minimum work size {minimum} and local size {local} have "
            "different dimensionality"
        )

    global_size = []
    for work_items, local_items in zip(minimum, local):
        if local_items <= 0:
            raise ContractViolation(
                f"local size must be positive in every dimension, got {local}"
            )
        if work_items < 0:
            raise ContractViolation(
                f"minimum work size must not be negative, got {minimum}"
            )
        multiple = round_up_to_multiple(work_items, local_items)
        assert multiple % local_items == 0 and multiple >= work_items
        global_size.append(multiple)
    return tuple(global_size)
