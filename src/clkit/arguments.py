"""Positional binding of kernel arguments.

Kernel arguments are plain values (buffers, numpy scalars, structured
values), :class:`LocalMemory` markers that reserve work-group local memory
without host content, or :class:`RawMemory` blocks that bind an explicit
number of bytes from a host object. :class:`ArgumentBinder` pushes them to
consecutive parameter slots so callers never track indices.
"""

from numbers import Integral
from typing import Any, Optional

import numpy as np
from attrs import define, field


def _to_byte_count(value) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(
            f"nbytes must be an integer, got {type(value).__name__}"
        )
    return int(value)


def _nonnegative(instance, attribute, value):
    if value < 0:
        raise ValueError(f"{attribute.name} must be >= 0, got {value}")


@define(frozen=True)
class LocalMemory:
    """Reserve ``nbytes`` of local memory for one kernel parameter.

    Parameters
    ----------
    nbytes
        Size of the reservation in bytes.
    """

    nbytes: int = field(converter=_to_byte_count, validator=_nonnegative)

    @classmethod
    def of(cls, num_elements: int, dtype=np.float32) -> "LocalMemory":
        """Reserve room for ``num_elements`` items of ``dtype``."""
        return cls(int(num_elements) * np.dtype(dtype).itemsize)


@define(frozen=True)
class RawMemory:
    """Bind ``nbytes`` from a host object supporting the buffer protocol.

    Parameters
    ----------
    data
        Host object (numpy array, ``bytes``, ``bytearray``...).
    nbytes
        Number of bytes to bind. Defaults to the full size of ``data``.
    """

    data: Any = field()
    nbytes: Optional[int] = field(default=None)

    def __attrs_post_init__(self):
        if self.nbytes is None:
            object.__setattr__(
                self, "nbytes", memoryview(self.data).nbytes
            )
        elif self.nbytes < 0:
            raise ValueError(f"nbytes must be >= 0, got {self.nbytes}")


class ArgumentBinder:
    """Pushes arguments to consecutive parameter slots of one kernel.

    Parameters
    ----------
    driver
        Driver used to set the arguments.
    kernel
        Kernel handle whose arguments are bound.

    Notes
    -----
    The binder performs no type checking; incompatible values or
    out-of-range slots surface as :class:`~clkit.errors.DriverError` from
    the driver.
    """

    def __init__(self, driver, kernel) -> None:
        self._driver = driver
        self._kernel = kernel
        self._num_arguments = 0

    @property
    def kernel(self):
        """Kernel handle this binder writes to."""
        return self._kernel

    @property
    def num_pushed(self) -> int:
        """Index the next push will bind to."""
        return self._num_arguments

    def push(self, value: Any) -> None:
        """Bind ``value`` by value at the current index."""
        self._driver.set_arg(self._kernel, self._num_arguments, value)
        self._num_arguments += 1

    def push_raw(self, data: Any, nbytes: int) -> None:
        """Bind a raw block of ``nbytes`` at the current index.

        ``data`` may be ``None`` to reserve uninitialised local memory.
        """
        self._driver.set_raw_arg(
            self._kernel, self._num_arguments, data, nbytes
        )
        self._num_arguments += 1

    def push_argument(self, argument: Any) -> None:
        """Bind one argument, dispatching on the local/raw memory markers."""
        if isinstance(argument, LocalMemory):
            self.push_raw(None, argument.nbytes)
        elif isinstance(argument, RawMemory):
            self.push_raw(argument.data, argument.nbytes)
        else:
            self.push(argument)

    def push_all(self, *arguments: Any) -> None:
        """Bind every argument in order."""
        for argument in arguments:
            self.push_argument(argument)

    def reset(self) -> None:
        """Return to index 0 so the next push binds the first parameter."""
        self._num_arguments = 0
