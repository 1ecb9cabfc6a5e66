"""Calling kernels like functions."""

from typing import Any, List, Optional, Sequence

from clkit.arguments import ArgumentBinder
from clkit.errors import ContractViolation
from clkit.launch import NDRange, NDRangeLike, as_ndrange


class KernelInvocation:
    """A kernel bound to a launch geometry, ready to be called.

    Parameters
    ----------
    context
        :class:`~clkit.context.DeviceContext` that owns ``kernel``.
    kernel
        Kernel handle obtained from the context.
    minimum_work_size
        Smallest global size the caller needs in each dimension.
    local_size
        Work-group size, with the same dimensionality.
    event_sink
        Optional list receiving the completion event of every launch.
    wait_for
        Optional events that must complete before the kernel starts.
    offset
        Optional global work offset.
    queue
        Index of the command queue launches are submitted to.

    Notes
    -----
    Argument binding is stateful. Calling the invocation resets the binder
    before and after binding, so consecutive calls are independent; callers
    composing arguments with :meth:`partial_argument_list` must finish with
    :meth:`enqueue` or abandon with :meth:`discard_partial_arguments`.

    Examples
    --------
    >>> add = ctx.kernel_call("add", minimum_work_size=n, local_size=16)
    >>> event = add(buffer_a, buffer_b, output)
    """

    def __init__(
        self,
        context,
        kernel,
        minimum_work_size: NDRangeLike,
        local_size: NDRangeLike,
        event_sink: Optional[List[Any]] = None,
        wait_for: Optional[Sequence[Any]] = None,
        offset: Optional[NDRangeLike] = None,
        queue: int = 0,
    ) -> None:
        self._context = context
        self._kernel = kernel
        self._local_size = as_ndrange(local_size)
        self._minimum_work_size = self._check_dimensions(minimum_work_size)
        self._offset = None
        if offset is not None:
            self._offset = self._check_dimensions(offset)
        self._event_sink = event_sink
        self._wait_for = wait_for
        self._queue = queue
        self._args = ArgumentBinder(context.driver, kernel)

    def _check_dimensions(self, extents: NDRangeLike) -> NDRange:
        extents = as_ndrange(extents)
        if len(extents) != len(self._local_size):
            raise ContractViolation(
                f"work size {extents} and local size {self._local_size} "
                "have different dimensionality"
            )
        return extents

    @property
    def kernel(self):
        return self._kernel

    @property
    def local_size(self) -> NDRange:
        return self._local_size

    @property
    def minimum_work_size(self) -> NDRange:
        """Minimum global size; may be changed between launches."""
        return self._minimum_work_size

    @minimum_work_size.setter
    def minimum_work_size(self, value: NDRangeLike) -> None:
        self._minimum_work_size = self._check_dimensions(value)

    @property
    def num_bound_arguments(self) -> int:
        """Number of arguments bound since the last reset."""
        return self._args.num_pushed

    def set_event_sink(self, event_sink: Optional[List[Any]]) -> None:
        """Set the list that receives completion events."""
        self._event_sink = event_sink

    def set_dependencies(self, wait_for: Optional[Sequence[Any]]) -> None:
        """Set the events every launch waits for."""
        self._wait_for = wait_for

    def __call__(self, *arguments: Any):
        """Bind ``arguments`` in order and launch the kernel.

        Returns
        -------
        event
            Completion event of the launch. The call returns once the
            kernel is queued, not when it has finished.

        Raises
        ------
        DriverError
            If an argument could not be bound or the launch failed.
        """
        self._args.reset()
        try:
            self._args.push_all(*arguments)
            return self.enqueue()
        finally:
            self._args.reset()

    invoke = __call__

    def partial_argument_list(self, *arguments: Any) -> None:
        """Bind a prefix of the arguments without launching."""
        self._args.push_all(*arguments)

    def discard_partial_arguments(self) -> None:
        """Abandon partially bound arguments."""
        self._args.reset()

    def enqueue(self):
        """Launch the kernel with whatever arguments are currently bound."""
        event = self._context.enqueue_ndrange_kernel(
            self._kernel,
            self._minimum_work_size,
            self._local_size,
            offset=self._offset,
            wait_for=self._wait_for,
            queue=self._queue,
        )
        if self._event_sink is not None:
            self._event_sink.append(event)
        return event
