"""Thin OpenCL driver layer built on :mod:`pyopencl`.

This module is the only place in clkit that calls into pyopencl. It exposes a
small, uniform surface (contexts, queues, programs, kernels, buffers and
transfers) so the compilation cache, the argument binder and the device
context can be exercised against a stand-in driver with the same methods.

Every pyopencl failure is re-raised as :class:`~clkit.errors.DriverError`
carrying the raw status code; build failures become
:class:`~clkit.errors.CompilationError`.
"""

from contextlib import contextmanager
from typing import Any, Optional, Sequence

import numpy as np
import pyopencl as cl

from clkit.errors import CompilationError, DriverError


def error_code(exc: Exception) -> Optional[int]:
    """Return the integer status code of a pyopencl error, if any."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    return None


def strip_nul(text: str) -> str:
    """Remove embedded NUL characters some drivers append to info strings."""
    return text.replace("\0", "")


@contextmanager
def driver_errors(message: str, **context: Any):
    """Translate pyopencl errors raised in the block into DriverError.

    Parameters
    ----------
    message
        Description of the operation, used as the error message.
    **context
        Extra details attached to the raised error.

    Raises
    ------
    DriverError
        Wrapping the original :class:`pyopencl.Error`.
    """
    try:
        yield
    except cl.Error as e:
        raise DriverError(
            message, code=error_code(e), context=context or None
        ) from e


class OpenCLDriver:
    """pyopencl-backed implementation of the driver surface.

    Notes
    -----
    The driver holds no state of its own; ownership of contexts, queues,
    programs and kernels lies with :class:`~clkit.context.DeviceContext`.
    """

    # ------------------------------------------------------------------ #
    # Devices, contexts and queues
    # ------------------------------------------------------------------ #
    def create_context(self, device: cl.Device) -> cl.Context:
        with driver_errors("Could not spawn CL context!"):
            return cl.Context(devices=[device])

    def device_type(self, device: cl.Device) -> int:
        with driver_errors("get_device_type(): Could not obtain device type"):
            return int(device.type)

    def device_info(self, device: cl.Device, name: str) -> str:
        """Return a string device property such as ``"name"``."""
        with driver_errors(f"Could not query device {name}"):
            return strip_nul(str(getattr(device, name)))

    def create_queue(
        self,
        context: cl.Context,
        device: cl.Device,
        out_of_order: bool = False,
    ) -> cl.CommandQueue:
        properties = 0
        if out_of_order:
            properties = (
                cl.command_queue_properties.OUT_OF_ORDER_EXEC_MODE_ENABLE
            )
        with driver_errors("Could not create command queue!"):
            return cl.CommandQueue(
                context, device=device, properties=properties
            )

    def finish(self, queue: cl.CommandQueue) -> None:
        with driver_errors("Could not finish command queue!"):
            queue.finish()

    # ------------------------------------------------------------------ #
    # Programs and kernels
    # ------------------------------------------------------------------ #
    def build_program(
        self,
        context: cl.Context,
        device: cl.Device,
        source: str,
        options: Sequence[str] = (),
    ) -> cl.Program:
        """Compile ``source`` for ``device``.

        Raises
        ------
        DriverError
            If the program object cannot be created.
        CompilationError
            With the device name and the compiler log when the build fails.
        """
        with driver_errors("Could not create program object!"):
            program = cl.Program(context, source)
        try:
            return program.build(options=list(options), devices=[device])
        except cl.Error as e:
            raise CompilationError(
                self.device_info(device, "name"),
                str(e),
                code=error_code(e),
            ) from e

    def build_log(self, program: cl.Program, device: cl.Device) -> str:
        with driver_errors("Could not obtain build log"):
            log = program.get_build_info(device, cl.program_build_info.LOG)
        return strip_nul(log).strip()

    def create_kernel(self, program: cl.Program, name: str) -> cl.Kernel:
        with driver_errors("Could not create kernel object!", kernel=name):
            return cl.Kernel(program, name)

    def set_arg(self, kernel: cl.Kernel, index: int, value: Any) -> None:
        with driver_errors(
            "Could not set kernel argument", index=index
        ):
            kernel.set_arg(index, value)

    def set_raw_arg(
        self,
        kernel: cl.Kernel,
        index: int,
        data: Any,
        nbytes: int,
    ) -> None:
        """Bind ``nbytes`` of ``data``, or reserve local memory if ``None``."""
        if data is None:
            value = cl.LocalMemory(nbytes)
        else:
            value = np.frombuffer(data, dtype=np.uint8, count=nbytes)
        with driver_errors(
            "Could not set kernel argument", index=index, nbytes=nbytes
        ):
            kernel.set_arg(index, value)

    def enqueue_kernel(
        self,
        queue: cl.CommandQueue,
        kernel: cl.Kernel,
        global_size: Sequence[int],
        local_size: Sequence[int],
        offset: Optional[Sequence[int]] = None,
        wait_for: Optional[Sequence[cl.Event]] = None,
    ) -> cl.Event:
        with driver_errors(
            "Could not enqueue kernel!",
            global_size=tuple(global_size),
            local_size=tuple(local_size),
        ):
            return cl.enqueue_nd_range_kernel(
                queue,
                kernel,
                tuple(global_size),
                tuple(local_size),
                global_work_offset=offset,
                wait_for=wait_for,
            )

    # ------------------------------------------------------------------ #
    # Buffers and transfers
    # ------------------------------------------------------------------ #
    def create_buffer(
        self,
        context: cl.Context,
        flags: int,
        nbytes: int,
        hostbuf: Optional[np.ndarray] = None,
    ) -> cl.Buffer:
        with driver_errors(
            "Could not create buffer object!", nbytes=nbytes, flags=flags
        ):
            return cl.Buffer(context, flags, size=nbytes, hostbuf=hostbuf)

    def enqueue_write(
        self,
        queue: cl.CommandQueue,
        buffer: cl.Buffer,
        host: np.ndarray,
        byte_offset: int = 0,
        blocking: bool = True,
        wait_for: Optional[Sequence[cl.Event]] = None,
    ) -> cl.Event:
        with driver_errors("Could not write to buffer!"):
            return cl.enqueue_copy(
                queue,
                buffer,
                host,
                dst_offset=byte_offset,
                is_blocking=blocking,
                wait_for=wait_for,
            )

    def enqueue_read(
        self,
        queue: cl.CommandQueue,
        host: np.ndarray,
        buffer: cl.Buffer,
        byte_offset: int = 0,
        blocking: bool = True,
        wait_for: Optional[Sequence[cl.Event]] = None,
    ) -> cl.Event:
        with driver_errors("Could not read from buffer!"):
            return cl.enqueue_copy(
                queue,
                host,
                buffer,
                src_offset=byte_offset,
                is_blocking=blocking,
                wait_for=wait_for,
            )
