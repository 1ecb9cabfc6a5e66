"""Per-device context: queues, compiled programs, kernels and buffers.

A :class:`DeviceContext` binds one OpenCL device to one driver context. It
owns at least one command queue, the :class:`~clkit.cache.CompilationCache`
holding the device's programs and kernels, and the
:class:`~clkit.buffers.BufferAllocationPolicy` derived from the device class.

Notes
-----
Create exactly one context per physical device in use. The context is not
thread-safe; callers submitting from several threads must serialise access
to it.
"""

from os import fspath
from typing import Any, Iterable, List, Optional, Sequence, Set, Union

import numpy as np
from pyopencl import device_type as cl_device_type

from clkit.buffers import BufferAllocationPolicy
from clkit.cache import CompilationCache
from clkit.config import ContextConfig
from clkit.driver import OpenCLDriver
from clkit.errors import ContractViolation
from clkit.invocation import KernelInvocation
from clkit.launch import NDRangeLike, as_ndrange, resolve_global_size
from clkit.time_logger import TimeLogger


class DeviceContext:
    """Everything needed to run OpenCL code on one device.

    Parameters
    ----------
    device
        Device handle selected by the caller (see :mod:`clkit.platforms`).
    config
        Context settings. Defaults to :class:`~clkit.config.ContextConfig`.
    driver
        Driver implementation; defaults to
        :class:`~clkit.driver.OpenCLDriver`.
    context
        Existing driver context to reuse instead of creating one.

    Attributes
    ----------
    time_logger : TimeLogger
        Recorder for build events.
    cache : CompilationCache
        Programs and kernels compiled for this device.
    buffer_policy : BufferAllocationPolicy
        Allocation flags policy for this device.

    Raises
    ------
    DriverError
        If the driver context or the initial command queues could not be
        created.
    """

    def __init__(
        self,
        device,
        config: Optional[ContextConfig] = None,
        driver=None,
        context=None,
    ) -> None:
        self._config = config if config is not None else ContextConfig()
        self._driver = driver if driver is not None else OpenCLDriver()
        self._device = device
        if context is None:
            context = self._driver.create_context(device)
        self._context = context

        # Device class is fixed for the lifetime of the context
        self._device_type = self._driver.device_type(device)
        self._device_name = self._driver.device_info(device, "name")

        self._queues = []
        for _ in range(self._config.num_queues):
            self.add_queue(out_of_order=self._config.out_of_order)

        self.time_logger = TimeLogger(self._config.verbosity)
        self.cache = CompilationCache(
            self._driver,
            self._context,
            self._device,
            device_name=self._device_name,
            build_options=self._config.build_options,
            time_logger=self.time_logger,
            warn_on_build_log=self._config.warn_on_build_log,
        )
        self.buffer_policy = BufferAllocationPolicy(
            is_cpu_device=self.is_cpu_device,
            zero_copy=self._config.zero_copy,
        )

    def __repr__(self) -> str:
        return (
            f"DeviceContext(device='{self._device_name}', "
            f"queues={len(self._queues)}, kernels={len(self.cache)})"
        )

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #
    @property
    def config(self) -> ContextConfig:
        """Settings currently in effect; change them with update_config."""
        return self._config

    def update_config(
        self, updates_dict: Optional[dict] = None, **kwargs: Any
    ) -> Set[str]:
        """Change context settings and apply them to the live context.

        Parameters
        ----------
        updates_dict
            Mapping of :class:`~clkit.config.ContextConfig` field names to
            new values.
        **kwargs
            Additional settings to update.

        Returns
        -------
        set of str
            Names of settings whose values changed.

        Raises
        ------
        KeyError
            If a setting name does not match any field.

        Notes
        -----
        New build options and build-log warnings apply to programs compiled
        afterwards; cached programs are kept. ``num_queues`` is a minimum:
        missing queues are created with the new ``out_of_order`` setting and
        existing queues are never removed.
        """
        config, changed = self._config.updated(updates_dict, **kwargs)
        self._config = config
        if "zero_copy" in changed:
            self.buffer_policy = BufferAllocationPolicy(
                is_cpu_device=self.is_cpu_device,
                zero_copy=config.zero_copy,
            )
        if "build_options" in changed:
            self.cache.build_options = config.build_options
        if "warn_on_build_log" in changed:
            self.cache.warn_on_build_log = config.warn_on_build_log
        if "verbosity" in changed:
            self.time_logger.verbosity = config.verbosity
        while self.num_queues < config.num_queues:
            self.add_queue(out_of_order=config.out_of_order)
        return changed

    # ------------------------------------------------------------------ #
    # Device information
    # ------------------------------------------------------------------ #
    @property
    def device(self):
        return self._device

    @property
    def context(self):
        """Underlying driver context."""
        return self._context

    @property
    def driver(self):
        return self._driver

    @property
    def device_type(self) -> int:
        return self._device_type

    @property
    def is_cpu_device(self) -> bool:
        return bool(self._device_type & cl_device_type.CPU)

    @property
    def is_gpu_device(self) -> bool:
        return bool(self._device_type & cl_device_type.GPU)

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def device_vendor(self) -> str:
        return self._driver.device_info(self._device, "vendor")

    @property
    def device_version(self) -> str:
        """OpenCL version string reported by the device."""
        return self._driver.device_info(self._device, "version")

    @property
    def driver_version(self) -> str:
        return self._driver.device_info(self._device, "driver_version")

    @property
    def extensions(self) -> List[str]:
        """Extensions supported by the device."""
        return self._driver.device_info(self._device, "extensions").split()

    def is_extension_supported(self, extension: str) -> bool:
        return extension in self.extensions

    # ------------------------------------------------------------------ #
    # Command queues
    # ------------------------------------------------------------------ #
    @property
    def num_queues(self) -> int:
        return len(self._queues)

    def add_queue(self, out_of_order: bool = False) -> int:
        """Create a command queue and return its index."""
        self._queues.append(
            self._driver.create_queue(
                self._context, self._device, out_of_order=out_of_order
            )
        )
        return len(self._queues) - 1

    def add_out_of_order_queue(self) -> int:
        """Create an out-of-order command queue and return its index."""
        return self.add_queue(out_of_order=True)

    def ensure_queues(self, num_queues: int) -> None:
        """Create in-order queues until at least ``num_queues`` exist."""
        while self.num_queues < num_queues:
            self.add_queue()

    def queue(self, index: int = 0):
        """Return the command queue at ``index``.

        Raises
        ------
        ContractViolation
            If ``index`` does not name an existing queue.
        """
        if not 0 <= index < len(self._queues):
            raise ContractViolation(
                f"command queue index {index} out of range; context has "
                f"{len(self._queues)} queue(s)"
            )
        return self._queues[index]

    def finish(self, queue: Optional[int] = None) -> None:
        """Block until the given queue, or every queue, has drained."""
        if queue is not None:
            self._driver.finish(self.queue(queue))
            return
        for q in self._queues:
            self._driver.finish(q)

    # ------------------------------------------------------------------ #
    # Programs and kernels
    # ------------------------------------------------------------------ #
    def register_source_code(
        self,
        source: str,
        kernel_names: Union[str, Iterable[str]],
        program_id: Optional[str] = None,
        scope: str = "",
    ) -> List[str]:
        """Compile ``source`` on demand and register its kernels.

        Parameters
        ----------
        source
            OpenCL C source code.
        kernel_names
            Entry points defined in ``source``.
        program_id
            Cache identifier of the program. Defaults to the
            concatenation of the kernel names.
        scope
            Registers the kernels as ``scope::name`` when not empty.

        Returns
        -------
        list of str
            Scoped names of newly registered kernels.
        """
        if isinstance(kernel_names, str):
            kernel_names = [kernel_names]
        kernel_names = list(kernel_names)
        if program_id is None:
            program_id = "".join(kernel_names)
        return self.cache.register(source, kernel_names, program_id, scope)

    def register_source_file(
        self,
        path,
        kernel_names: Union[str, Iterable[str]],
        scope: str = "",
    ) -> List[str]:
        """Register the kernels of an OpenCL source file.

        The file path is used as program identifier.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        """
        path = fspath(path)
        with open(path, "r", encoding="utf-8") as source_file:
            source = source_file.read()
        return self.register_source_code(
            source, kernel_names, program_id=path, scope=scope
        )

    def register_source_module(self, module) -> List[str]:
        """Register all entry points of a :class:`~clkit.modules.SourceModule`."""
        return module.register(self)

    def get_kernel(self, name: str):
        """Return the kernel registered under the scoped ``name``.

        Raises
        ------
        NotFoundError
            If ``name`` was never registered.
        """
        return self.cache.lookup(name)

    def kernel_call(
        self,
        name: str,
        minimum_work_size: NDRangeLike,
        local_size: NDRangeLike,
        **kwargs: Any,
    ) -> KernelInvocation:
        """Return a :class:`~clkit.invocation.KernelInvocation` for ``name``.

        Keyword arguments are forwarded to the invocation.
        """
        return KernelInvocation(
            self,
            self.get_kernel(name),
            minimum_work_size,
            local_size,
            **kwargs,
        )

    def enqueue_ndrange_kernel(
        self,
        kernel,
        minimum_work_size: NDRangeLike,
        local_size: NDRangeLike,
        offset: Optional[NDRangeLike] = None,
        wait_for: Optional[Sequence[Any]] = None,
        queue: int = 0,
    ):
        """Launch ``kernel`` with its global size rounded up to ``local_size``.

        Returns
        -------
        event
            Completion event; the launch is not waited for.

        Raises
        ------
        ContractViolation
            On mismatched dimensionality or an unknown queue index.
        DriverError
            If the launch failed.
        """
        command_queue = self.queue(queue)
        global_size = resolve_global_size(minimum_work_size, local_size)
        if offset is not None:
            offset = as_ndrange(offset)
        return self._driver.enqueue_kernel(
            command_queue,
            kernel,
            global_size,
            as_ndrange(local_size),
            offset=offset,
            wait_for=wait_for,
        )

    # ------------------------------------------------------------------ #
    # Buffers
    # ------------------------------------------------------------------ #
    def create_buffer(
        self,
        size: int,
        dtype=np.float32,
        access: Union[str, int] = "read_write",
        initial_data: Optional[np.ndarray] = None,
    ):
        """Allocate a buffer of ``size`` elements of ``dtype``.

        Parameters
        ----------
        size
            Number of elements.
        dtype
            Element type.
        access
            ``"read_write"``, ``"read_only"``, ``"write_only"`` or raw
            ``pyopencl.mem_flags``.
        initial_data
            Optional C-contiguous array of ``dtype`` with at least ``size``
            elements. On CPU-class devices it becomes the backing store of
            the buffer and must outlive it.

        Raises
        ------
        TypeError
            If ``initial_data`` has the wrong dtype or layout.
        ValueError
            If ``initial_data`` holds fewer than ``size`` elements.
        DriverError
            If the allocation failed.
        """
        dtype = np.dtype(dtype)
        nbytes = int(size) * dtype.itemsize
        if initial_data is not None:
            _check_host_array(initial_data, dtype)
            if initial_data.size < size:
                raise ValueError(
                    f"initial_data holds {initial_data.size} elements, "
                    f"buffer needs {size}"
                )
        flags = self.buffer_policy.flags(
            access, has_initial_data=initial_data is not None
        )
        return self._driver.create_buffer(
            self._context, flags, nbytes, hostbuf=initial_data
        )

    def create_input_buffer(self, size, dtype=np.float32, initial_data=None):
        """Allocate a read-only buffer."""
        return self.create_buffer(size, dtype, "read_only", initial_data)

    def create_output_buffer(self, size, dtype=np.float32, initial_data=None):
        """Allocate a write-only buffer."""
        return self.create_buffer(size, dtype, "write_only", initial_data)

    # ------------------------------------------------------------------ #
    # Transfers
    # ------------------------------------------------------------------ #
    def memcpy_h2d(self, buffer, host, begin=None, end=None, queue=0):
        """Blocking copy from ``host`` into ``buffer``.

        Without a range the whole host array is written at the start of the
        buffer. With ``begin``/``end`` the first ``end - begin`` elements of
        ``host`` are written to elements ``[begin, end)`` of the buffer.
        """
        view, offset = _transfer_view(host, begin, end)
        self._driver.enqueue_write(
            self.queue(queue), buffer, view, byte_offset=offset,
            blocking=True,
        )

    def memcpy_h2d_async(
        self,
        buffer,
        host,
        begin=None,
        end=None,
        event_sink=None,
        wait_for=None,
        queue=0,
    ):
        """Non-blocking variant of :meth:`memcpy_h2d`; returns the event.

        ``host`` must not be modified until the event has completed.
        """
        view, offset = _transfer_view(host, begin, end)
        event = self._driver.enqueue_write(
            self.queue(queue), buffer, view, byte_offset=offset,
            blocking=False, wait_for=wait_for,
        )
        if event_sink is not None:
            event_sink.append(event)
        return event

    def memcpy_d2h(self, host, buffer, begin=None, end=None, queue=0):
        """Blocking copy from ``buffer`` into ``host``.

        With ``begin``/``end`` elements ``[begin, end)`` of the buffer are
        read into the first ``end - begin`` elements of ``host``.
        """
        view, offset = _transfer_view(host, begin, end, writable=True)
        self._driver.enqueue_read(
            self.queue(queue), view, buffer, byte_offset=offset,
            blocking=True,
        )

    def memcpy_d2h_async(
        self,
        host,
        buffer,
        begin=None,
        end=None,
        event_sink=None,
        wait_for=None,
        queue=0,
    ):
        """Non-blocking variant of :meth:`memcpy_d2h`; returns the event."""
        view, offset = _transfer_view(host, begin, end, writable=True)
        event = self._driver.enqueue_read(
            self.queue(queue), view, buffer, byte_offset=offset,
            blocking=False, wait_for=wait_for,
        )
        if event_sink is not None:
            event_sink.append(event)
        return event


def _check_host_array(host, dtype=None) -> None:
    if not isinstance(host, np.ndarray):
        raise TypeError(
            f"host data must be a numpy array, got {type(host).__name__}"
        )
    if dtype is not None and host.dtype != dtype:
        raise TypeError(
            f"host data has dtype {host.dtype}, expected {dtype}"
        )
    if not host.flags["C_CONTIGUOUS"]:
        raise TypeError("host data is not c-contiguous")


def _transfer_view(host, begin, end, writable=False):
    """Return the flat host view and byte offset for a transfer."""
    _check_host_array(host)
    if writable and not host.flags["WRITEABLE"]:
        raise TypeError("host destination is read-only")
    flat = host.reshape(-1)
    if begin is None and end is None:
        return flat, 0

    begin = 0 if begin is None else int(begin)
    end = flat.size + begin if end is None else int(end)
    if begin < 0 or end <= begin:
        raise ContractViolation(
            f"transfer range [{begin}, {end}) is empty or negative"
        )
    count = end - begin
    if count > flat.size:
        raise ContractViolation(
            f"transfer range [{begin}, {end}) needs {count} elements, host "
            f"array holds {flat.size}"
        )
    return flat[:count], begin * host.dtype.itemsize
