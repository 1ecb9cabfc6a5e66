"""
clkit: OpenCL program caching and kernel launching
"""

from importlib.metadata import version, PackageNotFoundError

from clkit.arguments import ArgumentBinder, LocalMemory, RawMemory  # noqa
from clkit.buffers import BufferAllocationPolicy  # noqa
from clkit.cache import CompilationCache, scoped_name  # noqa
from clkit.config import ContextConfig  # noqa
from clkit.context import DeviceContext  # noqa
from clkit.driver import OpenCLDriver  # noqa
from clkit.errors import (  # noqa
    ClkitError,
    CompilationError,
    ContractViolation,
    DriverError,
    NotFoundError,
)
from clkit.invocation import KernelInvocation  # noqa
from clkit.launch import as_ndrange, resolve_global_size  # noqa
from clkit.modules import SourceModule, cl_type_name  # noqa
from clkit.platforms import (  # noqa
    DeviceGroup,
    get_devices,
    get_platforms,
    select_platform,
)
from clkit.time_logger import TimeLogger  # noqa

__all__ = [
    "ArgumentBinder",
    "BufferAllocationPolicy",
    "ClkitError",
    "CompilationCache",
    "CompilationError",
    "ContextConfig",
    "ContractViolation",
    "DeviceContext",
    "DeviceGroup",
    "DriverError",
    "KernelInvocation",
    "LocalMemory",
    "NotFoundError",
    "OpenCLDriver",
    "RawMemory",
    "SourceModule",
    "TimeLogger",
    "as_ndrange",
    "cl_type_name",
    "get_devices",
    "get_platforms",
    "resolve_global_size",
    "scoped_name",
    "select_platform",
]

try:
    __version__ = version("clkit")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "unknown"
