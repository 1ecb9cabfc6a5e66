"""Explicit platform and device selection.

Nothing here is global: callers enumerate platforms, pick one by preference,
and construct :class:`~clkit.context.DeviceContext` objects from the chosen
devices. A :class:`DeviceGroup` is a plain list of contexts with an active
index, used to register the same sources on several devices at once.
"""

from typing import Iterable, List, Optional, Sequence

import pyopencl as cl

from clkit.config import ContextConfig
from clkit.context import DeviceContext
from clkit.driver import error_code
from clkit.errors import ClkitError, ContractViolation, DriverError

PLATFORM_NOT_FOUND_KHR = -1001
DEVICE_NOT_FOUND = -1


def get_platforms() -> List[cl.Platform]:
    """Return all OpenCL platforms, or an empty list if none is installed."""
    try:
        return list(cl.get_platforms())
    except cl.Error as e:
        if error_code(e) == PLATFORM_NOT_FOUND_KHR:
            return []
        raise DriverError(
            "Could not query OpenCL platforms", code=error_code(e)
        ) from e


def get_devices(platform, device_type: int = cl.device_type.ALL) -> list:
    """Return the devices of ``platform`` matching ``device_type``."""
    try:
        return list(platform.get_devices(device_type=device_type))
    except cl.Error as e:
        if error_code(e) == DEVICE_NOT_FOUND:
            return []
        raise DriverError(
            "Could not query OpenCL devices", code=error_code(e)
        ) from e


def select_platform(
    preference_keywords: Sequence[str],
    platforms: Optional[Sequence] = None,
):
    """Choose a platform by keyword preference.

    Parameters
    ----------
    preference_keywords
        Keywords matched against platform names and vendors. Earlier
        keywords take priority. Platforms without devices are skipped.
    platforms
        Candidates; defaults to :func:`get_platforms`.

    Returns
    -------
    platform
        The first platform matching the highest-priority keyword, or the
        first platform if none matches.

    Raises
    ------
    ClkitError
        If there are no platforms at all.
    """
    if platforms is None:
        platforms = get_platforms()
    if not platforms:
        raise ClkitError("No available OpenCL platforms!")

    for keyword in preference_keywords:
        for platform in platforms:
            if not get_devices(platform):
                continue
            if keyword in platform.name or keyword in platform.vendor:
                return platform
    return platforms[0]


class DeviceGroup:
    """A set of device contexts with one marked active.

    Parameters
    ----------
    contexts
        Device contexts in the group; must not be empty.
    """

    def __init__(self, contexts: Iterable[DeviceContext]) -> None:
        self._contexts = list(contexts)
        if not self._contexts:
            raise ContractViolation("DeviceGroup needs at least one context")
        self._active_device = 0

    @classmethod
    def from_platform(
        cls,
        platform,
        device_type: int = cl.device_type.ALL,
        config: Optional[ContextConfig] = None,
        driver=None,
    ) -> "DeviceGroup":
        """Create one context per matching device of ``platform``."""
        devices = get_devices(platform, device_type)
        return cls(
            DeviceContext(device, config=config, driver=driver)
            for device in devices
        )

    @property
    def num_devices(self) -> int:
        return len(self._contexts)

    @property
    def contexts(self) -> tuple:
        return tuple(self._contexts)

    @property
    def active_device(self) -> int:
        return self._active_device

    def set_active_device(self, index: int) -> None:
        self._check_index(index)
        self._active_device = index

    def device(self, index: Optional[int] = None) -> DeviceContext:
        """Return the context at ``index``, or the active one."""
        if index is None:
            index = self._active_device
        self._check_index(index)
        return self._contexts[index]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._contexts):
            raise ContractViolation(
                f"device index {index} out of range; group has "
                f"{len(self._contexts)} device(s)"
            )

    def register_source_code(self, source, kernel_names, program_id=None,
                             scope=""):
        """Register kernels on every device in the group."""
        for ctx in self._contexts:
            ctx.register_source_code(source, kernel_names, program_id, scope)

    def register_source_file(self, path, kernel_names, scope=""):
        for ctx in self._contexts:
            ctx.register_source_file(path, kernel_names, scope)

    def register_source_module(self, module):
        for ctx in self._contexts:
            ctx.register_source_module(module)
