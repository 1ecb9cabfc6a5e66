"""Buffer allocation flags chosen from device class and transfer intent.

On CPU-class devices the host and the device share memory, so buffers are
created zero-copy: either the caller's array becomes the backing store
(``USE_HOST_PTR``) or the driver allocates host-visible memory
(``ALLOC_HOST_PTR``). On other devices initial data is copied at creation
time (``COPY_HOST_PTR``) and the caller may release its array afterwards.

Notes
-----
With ``USE_HOST_PTR`` the caller's array must stay alive and unmodified for
the lifetime of the buffer.
"""

from typing import Set, Union

from attrs import define, field, validators as val
from pyopencl import mem_flags

ACCESS_FLAGS = {
    "read_write": mem_flags.READ_WRITE,
    "read_only": mem_flags.READ_ONLY,
    "write_only": mem_flags.WRITE_ONLY,
}

_FLAG_NAMES = {
    mem_flags.READ_WRITE: "READ_WRITE",
    mem_flags.READ_ONLY: "READ_ONLY",
    mem_flags.WRITE_ONLY: "WRITE_ONLY",
    mem_flags.USE_HOST_PTR: "USE_HOST_PTR",
    mem_flags.ALLOC_HOST_PTR: "ALLOC_HOST_PTR",
    mem_flags.COPY_HOST_PTR: "COPY_HOST_PTR",
}


def access_flags(access: Union[str, int]) -> int:
    """Return the access flag for ``access``.

    Parameters
    ----------
    access
        One of ``"read_write"``, ``"read_only"``, ``"write_only"``, or an
        integer combination of ``pyopencl.mem_flags`` that is passed
        through unchanged.
    """
    if isinstance(access, int):
        return access
    try:
        return ACCESS_FLAGS[access]
    except KeyError:
        raise ValueError(
            f"access must be one of {sorted(ACCESS_FLAGS)}, got '{access}'"
        ) from None


def describe(flags: int) -> Set[str]:
    """Return the names of the known flags set in ``flags``."""
    return {name for flag, name in _FLAG_NAMES.items() if flags & flag}


@define(frozen=True)
class BufferAllocationPolicy:
    """Adds copy/host-pointer flags to caller-chosen access flags.

    Parameters
    ----------
    is_cpu_device
        Whether the owning device is CPU-class.
    zero_copy
        ``"auto"`` follows the device class; ``"always"`` treats every
        device as CPU-class and ``"never"`` treats every device as an
        accelerator.
    """

    is_cpu_device: bool = field(validator=val.instance_of(bool))
    zero_copy: str = field(
        default="auto", validator=val.in_(("auto", "always", "never"))
    )

    @property
    def uses_host_memory(self) -> bool:
        """Whether buffers are created zero-copy."""
        if self.zero_copy == "always":
            return True
        if self.zero_copy == "never":
            return False
        return self.is_cpu_device

    def flags(
        self,
        access: Union[str, int] = "read_write",
        has_initial_data: bool = False,
    ) -> int:
        """Combine access flags with the policy's allocation flags.

        Parameters
        ----------
        access
            Caller-specified access mode, kept unchanged.
        has_initial_data
            Whether the buffer is initialised from a host array.

        Returns
        -------
        int
            Flags for :class:`pyopencl.Buffer`.
        """
        flags = access_flags(access)
        if self.uses_host_memory:
            if has_initial_data:
                flags |= mem_flags.USE_HOST_PTR
            else:
                flags |= mem_flags.ALLOC_HOST_PTR
        elif has_initial_data:
            flags |= mem_flags.COPY_HOST_PTR
        return flags
