"""Source modules: OpenCL C source assembled at runtime.

A :class:`SourceModule` bundles kernel source text with the entry points it
defines, the element types and constants it is instantiated with, and other
modules it includes. The module derives a program identifier from its name
and instantiation parameters, so each distinct instantiation compiles once
per device and its kernels are registered under their own scope.

Examples
--------
>>> axpy = SourceModule(
...     "axpy",
...     '''
...     __kernel void axpy(__global T* y, __global const T* x, T a)
...     {
...       int gid = get_global_id(0);
...       if (gid < N) y[gid] += a * x[gid];
...     }
...     ''',
...     entrypoints=("axpy",),
...     types={"T": numpy.float32},
...     constants={"N": 1000},
... )
>>> axpy.program_id
'axpy<T=float,N=1000>'
>>> call = axpy.kernel(ctx, "axpy", 1000, 64)
"""

import re
from numbers import Integral, Real
from typing import Any, Mapping, Tuple

import numpy as np
from attrs import define, evolve, field, validators as val

from clkit.cache import scoped_name
from clkit.errors import NotFoundError
from clkit.invocation import KernelInvocation

CL_TYPE_NAMES = {
    np.dtype(np.int8): "char",
    np.dtype(np.int16): "short",
    np.dtype(np.int32): "int",
    np.dtype(np.int64): "long",
    np.dtype(np.uint8): "uchar",
    np.dtype(np.uint16): "ushort",
    np.dtype(np.uint32): "uint",
    np.dtype(np.uint64): "ulong",
    np.dtype(np.float16): "half",
    np.dtype(np.float32): "float",
    np.dtype(np.float64): "double",
}


def cl_type_name(dtype) -> str:
    """Return the OpenCL C name of a numpy scalar type.

    Raises
    ------
    TypeError
        If the type has no OpenCL C counterpart.
    """
    try:
        return CL_TYPE_NAMES[np.dtype(dtype)]
    except (KeyError, TypeError):
        raise TypeError(f"No OpenCL C type for {dtype!r}") from None


def _format_constant(value: Any) -> str:
    if isinstance(value, (bool, np.bool_)):
        return "1" if value else "0"
    if isinstance(value, Integral):
        return str(int(value))
    if isinstance(value, Real):
        return repr(float(value))
    raise TypeError(
        f"constants must be numbers, got {type(value).__name__}"
    )


def _as_pairs(value) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mapping or iterable of pairs to a tuple of pairs."""
    if isinstance(value, Mapping):
        value = value.items()
    return tuple((str(k), v) for k, v in value)


def _as_names(value) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@define(frozen=True)
class SourceModule:
    """A named unit of OpenCL C source with its entry points.

    Parameters
    ----------
    name
        Module name; the base of the program identifier and kernel scope.
    source
        OpenCL C source. Imported types and constants are available as
        preprocessor names.
    entrypoints
        Kernels defined in ``source`` that callers may launch.
    types
        Mapping of preprocessor names to numpy scalar types, emitted as
        ``#define NAME <cl type>``.
    constants
        Mapping of preprocessor names to numbers, emitted as
        ``#define NAME (value)``.
    includes
        Modules whose source is prepended. Each module's text is wrapped in
        an include guard so a module included twice is compiled once.
    """

    name: str = field(validator=val.instance_of(str))
    source: str = field(validator=val.instance_of(str))
    entrypoints: Tuple[str, ...] = field(default=(), converter=_as_names)
    types: Tuple[Tuple[str, Any], ...] = field(default=(), converter=_as_pairs)
    constants: Tuple[Tuple[str, Any], ...] = field(
        default=(), converter=_as_pairs
    )
    includes: Tuple["SourceModule", ...] = field(
        default=(), converter=tuple
    )

    def __attrs_post_init__(self):
        if not self.name:
            raise ValueError("module name cannot be empty")
        for _, dtype in self.types:
            cl_type_name(dtype)
        for _, value in self.constants:
            _format_constant(value)

    def instantiate(self, types=None, constants=None) -> "SourceModule":
        """Return a copy with updated type and constant parameters."""
        new_types = dict(self.types)
        new_types.update(types or {})
        new_constants = dict(self.constants)
        new_constants.update(constants or {})
        return evolve(self, types=new_types, constants=new_constants)

    @property
    def program_id(self) -> str:
        """Identifier unique to this module, its parameters and includes."""
        params = [f"{k}={cl_type_name(v)}" for k, v in self.types]
        params += [f"{k}={_format_constant(v)}" for k, v in self.constants]
        params += [f"include={module.program_id}" for module in self.includes]
        if not params:
            return self.name
        return f"{self.name}<{','.join(params)}>"

    @property
    def include_guard(self) -> str:
        return "CLKIT_MODULE_" + re.sub(r"\W", "_", self.program_id) + "_CL"

    @property
    def source_text(self) -> str:
        """Complete source including imports and included modules."""
        parts = [
            f"#ifndef {self.include_guard}",
            f"#define {self.include_guard}",
        ]
        parts += [module.source_text for module in self.includes]
        parts += [f"#define {k} {cl_type_name(v)}" for k, v in self.types]
        parts += [
            f"#define {k} ({_format_constant(v)})" for k, v in self.constants
        ]
        parts.append(self.source)
        parts.append(f"#endif // {self.include_guard}")
        return "\n".join(parts) + "\n"

    def register(self, ctx) -> list:
        """Register every entry point with a device context.

        Returns
        -------
        list of str
            Scoped names of newly registered kernels.
        """
        return ctx.register_source_code(
            self.source_text,
            self.entrypoints,
            program_id=self.program_id,
            scope=self.program_id,
        )

    def kernel_name(self, entrypoint: str) -> str:
        """Scoped name under which ``entrypoint`` is registered."""
        return scoped_name(entrypoint, self.program_id)

    def kernel(
        self,
        ctx,
        entrypoint: str,
        minimum_work_size,
        local_size,
        **kwargs: Any,
    ) -> KernelInvocation:
        """Compile on first use and return an invocation of ``entrypoint``.

        Raises
        ------
        NotFoundError
            If ``entrypoint`` is not one of the module's entry points.
        """
        if entrypoint not in self.entrypoints:
            raise NotFoundError(
                self.kernel_name(entrypoint),
                [self.kernel_name(e) for e in self.entrypoints],
            )
        ctx.register_source_code(
            self.source_text,
            [entrypoint],
            program_id=self.program_id,
            scope=self.program_id,
        )
        return ctx.kernel_call(
            self.kernel_name(entrypoint),
            minimum_work_size,
            local_size,
            **kwargs,
        )
