"""Error hierarchy for clkit.

Every failure reported by the OpenCL driver is wrapped in a
:class:`DriverError` carrying the raw driver code. Build failures are
reported as :class:`CompilationError`, unknown kernel names as
:class:`NotFoundError`, and precondition failures (mismatched launch
dimensions, queue indices out of range) as :class:`ContractViolation`.

Notes
-----
Nothing in clkit retries. Errors propagate synchronously to the immediate
caller and leave the owning device context usable for unrelated programs.
"""

from typing import Iterable, Optional


class ClkitError(Exception):
    """Base class for all clkit errors.

    Parameters
    ----------
    message
        Human-readable description of the failure.
    context
        Optional mapping of debugging details appended to the message.
    """

    def __init__(self, message: str, context: Optional[dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with its context block."""
        lines = [self.message]
        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")
        return "\n".join(lines)


class DriverError(ClkitError):
    """A native OpenCL failure.

    Parameters
    ----------
    message
        Description of the operation that failed.
    code
        Raw OpenCL status code, when the driver reported one.
    context
        Optional debugging details.

    Attributes
    ----------
    code : int or None
        Raw OpenCL status code.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        self.code = code
        if code is not None:
            message = f"OpenCL error {code}: {message}"
        else:
            message = f"OpenCL error: {message}"
        super().__init__(message, context=context)


class CompilationError(DriverError):
    """Building a program for a device failed.

    The message is the device name followed by the compiler's build log, so
    the diagnostics reach the caller unchanged.

    Parameters
    ----------
    device_name
        Name of the device the build targeted.
    build_log
        Diagnostic output of the OpenCL compiler.
    program_id
        Identifier under which the program would have been cached.
    code
        Raw OpenCL status code, if available.
    """

    def __init__(
        self,
        device_name: str,
        build_log: str,
        program_id: Optional[str] = None,
        code: Optional[int] = None,
    ):
        self.device_name = device_name
        self.build_log = build_log
        self.program_id = program_id
        context = {}
        if program_id is not None:
            context["program_id"] = program_id
        super().__init__(
            f"{device_name}: Could not compile CL source: {build_log}",
            code=code,
            context=context,
        )


class NotFoundError(ClkitError, LookupError):
    """A kernel was requested under a name that was never registered.

    Parameters
    ----------
    name
        The scoped kernel name that was looked up.
    known_names
        Names registered at the time of the lookup, reported as a hint.
    """

    def __init__(self, name: str, known_names: Iterable[str] = ()):
        self.name = name
        known = sorted(known_names)
        context = {}
        if known:
            context["registered kernels"] = ", ".join(known)
        super().__init__(
            f"Requested kernel '{name}' could not be found", context=context
        )


class ContractViolation(ClkitError, AssertionError):
    """A caller broke a precondition of a clkit operation.

    These are programming errors such as launching with minimum and local
    sizes of different dimensionality or addressing a command queue that does
    not exist. They are not meant to be caught and recovered from.
    """
