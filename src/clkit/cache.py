"""In-memory cache of compiled programs and kernel handles for one device.

Programs are keyed by an explicit program identifier rather than by a hash
of their source text. Call sites instantiating the same source template with
different types or constants derive distinct identifiers and compile
independently, while repeated registrations of one instantiation compile
exactly once. Kernels are stored under scoped names (``scope::name``) so
same-named kernels from different source modules do not collide.

Notes
-----
The cache lives as long as its device context; nothing is persisted. It is
not thread-safe: registrations for one context must be serialised by the
caller.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Union
from warnings import warn

from clkit.errors import CompilationError, NotFoundError
from clkit.time_logger import TimeLogger

SCOPE_SEPARATOR = "::"


def scoped_name(name: str, scope: str = "") -> str:
    """Return ``scope::name``, or ``name`` when ``scope`` is empty."""
    if scope:
        return f"{scope}{SCOPE_SEPARATOR}{name}"
    return name


class CompilationCache:
    """Lazy, deduplicating store of programs and kernels.

    Parameters
    ----------
    driver
        Driver used to build programs and create kernels.
    context
        Driver context the programs are built in.
    device
        Device the programs are built for.
    device_name
        Name of the device, reported in compilation errors.
    build_options
        Compiler options applied to every build.
    time_logger
        Recorder for build events. A silent logger is created if omitted.
    warn_on_build_log
        Warn when a successful build produces compiler output.

    Attributes
    ----------
    time_logger : TimeLogger
        Recorder receiving one ``build:<program_id>`` start/stop pair per
        compilation, tagged ``category='build'``.
    """

    def __init__(
        self,
        driver,
        context,
        device,
        device_name: str = "",
        build_options: Sequence[str] = (),
        time_logger: Optional[TimeLogger] = None,
        warn_on_build_log: bool = False,
    ) -> None:
        self._driver = driver
        self._context = context
        self._device = device
        self._device_name = device_name
        self._build_options = tuple(build_options)
        self.time_logger = (
            time_logger if time_logger is not None else TimeLogger(None)
        )
        self._warn_on_build_log = warn_on_build_log
        self._programs: Dict[str, object] = {}
        self._kernels: Dict[str, object] = {}

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    @property
    def kernel_names(self) -> tuple:
        """Scoped names of all registered kernels, in registration order."""
        return tuple(self._kernels)

    @property
    def program_ids(self) -> tuple:
        """Identifiers of all compiled programs, in compilation order."""
        return tuple(self._programs)

    @property
    def build_options(self) -> tuple:
        """Compiler options used by subsequent builds.

        Changing them does not rebuild programs that are already cached.
        """
        return self._build_options

    @build_options.setter
    def build_options(self, options: Sequence[str]) -> None:
        self._build_options = tuple(options)

    @property
    def warn_on_build_log(self) -> bool:
        return self._warn_on_build_log

    @warn_on_build_log.setter
    def warn_on_build_log(self, value: bool) -> None:
        self._warn_on_build_log = bool(value)

    def __contains__(self, name: str) -> bool:
        return name in self._kernels

    def __len__(self) -> int:
        return len(self._kernels)

    def has_program(self, program_id: str) -> bool:
        """Whether ``program_id`` has been compiled."""
        return program_id in self._programs

    def get_program(self, program_id: str):
        """Return the compiled program cached under ``program_id``.

        Raises
        ------
        NotFoundError
            If no program was compiled under that identifier.
        """
        try:
            return self._programs[program_id]
        except KeyError:
            raise NotFoundError(program_id, self._programs) from None

    def lookup(self, name: str):
        """Return the kernel registered under the scoped ``name``.

        Raises
        ------
        NotFoundError
            If ``name`` was never registered.
        """
        try:
            return self._kernels[name]
        except KeyError:
            raise NotFoundError(name, self._kernels) from None

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def register(
        self,
        source_text: str,
        kernel_names: Union[str, Iterable[str]],
        program_id: str,
        scope: str = "",
    ) -> List[str]:
        """Make the named kernels of ``source_text`` available.

        Parameters
        ----------
        source_text
            OpenCL C source defining the kernels.
        kernel_names
            Entry points to create handles for.
        program_id
            Identifier under which the compiled program is cached.
        scope
            Prefix disambiguating the kernel names; empty for none.

        Returns
        -------
        list of str
            Scoped names of the kernels created by this call. Empty when
            every name was already registered, in which case nothing is
            compiled.

        Raises
        ------
        CompilationError
            If the program had to be built and the build failed. No program
            is cached under ``program_id`` in that case.
        DriverError
            If a kernel handle could not be created.
        """
        if isinstance(kernel_names, str):
            kernel_names = [kernel_names]
        requested = list(dict.fromkeys(kernel_names))
        if not requested:
            warn(
                f"No kernel names given for program '{program_id}'; "
                "nothing was registered.",
                RuntimeWarning,
            )
            return []

        new_kernels = [
            name for name in requested
            if scoped_name(name, scope) not in self._kernels
        ]
        if not new_kernels:
            return []

        program = self._programs.get(program_id)
        if program is None:
            program = self._compile(source_text, program_id)
            self._programs[program_id] = program

        return self._load_kernels(program, new_kernels, scope)

    def _compile(self, source_text: str, program_id: str):
        event_name = f"build:{program_id}"
        self.time_logger.start_event(
            event_name, category="build", program_id=program_id
        )
        try:
            program = self._driver.build_program(
                self._context,
                self._device,
                source_text,
                self._build_options,
            )
        except CompilationError as e:
            self.time_logger.stop_event(
                event_name, category="build", status="failed"
            )
            raise CompilationError(
                e.device_name or self._device_name,
                e.build_log,
                program_id=program_id,
                code=e.code,
            ) from e
        self.time_logger.stop_event(
            event_name, category="build", status="ok"
        )

        if self._warn_on_build_log:
            log = self._driver.build_log(program, self._device)
            if log:
                warn(
                    f"{self._device_name}: build of '{program_id}' "
                    f"produced compiler output:\n{log}",
                    RuntimeWarning,
                )
        return program

    def _load_kernels(
        self, program, kernel_names: Sequence[str], scope: str
    ) -> List[str]:
        created = []
        for name in kernel_names:
            kernel = self._driver.create_kernel(program, name)
            full_name = scoped_name(name, scope)
            self._kernels[full_name] = kernel
            self.time_logger.progress(
                "kernels", f"registered {full_name}", category="kernel"
            )
            created.append(full_name)
        return created
