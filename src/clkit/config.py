"""Configuration container for device contexts."""

from typing import Optional, Set, Tuple

from attrs import define, evolve, field, fields, validators as val


def _to_options(value) -> Tuple[str, ...]:
    """Convert a string or iterable of strings to a tuple of options."""
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(value)


def getype_validator(dtype, min_):
    """Validate that a value is an instance of ``dtype`` and >= ``min_``."""

    def _validate(instance, attribute, value):
        if not isinstance(value, dtype) or isinstance(value, bool):
            raise TypeError(
                f"{attribute.name} must be of type {dtype.__name__}, "
                f"got {type(value).__name__}"
            )
        if value < min_:
            raise ValueError(
                f"{attribute.name} must be >= {min_}, got {value}"
            )

    return _validate


@define(frozen=True)
class ContextConfig:
    """Settings applied when a :class:`~clkit.context.DeviceContext` is built.

    Parameters
    ----------
    build_options
        Options passed to the OpenCL compiler for every program. A single
        string is split on whitespace.
    zero_copy
        Buffer allocation policy. ``"auto"`` uses host-pointer flags on
        CPU-class devices and copy flags elsewhere; ``"always"`` and
        ``"never"`` force one behaviour regardless of device class.
    num_queues
        Number of command queues created with the context.
    out_of_order
        Whether the queues created with the context execute out of order.
    warn_on_build_log
        Emit a ``RuntimeWarning`` when a successful build produces a
        non-empty compiler log.
    verbosity
        Verbosity of the context's :class:`~clkit.time_logger.TimeLogger`.
    """

    build_options: Tuple[str, ...] = field(
        default=(),
        converter=_to_options,
        validator=val.deep_iterable(
            val.instance_of(str), val.instance_of(tuple)
        ),
    )
    zero_copy: str = field(
        default="auto",
        validator=val.in_(("auto", "always", "never")),
    )
    num_queues: int = field(
        default=1,
        validator=getype_validator(int, 1),
    )
    out_of_order: bool = field(
        default=False,
        validator=val.instance_of(bool),
    )
    warn_on_build_log: bool = field(
        default=False,
        validator=val.instance_of(bool),
    )
    verbosity: Optional[str] = field(
        default=None,
        validator=val.optional(val.in_(("default", "verbose", "debug"))),
    )

    def updated(
        self, updates_dict: Optional[dict] = None, **kwargs
    ) -> Tuple["ContextConfig", Set[str]]:
        """Return a validated copy with new values and the changed keys.

        The configuration is immutable; apply changes to a live context with
        :meth:`~clkit.context.DeviceContext.update_config`.

        Parameters
        ----------
        updates_dict
            Mapping of setting names to new values.
        **kwargs
            Additional settings to update.

        Returns
        -------
        tuple of (ContextConfig, set of str)
            The new configuration and the names of settings whose values
            changed.

        Raises
        ------
        KeyError
            If a setting name does not match any field.
        """
        updates = dict(updates_dict or {})
        updates.update(kwargs)
        known = {fld.name for fld in fields(type(self))}
        unknown = set(updates) - known
        if unknown:
            raise KeyError(
                f"Unrecognised context settings: {sorted(unknown)}"
            )

        new = evolve(self, **updates)
        changed = {
            key for key in updates if getattr(new, key) != getattr(self, key)
        }
        return new, changed
