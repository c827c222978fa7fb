"""Built-in rule functions; importing this package registers them."""

from . import completers, formatters, validators  # noqa: F401

__all__ = ["completers", "formatters", "validators"]
