"""Object factory with constructor auto-wiring.

This package provides a small dependency injection container for Python:
interfaces are bound to concrete classes or to zero-argument providers, and
instances are built recursively from constructor type hints.

Exports:
- `Factory`: registry and resolver, with transient (`get_instance`) and
  shared (`get_shared_instance`) lifetimes and circular dependency detection.
- `Binding`, `Dependency`: read-only view of what a registration stores.
- `FactoryError` and its subclasses, raised on registration or resolution failures.
"""

from ._bindings import Binding, Dependency
from ._errors import (
    BindingError,
    CircularDependencyError,
    FactoryError,
    MissingInstanceProviderError,
    SignatureError,
    UnregisteredInterfaceError,
)
from ._factory import Factory


__all__ = [
    "Binding",
    "BindingError",
    "CircularDependencyError",
    "Dependency",
    "Factory",
    "FactoryError",
    "MissingInstanceProviderError",
    "SignatureError",
    "UnregisteredInterfaceError",
]
