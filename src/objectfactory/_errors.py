from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Sequence


def describe(token: Any) -> str:
    """Human readable name of a token: qualified name for classes, repr otherwise."""
    if isinstance(token, type):
        if token.__module__ == "builtins":
            return token.__qualname__
        return f"{token.__module__}.{token.__qualname__}"
    return repr(token)


class FactoryError(RuntimeError):
    """Base class of every error raised by the factory."""


class UnregisteredInterfaceError(FactoryError):
    def __init__(self, interface: Any) -> None:
        self.interface = interface
        super().__init__(f"Interface {describe(interface)} not registered.")


class BindingError(FactoryError):
    def __init__(self, interface: Any, implementation: Any, reason: str) -> None:
        self.interface = interface
        self.implementation = implementation
        super().__init__(reason)


class SignatureError(FactoryError):
    def __init__(self, target: Any, reason: str) -> None:
        self.target = target
        super().__init__(reason)


class CircularDependencyError(FactoryError):
    def __init__(self, interface: Any, chain: Sequence[Any] = ()) -> None:
        self.interface = interface
        self.chain = tuple(chain)
        msg = f"Circular dependency on {describe(interface)}"
        if self.chain:
            msg += f" ({' -> '.join(describe(t) for t in self.chain)})"
        super().__init__(msg)


class MissingInstanceProviderError(FactoryError):
    def __init__(self, interface: Any) -> None:
        self.interface = interface
        super().__init__(f"There is no proper instance provider for {describe(interface)}")
