from __future__ import annotations

import inspect
import logging
import pkgutil
import types
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, get_type_hints

from ._errors import BindingError, CircularDependencyError, SignatureError, describe


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass(frozen=True)
class Dependency:
    """Constructor parameter descriptor, built once when a class is registered."""

    name: str
    capability: type
    keyword_only: bool = False


@dataclass
class Binding:
    implementation: type | None = None
    dependencies: tuple[Dependency, ...] = ()
    provider: Callable[[], object] | None = None
    shared_instance: object | None = None  # cached shared instance


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: Any) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: Any) -> bool:
        """Detect whether 'tp' is a typing.Protocol subclass (safe)."""
        return inspect.isclass(tp) and tp is not Protocol and bool(getattr(tp, "_is_protocol", False))


def is_class(tp: Any) -> bool:
    # list[int] and friends pass isinstance(tp, type) on older interpreters
    return inspect.isclass(tp) and not isinstance(tp, types.GenericAlias)


def load_type(token: Any) -> type | None:
    """Return the class a token names, or None.

    Tokens are either classes or import paths such as ``"package.module.Name"``
    or ``"package.module:Name"``.
    """
    if is_class(token):
        return token

    if not isinstance(token, str):
        return None

    try:
        loaded = pkgutil.resolve_name(token)
    except (ImportError, AttributeError, ValueError):
        return None

    return loaded if is_class(loaded) else None


def is_constructible(tp: Any) -> bool:
    return is_class(tp) and not inspect.isabstract(tp) and not is_protocol(tp)


def ensure_satisfies(interface: type, subject: Any, *, implementation: Any = None) -> None:
    """Raise BindingError unless 'subject' satisfies 'interface'.

    'subject' is a class, or an instance when checking a provider result.

    - For normal classes/ABCs: issubclass/isinstance.
    - For Protocols: nominal via MRO, otherwise best-effort structural conformance.
    """
    implementation = subject if implementation is None else implementation
    subject_type = subject if inspect.isclass(subject) else type(subject)

    if not is_protocol(interface):
        if inspect.isclass(subject):
            ok = issubclass(subject, interface)
        else:
            ok = isinstance(subject, interface)
        if not ok:
            msg = f"{describe(subject_type)} does not implement {describe(interface)}"
            raise BindingError(interface, implementation, msg)
        return

    if interface in subject_type.__mro__:
        return

    problems = _structural_mismatches(interface, subject)
    if problems:
        msg = (
            f"{describe(subject_type)} does not structurally conform to protocol "
            f"{describe(interface)}: {'; '.join(problems)}"
        )
        raise BindingError(interface, implementation, msg)


def _protocol_members(proto_cls: type) -> dict[str, Any]:
    members: dict[str, Any] = {}
    for base in reversed(proto_cls.__mro__):
        if is_protocol(base):
            members.update(base.__dict__)
    return members


def _positional_arity(params: list[inspect.Parameter]) -> int:
    return sum(
        1
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )


def _structural_mismatches(proto_cls: type, subject: Any) -> list[str]:  # noqa: C901
    """Presence + basic callable arity + return type checks."""
    missing: list[str] = []
    signature_mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls)
    except (NameError, TypeError):
        proto_hints = {}

    for name in proto_hints:
        if name.startswith("_"):
            continue
        if not hasattr(subject, name):
            missing.append(name)

    for name, proto_attr in _protocol_members(proto_cls).items():
        if name.startswith("_") or not inspect.isfunction(proto_attr):
            continue

        if not hasattr(subject, name):
            missing.append(name)
            continue

        impl_attr = getattr(subject, name)
        if not callable(impl_attr):
            signature_mismatches.append(f"{name}: not callable")
            continue

        try:
            proto_sig = inspect.signature(proto_attr)
            impl_sig = inspect.signature(impl_attr)
        except (TypeError, ValueError) as e:
            signature_mismatches.append(f"{name}: unable to compare signatures ({e})")
            continue

        proto_params = [p for p in proto_sig.parameters.values() if p.name != "self"]
        impl_params = [p for p in impl_sig.parameters.values() if p.name != "self"]

        if _positional_arity(impl_params) < _positional_arity(proto_params):
            signature_mismatches.append(
                f"{name}: has fewer required positional params "
                f"({_positional_arity(impl_params)}) than protocol "
                f"({_positional_arity(proto_params)})"
            )

        proto_ret = proto_sig.return_annotation
        impl_ret = impl_sig.return_annotation
        if _comparable(proto_ret) and _comparable(impl_ret) and not _is_return_type_compatible(impl_ret, proto_ret):
            signature_mismatches.append(
                f"{name}: return type {impl_ret!r} is not compatible with protocol return type {proto_ret!r}"
            )

    msgs = []
    if missing:
        msgs.append(f"missing members: {', '.join(missing)}")
    if signature_mismatches:
        msgs.append(f"signature mismatches: {', '.join(signature_mismatches)}")
    return msgs


def _comparable(annotation: object) -> bool:
    # string annotations are left alone, they are not evaluated here
    return annotation is not inspect.Signature.empty and annotation is not Any and not isinstance(annotation, str)


def _is_return_type_compatible(impl_ret: object, proto_ret: object) -> bool:
    if impl_ret == proto_ret:
        return True

    if isinstance(impl_ret, type) and isinstance(proto_ret, type):
        return issubclass(impl_ret, proto_ret)

    # Union, TypeVar, generics...: conservative failure
    return False


def discover_dependencies(implementation: type) -> tuple[Dependency, ...]:
    """Build the ordered constructor dependency descriptors of 'implementation'.

    Every parameter of ``__init__`` except ``self`` must be annotated with a
    class. ``*args`` and ``**kwargs`` are ignored.
    """
    init = implementation.__init__
    if init is object.__init__:
        return ()

    try:
        params = list(inspect.signature(init).parameters.values())[1:]
    except (TypeError, ValueError) as exc:
        msg = f"Cannot inspect constructor of {describe(implementation)}: {exc}"
        raise SignatureError(implementation, msg) from exc

    try:
        hints = get_type_hints(init)
    except NameError as exc:
        msg = f"Invalid interface/class in constructor of {describe(implementation)}: {exc}"
        raise SignatureError(implementation, msg) from exc
    except TypeError:
        # builtins and extension types carry no annotations
        hints = {}

    dependencies = []
    for p in params:
        if p.kind in _VARIADIC:
            continue

        if p.annotation is inspect.Parameter.empty:
            msg = (
                f"Parameter '{p.name}' of {describe(implementation)} has no type annotation. "
                "Non-typed arguments are not supported, use an instance provider instead."
            )
            raise SignatureError(implementation, msg)

        hint = hints.get(p.name)
        if not is_class(hint):
            msg = (
                f"Parameter '{p.name}' of {describe(implementation)} is annotated with "
                f"{p.annotation!r}, which is not an interface or class. Use an instance provider instead."
            )
            raise SignatureError(implementation, msg)

        if hint is implementation:
            raise CircularDependencyError(implementation, (implementation, implementation))

        dependencies.append(Dependency(p.name, hint, keyword_only=p.kind is inspect.Parameter.KEYWORD_ONLY))

    return tuple(dependencies)


def provider_return_type(interface: type, provider: Callable[..., object]) -> type | None:
    """Validate a provider's signature and return its declared return class.

    Returns None when the return annotation exists but cannot be evaluated.
    """
    try:
        sig = inspect.signature(provider)
    except (TypeError, ValueError) as exc:
        msg = f"Cannot inspect instance provider for {describe(interface)}: {exc}"
        raise SignatureError(provider, msg) from exc

    required = [p.name for p in sig.parameters.values() if p.kind not in _VARIADIC and p.default is p.empty]
    if required:
        msg = f"Instance provider for {describe(interface)} must take no arguments (requires {', '.join(required)})"
        raise SignatureError(provider, msg)

    if sig.return_annotation is inspect.Signature.empty:
        msg = f"Instance provider for {describe(interface)} must have return type"
        raise SignatureError(provider, msg)

    try:
        hints = get_type_hints(provider)
    except NameError as exc:
        logger.warning(
            "Cannot evaluate return type of provider for %s (%s), skipping declared type check",
            describe(interface),
            exc,
        )
        return None
    except TypeError:
        return None

    declared = hints.get("return")
    if not is_class(declared):
        msg = f"Instance provider for {describe(interface)} must declare a class as return type, got {declared!r}"
        raise SignatureError(provider, msg)

    return declared
