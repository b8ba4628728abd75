from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._bindings import (
    Binding,
    discover_dependencies,
    ensure_satisfies,
    is_constructible,
    load_type,
    provider_return_type,
)
from ._errors import (
    BindingError,
    CircularDependencyError,
    MissingInstanceProviderError,
    UnregisteredInterfaceError,
    describe,
)


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    T = TypeVar("T")

    Token = type[T] | str


class Factory:
    """Object factory and DI container.

    - bind interfaces to classes or to zero-argument providers
    - build instances recursively from constructor type hints
    - reject circular dependencies while building
    - lifetimes: transient (get_instance) / shared (get_shared_instance)

    One factory is meant to be created by the application and handed to its
    consumers. Registrations and binding lookups are serialized by a lock;
    construction itself runs outside of it, with one resolution stack per thread.
    Shared instances are built once under a per-interface lock; threads whose
    shared constructions wait on each other get a CircularDependencyError.
    """

    def __init__(self, *, auto_register: bool = True) -> None:
        self._bindings: dict[type, Binding] = {}
        self._lock = threading.RLock()
        self._shared_locks: dict[type, threading.RLock] = {}
        self._shared_owners: dict[type, tuple[int, int]] = {}  # interface -> (thread id, depth)
        self._shared_waits: dict[int, type] = {}  # thread id -> awaited interface
        self._local = threading.local()
        self._auto_register = auto_register

    def register_class(self, interface: Token[Any], implementation: Token[Any]) -> None:
        """Bind 'interface' to a concrete class.

        Constructor dependencies are discovered now, so a malformed constructor
        fails here rather than at first use.

        Example:
          factory.register_class(IUserModel, UserModel)
          factory.register_class("app.models.IUserModel", "app.models.UserModel")

        """
        iface = self._require_type(interface, interface, implementation)
        impl = self._require_type(implementation, iface, implementation)

        if not is_constructible(impl):
            msg = f"{describe(impl)} is abstract and cannot be instantiated"
            raise BindingError(iface, impl, msg)

        ensure_satisfies(iface, impl)
        dependencies = discover_dependencies(impl)

        with self._lock:
            self._bindings[iface] = Binding(implementation=impl, dependencies=dependencies)
        logger.debug("Registered %s -> %s", describe(iface), describe(impl))

    def register_provider(self, interface: Token[T], provider: Callable[[], T]) -> None:
        """Bind 'interface' to a zero-argument provider with a declared return type.

        The provider is called once right away; its result must satisfy the
        interface and becomes the shared instance.
        """
        iface = self._require_type(interface, interface, provider)

        declared = provider_return_type(iface, provider)
        if declared is not None:
            ensure_satisfies(iface, declared, implementation=provider)

        shared_instance = provider()
        ensure_satisfies(iface, shared_instance, implementation=provider)

        with self._lock:
            self._bindings[iface] = Binding(provider=provider, shared_instance=shared_instance)
        logger.debug("Registered provider %r for %s", provider, describe(iface))

    def is_registered(self, interface: Token[Any]) -> bool:
        iface = load_type(interface)
        with self._lock:
            return iface in self._bindings

    def resolve_or_auto_register(self, interface: Token[Any], *, skip_self_registration: bool = False) -> Binding:
        """Return the binding for 'interface'.

        When nothing is registered and 'interface' is itself a concrete class,
        bind it to itself first (unless 'skip_self_registration' is set or the
        factory was created with ``auto_register=False``).
        """
        iface = load_type(interface)
        if iface is None:
            raise UnregisteredInterfaceError(interface)

        binding = self._lookup(iface)
        if binding is not None:
            return binding

        if skip_self_registration or not self._auto_register or not is_constructible(iface):
            raise UnregisteredInterfaceError(iface)

        logger.debug("Implicitly registering %s to itself", describe(iface))
        self.register_class(iface, iface)
        return self.resolve_or_auto_register(iface, skip_self_registration=True)

    @overload
    def get_instance(self, interface: type[T], *, skip_self_registration: bool = ...) -> T: ...

    @overload
    def get_instance(self, interface: str, *, skip_self_registration: bool = ...) -> object: ...

    def get_instance(self, interface: Token[T], *, skip_self_registration: bool = False) -> object:
        """Build a new instance for 'interface'.

        - Provider binding: call the provider.
        - Class binding: resolve every constructor dependency, in declared
          order, then call the implementation.
        """
        iface = load_type(interface)
        if iface is None:
            raise UnregisteredInterfaceError(interface)

        stack = self._resolution_stack()
        if iface in stack:
            raise CircularDependencyError(iface, [*stack, iface])

        binding = self.resolve_or_auto_register(iface, skip_self_registration=skip_self_registration)
        return self._construct(iface, binding)

    @overload
    def get_shared_instance(self, interface: type[T]) -> T: ...

    @overload
    def get_shared_instance(self, interface: str) -> object: ...

    def get_shared_instance(self, interface: Token[T]) -> object:
        """Same as get_instance, but the first result is cached and returned ever after.

        The result is cached on the binding it was built from. If the interface
        is registered again while it is being built, the new binding wins and
        its shared instance is returned instead.
        """
        iface = load_type(interface)
        if iface is None:
            raise UnregisteredInterfaceError(interface)

        binding = self._lookup(iface)
        if binding is not None and binding.shared_instance is not None:
            return binding.shared_instance

        with self._shared_guard(iface):
            binding = self.resolve_or_auto_register(iface)
            if binding.shared_instance is not None:
                return binding.shared_instance

            instance = self._construct(iface, binding)

            with self._lock:
                current = self._bindings.get(iface) is binding
                if current:
                    binding.shared_instance = instance

            if current:
                logger.debug("Created shared instance of %s", describe(iface))
                return instance

        logger.debug("%s was registered again while its shared instance was built", describe(iface))
        return self.get_shared_instance(iface)

    def _construct(self, iface: type, binding: Binding) -> object:
        stack = self._resolution_stack()
        if iface in stack:
            raise CircularDependencyError(iface, [*stack, iface])

        stack.append(iface)
        try:
            return self._build(iface, binding)
        finally:
            stack.pop()

    def _build(self, iface: type, binding: Binding) -> object:
        if binding.provider is not None and callable(binding.provider):
            return binding.provider()

        if binding.implementation is None:
            raise MissingInstanceProviderError(iface)

        args: list[object] = []
        kwargs: dict[str, object] = {}
        for dependency in binding.dependencies:
            value = self.get_instance(dependency.capability)
            if dependency.keyword_only:
                kwargs[dependency.name] = value
            else:
                args.append(value)

        return binding.implementation(*args, **kwargs)

    def _lookup(self, iface: type) -> Binding | None:
        with self._lock:
            return self._bindings.get(iface)

    @contextmanager
    def _shared_guard(self, iface: type) -> Iterator[None]:
        """Hold the per-interface shared lock of 'iface'.

        Threads building shared instances that wait on each other's locks form
        a cycle across threads; the thread closing it raises
        CircularDependencyError instead of blocking forever.
        """
        me = threading.get_ident()
        with self._lock:
            lock = self._shared_locks.setdefault(iface, threading.RLock())
            acquired = lock.acquire(blocking=False)
            if acquired:
                self._own_shared(iface, me)
            else:
                self._check_shared_wait(iface, me)
                self._shared_waits[me] = iface

        if not acquired:
            try:
                lock.acquire()
            finally:
                with self._lock:
                    del self._shared_waits[me]
            with self._lock:
                self._own_shared(iface, me)

        try:
            yield
        finally:
            with self._lock:
                _, depth = self._shared_owners[iface]
                if depth == 1:
                    del self._shared_owners[iface]
                else:
                    self._shared_owners[iface] = (me, depth - 1)
            lock.release()

    def _own_shared(self, iface: type, me: int) -> None:
        _, depth = self._shared_owners.get(iface, (me, 0))
        self._shared_owners[iface] = (me, depth + 1)

    def _check_shared_wait(self, iface: type, me: int) -> None:
        # follow owner -> awaited interface -> owner ... back to this thread
        chain = [iface]
        current = iface
        while True:
            owner = self._shared_owners.get(current)
            if owner is None:
                return
            if owner[0] == me:
                raise CircularDependencyError(iface, [*chain, iface])
            current = self._shared_waits.get(owner[0])
            if current is None:
                return
            chain.append(current)

    def _resolution_stack(self) -> list[type]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def _require_type(self, token: Any, interface: Any, implementation: Any) -> type:
        loaded = load_type(token)
        if loaded is None:
            msg = f"Cannot load interface/class {describe(token)}"
            raise BindingError(interface, implementation, msg)
        return loaded

