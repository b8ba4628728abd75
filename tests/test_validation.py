import logging
import unittest
from abc import ABC, abstractmethod
from typing import Optional, Protocol, runtime_checkable

import pytest

from objectfactory import BindingError, CircularDependencyError, Factory, SignatureError


class Plain: ...


class Node: ...


class ChildNode(Node):
    def __init__(self, parent: Node):
        self.parent = parent


class SelfReferring:
    def __init__(self, other: "SelfReferring"):
        self.other = other


class DanglingReference:
    def __init__(self, other: "NotDefinedAnywhere"):  # noqa: F821
        self.other = other


class TestRuntimeProtocolNonConformance(unittest.TestCase):
    factory: Factory

    @runtime_checkable
    class RepoProtocol(Protocol):
        def get(self) -> int: ...

    class BadRepo:
        # Missing `get`, does not conform to RepoProtocol
        def other(self) -> str:
            return "nope"

    def setUp(self):
        self.factory = Factory()

    def test_register_provider_raises_binding_error_when_provider_returns_non_conforming_instance(self):
        def make_repo() -> self.RepoProtocol:
            return self.BadRepo()

        with pytest.raises(BindingError):
            self.factory.register_provider(self.RepoProtocol, make_repo)
        assert not self.factory.is_registered(self.RepoProtocol)

    def test_register_class_raises_binding_error_for_non_conforming_class(self):
        with pytest.raises(BindingError) as ctx:
            self.factory.register_class(self.RepoProtocol, self.BadRepo)
        assert "missing members: get" in str(ctx.value)
        assert ctx.value.implementation is self.BadRepo


class TestRuntimeProtocolConformance(unittest.TestCase):
    factory: Factory

    @runtime_checkable
    class RepoProtocol(Protocol):
        def get(self) -> int: ...

    class GoodRepo:
        def get(self) -> int:
            return 42

    def setUp(self):
        self.factory = Factory()

    def test_register_provider_succeeds_when_provider_returns_conforming_instance(self):
        def make_repo() -> self.RepoProtocol:
            return self.GoodRepo()

        self.factory.register_provider(self.RepoProtocol, make_repo)

        repo = self.factory.get_instance(self.RepoProtocol)

        assert isinstance(repo, self.GoodRepo)
        assert repo.get() == 42

    def test_register_class_succeeds_for_conforming_class(self):
        self.factory.register_class(self.RepoProtocol, self.GoodRepo)

        repo = self.factory.get_instance(self.RepoProtocol)

        assert isinstance(repo, self.GoodRepo)
        assert repo.get() == 42


class TestProtocolSignatureNonConformance(unittest.TestCase):
    factory: Factory

    class RepoProtocol(Protocol):
        def get(self, key: str) -> int: ...

    def setUp(self):
        self.factory = Factory()

    def test_register_class_raises_binding_error_for_method_with_wrong_arity(self):
        class GetNoArgs:
            def get(self) -> int:
                return 1

        with pytest.raises(BindingError):
            self.factory.register_class(self.RepoProtocol, GetNoArgs)

    def test_register_class_raises_binding_error_for_non_callable_attribute(self):
        class GetIsNotCallable:
            get = 123

        with pytest.raises(BindingError):
            self.factory.register_class(self.RepoProtocol, GetIsNotCallable)

    def test_register_class_raises_binding_error_for_wrong_return_type(self):
        class GetReturnsWrongType:
            def get(self, key: str) -> str:
                return "not an int"

        with pytest.raises(BindingError):
            self.factory.register_class(self.RepoProtocol, GetReturnsWrongType)

    def test_register_class_accepts_method_with_more_optional_args(self):
        class GetWithDefault:
            def get(self, key: str, fallback: int = 0) -> int:
                return fallback

        self.factory.register_class(self.RepoProtocol, GetWithDefault)
        assert self.factory.get_instance(self.RepoProtocol).get("k") == 0


class TestRegisterClassConstraints(unittest.TestCase):
    factory: Factory

    def setUp(self):
        self.factory = Factory()

    def test_register_class_requires_subclass_of_concrete_interface(self):
        class Base: ...

        class NotDerived: ...

        with pytest.raises(BindingError):
            self.factory.register_class(Base, NotDerived)

    def test_failed_registration_leaves_interface_unbound_and_can_be_retried(self):
        class Base: ...

        class NotDerived: ...

        class Derived(Base): ...

        with pytest.raises(BindingError):
            self.factory.register_class(Base, NotDerived)
        assert not self.factory.is_registered(Base)

        self.factory.register_class(Base, Derived)
        assert isinstance(self.factory.get_instance(Base), Derived)

    def test_failed_registration_keeps_previous_binding(self):
        class Base: ...

        class Derived(Base): ...

        class NotDerived: ...

        self.factory.register_class(Base, Derived)
        with pytest.raises(BindingError):
            self.factory.register_class(Base, NotDerived)

        assert isinstance(self.factory.get_instance(Base), Derived)

    def test_register_class_rejects_abstract_implementation(self):
        class Runner(ABC):
            @abstractmethod
            def run(self) -> None: ...

        with pytest.raises(BindingError, match="abstract"):
            self.factory.register_class(Runner, Runner)

    def test_register_class_with_unloadable_implementation_raises(self):
        with pytest.raises(BindingError, match="Cannot load"):
            self.factory.register_class(Plain, "no_such_package.Plain")

    def test_register_any_class_with_empty_protocol_succeeds(self):
        class EmptyProto(Protocol): ...

        class AnyClass: ...

        self.factory.register_class(EmptyProto, AnyClass)

        assert isinstance(self.factory.get_instance(EmptyProto), AnyClass)

    def test_register_class_accepts_nominal_protocol_implementation(self):
        class Fooer(Protocol):
            def foo(self) -> None: ...

        class FooerImpl(Fooer):
            def foo(self) -> None:
                pass

        self.factory.register_class(Fooer, FooerImpl)

        assert isinstance(self.factory.get_instance(Fooer), FooerImpl)


class TestConstructorSignatures(unittest.TestCase):
    factory: Factory

    def setUp(self):
        self.factory = Factory()

    def test_unannotated_parameter_raises_signature_error(self):
        class Repo:
            def __init__(self, db):
                self.db = db

        with pytest.raises(SignatureError, match="use an instance provider"):
            self.factory.register_class(Repo, Repo)

    def test_non_class_annotation_raises_signature_error(self):
        class Repo:
            def __init__(self, ids: list[int]):
                self.ids = ids

        with pytest.raises(SignatureError, match="not an interface or class"):
            self.factory.register_class(Repo, Repo)

    def test_unknown_annotation_raises_signature_error(self):
        with pytest.raises(SignatureError, match="NotDefinedAnywhere"):
            self.factory.register_class(DanglingReference, DanglingReference)

    def test_self_referring_parameter_raises_circular_dependency_error(self):
        with pytest.raises(CircularDependencyError):
            self.factory.register_class(SelfReferring, SelfReferring)
        assert not self.factory.is_registered(SelfReferring)

    def test_parameter_typed_as_base_class_is_allowed(self):
        self.factory.register_class(ChildNode, ChildNode)

        child = self.factory.get_instance(ChildNode)

        assert type(child.parent) is Node


class TestProviderSignatures(unittest.TestCase):
    factory: Factory

    def setUp(self):
        self.factory = Factory()

    def test_provider_without_return_type_raises_before_being_called(self):
        calls = []

        def make_plain():
            calls.append(1)
            return Plain()

        with pytest.raises(SignatureError, match="must have return type"):
            self.factory.register_provider(Plain, make_plain)
        assert calls == []
        assert not self.factory.is_registered(Plain)

    def test_lambda_provider_raises_signature_error(self):
        with pytest.raises(SignatureError):
            self.factory.register_provider(Plain, lambda: Plain())

    def test_provider_with_required_argument_raises_signature_error(self):
        def make_plain(name: str) -> Plain:
            return Plain()

        with pytest.raises(SignatureError, match="no arguments"):
            self.factory.register_provider(Plain, make_plain)

    def test_provider_with_non_class_return_type_raises_signature_error(self):
        def make_plain() -> Optional[Plain]:  # noqa: UP007
            return Plain()

        with pytest.raises(SignatureError):
            self.factory.register_provider(Plain, make_plain)

    def test_provider_declaring_incompatible_return_type_raises_before_being_called(self):
        calls = []

        def make_node() -> Node:
            calls.append(1)
            return Node()

        with pytest.raises(BindingError):
            self.factory.register_provider(Plain, make_node)
        assert calls == []

    def test_provider_result_not_satisfying_interface_raises_binding_error(self):
        def make_node() -> Node:
            return Plain()

        with pytest.raises(BindingError) as ctx:
            self.factory.register_provider(Node, make_node)
        assert ctx.value.implementation is make_node

    def test_provider_with_unresolvable_return_type_logs_warning(self):
        def make_plain() -> "NotDefinedAnywhere":  # noqa: F821
            return Plain()

        with self.assertLogs("objectfactory", level=logging.WARNING) as logs:
            self.factory.register_provider(Plain, make_plain)

        assert "NotDefinedAnywhere" in logs.output[0]
        assert isinstance(self.factory.get_instance(Plain), Plain)
