"""
Dependency Container

Holds the storage services built by the application factory. Services are
registered either as ready instances or as factories; a singleton factory
runs once, on first resolution, so a worker that never sweeps never builds
the sweeper.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DependencyNotFoundError(LookupError):
    """Raised when a service type has no registration."""
    pass


class _Registration:
    __slots__ = ("factory", "singleton", "instance", "built")

    def __init__(self, factory: Callable[[], Any], singleton: bool):
        self.factory = factory
        self.singleton = singleton
        self.instance = None
        self.built = False


class DependencyContainer:
    """
    Service registry keyed by interface type.

    Thread-safe: a lazily built singleton is constructed at most once even
    when several request threads resolve it at the same time.
    """

    def __init__(self):
        self._registrations: Dict[Type, _Registration] = {}
        self._overrides: Dict[Type, Any] = {}
        self._lock = threading.RLock()

    def register_instance(self, interface: Type[T], instance: T) -> None:
        """Register an already built service."""
        registration = _Registration(lambda: instance, singleton=True)
        registration.instance, registration.built = instance, True
        with self._lock:
            self._registrations[interface] = registration
        logger.debug(f"Registered instance for {interface.__name__}")

    def register_factory(self, interface: Type[T], factory: Callable[[], T],
                         singleton: bool = True) -> None:
        """
        Register a factory.

        Args:
            interface: Type the service is resolved by
            factory: Zero-argument callable building the service; it may
                resolve other services from this container
            singleton: Cache the first result instead of calling the factory
                on every resolution
        """
        with self._lock:
            self._registrations[interface] = _Registration(factory, singleton)
        logger.debug(f"Registered {'singleton' if singleton else 'per-call'} factory for {interface.__name__}")

    def resolve(self, interface: Type[T]) -> T:
        """
        Return the service registered for ``interface``.

        Raises:
            DependencyNotFoundError: If nothing is registered for it
        """
        with self._lock:
            if interface in self._overrides:
                return self._overrides[interface]
            registration = self._registrations.get(interface)
            if registration is None:
                raise DependencyNotFoundError(
                    f"No registration found for type: {interface.__name__}"
                )
            if not registration.singleton:
                factory = registration.factory
            else:
                # RLock: the factory may resolve its own dependencies
                if not registration.built:
                    registration.instance = registration.factory()
                    registration.built = True
                return registration.instance

        return factory()

    @contextmanager
    def override(self, interface: Type[T], replacement: T) -> Iterator[T]:
        """Resolve ``interface`` to ``replacement`` inside the block (tests)."""
        with self._lock:
            previous = self._overrides.get(interface, _MISSING)
            self._overrides[interface] = replacement
        try:
            yield replacement
        finally:
            with self._lock:
                if previous is _MISSING:
                    self._overrides.pop(interface, None)
                else:
                    self._overrides[interface] = previous

    def __contains__(self, interface: Type) -> bool:
        with self._lock:
            return interface in self._registrations or interface in self._overrides

    def __len__(self) -> int:
        with self._lock:
            return len(self._registrations)


_MISSING = object()
