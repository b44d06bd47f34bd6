"""Table correlating foreign callbacks with the run they belong to."""

import contextlib
import itertools
import threading
from typing import Dict, Iterator

from torchodeinterface.callback._call_context import CallContext
from torchodeinterface.callback._exceptions import InternalInconsistency


class CallRegistry:
    """
    Map call ids to the contexts of active runs.

    Ids come from a monotonically increasing counter starting at 1, so an id
    is never reused while the registry lives and 0 never names a run. The
    lock covers only table access; callbacks of one run never contend with
    each other because the kernel calls back synchronously.

    Examples
    --------
    >>> registry = CallRegistry()
    >>> with registry.registered(context) as call_id:
    ...     assert registry.lookup(call_id) is context
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._contexts: Dict[int, CallContext] = {}

    def register(self, context: CallContext) -> int:
        """Store ``context`` under a fresh id and set ``context.id``."""
        with self._lock:
            call_id = next(self._counter)
            self._contexts[call_id] = context
        context.id = call_id
        return call_id

    def lookup(self, call_id: int) -> CallContext:
        with self._lock:
            context = self._contexts.get(call_id)
        if context is None:
            raise InternalInconsistency(
                f"cannot find call id {call_id:#018x} in the call registry"
            )
        return context

    def unregister(self, call_id: int) -> None:
        with self._lock:
            context = self._contexts.pop(call_id, None)
        if context is None:
            raise InternalInconsistency(
                f"call id {call_id:#018x} is not registered"
            )

    @contextlib.contextmanager
    def registered(self, context: CallContext) -> Iterator[int]:
        """Register ``context`` for the duration of a ``with`` block."""
        call_id = self.register(context)
        try:
            yield call_id
        finally:
            self.unregister(call_id)

    def __contains__(self, call_id: int) -> bool:
        with self._lock:
            return call_id in self._contexts

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)


_DEFAULT_REGISTRY = CallRegistry()


def default_registry() -> CallRegistry:
    """Process-wide registry used by the top-level solver entry points."""
    return _DEFAULT_REGISTRY
