"""
Persistent stack of context values threaded through `prepare`.

Directories push a value (a date, a country code) before preparing their
children. Pushing returns a new stack, so the stack a caller holds is never
changed by a callee.
"""

from typing import Any, Iterator


class ImmutableStack:
    __slots__ = ("_head", "_tail", "_size")

    def __init__(self, head: Any = None, tail: "ImmutableStack | None" = None, *, _empty: bool = True):
        self._head = head
        self._tail = tail
        self._size = 0 if _empty else (tail._size if tail else 0) + 1

    @classmethod
    def empty(cls) -> "ImmutableStack":
        return _EMPTY

    @classmethod
    def of(cls, *values: Any) -> "ImmutableStack":
        """Build a stack with the last value on top."""
        stack = _EMPTY
        for value in values:
            stack = stack.push(value)
        return stack

    def push(self, value: Any) -> "ImmutableStack":
        return ImmutableStack(value, self, _empty=False)

    def pop(self) -> "ImmutableStack":
        if not self._size:
            raise IndexError("pop from empty stack")
        return self._tail

    def peek(self) -> Any:
        if not self._size:
            raise IndexError("peek at empty stack")
        return self._head

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __iter__(self) -> Iterator[Any]:
        """Iterate from the top of the stack downwards."""
        node = self
        while node._size:
            yield node._head
            node = node._tail

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ImmutableStack):
            return NotImplemented
        return len(self) == len(other) and list(self) == list(other)

    def __hash__(self) -> int:
        return hash(tuple(self))

    def __repr__(self) -> str:
        return f"ImmutableStack({list(reversed(list(self)))!r})"


_EMPTY = ImmutableStack()
