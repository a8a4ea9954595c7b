"""Growable character and byte buffers."""

from __future__ import annotations


class StrBuf:
    """A string built up and trimmed one piece at a time."""

    def __init__(self) -> None:
        self._chars: list[str] = []

    def push_char(self, ch: str) -> None:
        """Append a single character."""
        if len(ch) != 1:
            raise ValueError("expected a single character")
        self._chars.append(ch)

    def push_chars(self, text: str) -> int:
        """Append ``text``; return the number of characters added."""
        if text is None:
            raise ValueError("no text given")
        self._chars.extend(text)
        return len(text)

    def pop_char(self) -> None:
        """Drop the last character."""
        if not self._chars:
            raise IndexError("buffer is empty")
        self._chars.pop()

    def pop_chars(self, n: int) -> None:
        """Drop the last ``n`` characters."""
        if n < 0 or n > len(self._chars):
            raise IndexError(f"cannot pop {n} characters")
        if n:
            del self._chars[-n:]

    def clear(self) -> None:
        """Empty the buffer."""
        self._chars.clear()

    def steal(self) -> str:
        """Return the contents and leave the buffer empty."""
        text = "".join(self._chars)
        self._chars = []
        return text

    def __str__(self) -> str:
        return "".join(self._chars)

    def __len__(self) -> int:
        return len(self._chars)


class ScratchBuf:
    """A byte buffer that only grows and keeps its contents when it does."""

    def __init__(self, initial: bytes | bytearray | int = 0) -> None:
        if isinstance(initial, int):
            if initial < 0:
                raise ValueError("size must not be negative")
            self.bytes = bytearray(initial)
        else:
            self.bytes = bytearray(initial)

    @property
    def size(self) -> int:
        """Current capacity in bytes."""
        return len(self.bytes)

    def alloc(self, size: int) -> None:
        """Make room for at least ``size`` bytes."""
        if size > len(self.bytes):
            self.bytes.extend(bytes(size - len(self.bytes)))

    def __str__(self) -> str:
        raw = bytes(self.bytes).split(b"\0", 1)[0]
        return raw.decode("utf-8", errors="surrogateescape")