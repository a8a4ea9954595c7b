"""String-keyed hash table with sorted buckets."""

from __future__ import annotations

import bisect
import struct
from collections.abc import Callable, Iterator
from typing import Any

from kmodpy.util import align_power2

_MASK32 = 0xFFFFFFFF


def _signed_char(byte: int) -> int:
    return byte - 256 if byte > 127 else byte


def superfast_hash(key: str | bytes) -> int:
    """Return the 32-bit SuperFastHash of ``key``."""
    data = key.encode("utf-8", errors="surrogateescape") if isinstance(key, str) else bytes(key)
    length = len(data)
    rem = length & 3
    h = length & _MASK32

    for lo, hi in struct.iter_unpack("<HH", data[:length - rem]):
        h = (h + lo) & _MASK32
        tmp = ((hi << 11) ^ h) & _MASK32
        h = ((h << 16) ^ tmp) & _MASK32
        h = (h + (h >> 11)) & _MASK32

    tail = data[length - rem:]
    if rem == 3:
        h = (h + struct.unpack("<H", tail[:2])[0]) & _MASK32
        h ^= (h << 16) & _MASK32
        h ^= (_signed_char(tail[2]) << 18) & _MASK32
        h = (h + (h >> 11)) & _MASK32
    elif rem == 2:
        h = (h + struct.unpack("<H", tail)[0]) & _MASK32
        h ^= (h << 11) & _MASK32
        h = (h + (h >> 17)) & _MASK32
    elif rem == 1:
        h = (h + _signed_char(tail[0])) & _MASK32
        h ^= (h << 10) & _MASK32
        h = (h + (h >> 1)) & _MASK32

    h ^= (h << 3) & _MASK32
    h = (h + (h >> 5)) & _MASK32
    h ^= (h << 4) & _MASK32
    h = (h + (h >> 17)) & _MASK32
    h ^= (h << 25) & _MASK32
    h = (h + (h >> 6)) & _MASK32
    return h


class _Bucket:
    __slots__ = ("keys", "values")

    def __init__(self) -> None:
        self.keys: list[str] = []
        self.values: list[Any] = []


class Hash:
    """Map from strings to values, with a fixed power-of-two bucket count.

    Iteration visits buckets in order and, within a bucket, keys in sorted
    order.
    """

    def __init__(self, n_buckets: int, free_value: Callable[[Any], None] | None = None) -> None:
        self.n_buckets = align_power2(n_buckets)
        self.free_value = free_value
        step = self.n_buckets // 32
        if step == 0:
            step = 4
        elif step > 64:
            step = 64
        self.step = step
        self._buckets = [_Bucket() for _ in range(self.n_buckets)]
        self._count = 0

    def _bucket(self, key: str) -> _Bucket:
        return self._buckets[superfast_hash(key) & (self.n_buckets - 1)]

    def _insert(self, key: str, value: Any, replace: bool) -> None:
        bucket = self._bucket(key)
        pos = bisect.bisect_left(bucket.keys, key)
        if pos < len(bucket.keys) and bucket.keys[pos] == key:
            if not replace:
                raise KeyError(key)
            if self.free_value is not None:
                self.free_value(bucket.values[pos])
            bucket.keys[pos] = key
            bucket.values[pos] = value
            return
        bucket.keys.insert(pos, key)
        bucket.values.insert(pos, value)
        self._count += 1

    def add(self, key: str, value: Any) -> None:
        """Add ``key`` or replace its value, releasing the old one."""
        self._insert(key, value, replace=True)

    def add_unique(self, key: str, value: Any) -> None:
        """Add ``key``; raise KeyError if it is already present."""
        self._insert(key, value, replace=False)

    def delete(self, key: str) -> None:
        """Remove ``key``; raise KeyError if it is absent."""
        bucket = self._bucket(key)
        pos = bisect.bisect_left(bucket.keys, key)
        if pos >= len(bucket.keys) or bucket.keys[pos] != key:
            raise KeyError(key)
        value = bucket.values[pos]
        del bucket.keys[pos]
        del bucket.values[pos]
        self._count -= 1
        if self.free_value is not None:
            self.free_value(value)

    def find(self, key: str) -> Any:
        """Return the value stored under ``key``, or None."""
        bucket = self._bucket(key)
        pos = bisect.bisect_left(bucket.keys, key)
        if pos < len(bucket.keys) and bucket.keys[pos] == key:
            return bucket.values[pos]
        return None

    def __len__(self) -> int:
        return self._count

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        bucket = self._bucket(key)
        pos = bisect.bisect_left(bucket.keys, key)
        return pos < len(bucket.keys) and bucket.keys[pos] == key

    def __iter__(self) -> Iterator[str]:
        for bucket in self._buckets:
            yield from list(bucket.keys)

    def items(self) -> Iterator[tuple[str, Any]]:
        """Yield ``(key, value)`` pairs in iteration order."""
        for bucket in self._buckets:
            yield from list(zip(bucket.keys, bucket.values))