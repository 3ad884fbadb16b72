"""
kvcache — Key Distribution

Maps cache keys onto distributed nodes.

- ModuloDistribution: crc32(key) % node count, over the configured order.
  Any change to the node list remaps most keys.
- KetamaRing: consistent hashing with 160 points per node. Adding or removing
  a node only moves the keys that node owns. In compatible mode ring points
  and key hashes follow libketama (md5, four little-endian points per digest),
  so placement matches other ketama clients given the same server list.
"""

from __future__ import annotations

import bisect
import hashlib
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterable

POINTS_PER_NODE = 160


class Distribution(ABC):
    """Base class for node selection strategies."""

    def __init__(self, nodes: Iterable[str] = ()) -> None:
        self._nodes: list[str] = []
        for node in nodes:
            self.add_node(node)

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def add_node(self, node: str) -> None:
        if node in self._nodes:
            return
        self._nodes.append(node)
        self._rebuild()

    def remove_node(self, node: str) -> None:
        if node not in self._nodes:
            return
        self._nodes.remove(node)
        self._rebuild()

    def _rebuild(self) -> None:
        pass

    @abstractmethod
    def get_node(self, key: str) -> str | None:
        """Return the node owning key, or None when no nodes are left."""
        pass


class ModuloDistribution(Distribution):
    """Simple modulo distribution."""

    def get_node(self, key: str) -> str | None:
        if not self._nodes:
            return None
        return self._nodes[zlib.crc32(key.encode("utf-8")) % len(self._nodes)]


class KetamaRing(Distribution):
    """Consistent hash ring."""

    def __init__(self, nodes: Iterable[str] = (), compatible: bool = True) -> None:
        self.compatible = compatible
        self._points: list[int] = []
        self._owners: list[str] = []
        super().__init__(nodes)

    def _node_points(self, node: str) -> list[int]:
        if not self.compatible:
            return [zlib.crc32(f"{node}-{i}".encode()) for i in range(POINTS_PER_NODE)]

        points = []
        for i in range(POINTS_PER_NODE // 4):
            digest = hashlib.md5(f"{node}-{i}".encode(), usedforsecurity=False).digest()
            for h in range(4):
                points.append(int.from_bytes(digest[h * 4 : h * 4 + 4], "little"))
        return points

    def _hash_key(self, key: str) -> int:
        data = key.encode("utf-8")
        if not self.compatible:
            return zlib.crc32(data)
        digest = hashlib.md5(data, usedforsecurity=False).digest()
        return int.from_bytes(digest[0:4], "little")

    def _rebuild(self) -> None:
        ring: dict[int, str] = {}
        for node in self._nodes:
            for point in self._node_points(node):
                # first configured node keeps a colliding point
                ring.setdefault(point, node)

        self._points = sorted(ring)
        self._owners = [ring[p] for p in self._points]

    def get_node(self, key: str) -> str | None:
        if not self._points:
            return None
        idx = bisect.bisect_left(self._points, self._hash_key(key))
        if idx == len(self._points):
            idx = 0
        return self._owners[idx]
