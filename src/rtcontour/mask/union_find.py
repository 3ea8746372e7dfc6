"""Disjoint set forest stored as flat index arrays."""

from typing import List, Optional

import numpy as np


class UnionFind:
    """Union by rank with path compression over the nodes ``0 .. size - 1``.

    Parents are indices into the same arena; a node is a root when it is its
    own parent. Labels live on roots only.
    """

    def __init__(self, size: int):
        if size < 0:
            raise ValueError(f"Size must be non-negative, got {size}")
        self.parent: List[int] = list(range(size))
        self.rank: List[int] = [0] * size
        self.has_label: List[bool] = [False] * size
        self.label: List[int] = [0] * size

    def __len__(self) -> int:
        return len(self.parent)

    def find(self, node: int) -> int:
        parent = self.parent
        root = node
        while parent[root] != root:
            root = parent[root]
        # second sweep flattens the path onto the root
        while parent[node] != root:
            parent[node], node = root, parent[node]
        return root

    def union(self, a: int, b: int) -> int:
        """Merge the sets holding ``a`` and ``b`` and return the surviving root."""
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a

        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return root_a

    def same_set(self, a: int, b: int) -> bool:
        return self.find(a) == self.find(b)

    def assign_label(self, node: int, label: int) -> None:
        root = self.find(node)
        self.label[root] = label
        self.has_label[root] = True

    def label_of(self, node: int) -> Optional[int]:
        root = self.find(node)
        return self.label[root] if self.has_label[root] else None

    def set_count(self) -> int:
        return sum(1 for i, p in enumerate(self.parent) if i == p)

    def roots(self) -> np.ndarray:
        """Compress every path at once and return the root of each node."""
        parent = np.asarray(self.parent, dtype=np.int64)
        while True:
            grand_parent = parent[parent]
            if np.array_equal(grand_parent, parent):
                break
            parent = grand_parent
        self.parent = parent.tolist()
        return parent
