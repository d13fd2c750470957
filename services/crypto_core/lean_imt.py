"""
Lean incremental Merkle tree over Poseidon2.

Append-only; depth is ceil(log2(size)). A node with no right sibling is carried
up unchanged instead of being hashed against a zero placeholder. Proofs use
``SIBLING_SENTINEL`` for levels where the node had no sibling, and verification
runs over a fixed ``MAX_DEPTH`` buffer where levels at or above the proof depth
are no-ops.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from services.crypto_core.poseidon2 import hash2

MAX_DEPTH = 32
SIBLING_SENTINEL = 0

HashFn = Callable[[int, int], int]


@dataclass(frozen=True)
class MerkleProof:
    leaf: int
    index: int
    depth: int
    root: int
    siblings: Tuple[int, ...]

    def verify(self, root: Optional[int] = None, hash_fn: HashFn = hash2) -> bool:
        return verify_proof(
            self.leaf,
            self.index,
            self.depth,
            self.root if root is None else root,
            self.siblings,
            hash_fn=hash_fn,
        )


def verify_proof(
    leaf: int,
    index: int,
    depth: int,
    root: int,
    siblings: Sequence[int],
    hash_fn: HashFn = hash2,
) -> bool:
    if not 0 <= depth <= MAX_DEPTH or len(siblings) > MAX_DEPTH:
        return False
    if index < 0 or index >= (1 << depth):
        return False
    padded = list(siblings) + [SIBLING_SENTINEL] * (MAX_DEPTH - len(siblings))
    current = leaf
    for level in range(MAX_DEPTH):
        if level >= depth:
            continue
        sibling = padded[level]
        if (index >> level) & 1:
            current = hash_fn(sibling, current)
        elif sibling != SIBLING_SENTINEL:
            current = hash_fn(current, sibling)
    return current == root


@dataclass
class LeanIMT:
    hash_fn: HashFn = hash2
    max_depth: int = MAX_DEPTH
    # nodes[level][i]; nodes[depth] holds the root alone
    _nodes: List[List[int]] = field(default_factory=lambda: [[]])
    _index: Dict[int, int] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self._nodes[0])

    @property
    def depth(self) -> int:
        return len(self._nodes) - 1

    @property
    def root(self) -> Optional[int]:
        if self.size == 0:
            return None
        return self._nodes[self.depth][0]

    @property
    def leaves(self) -> List[int]:
        return list(self._nodes[0])

    def has(self, leaf: int) -> bool:
        return leaf in self._index

    def index_of(self, leaf: int) -> int:
        return self._index.get(leaf, -1)

    def _climb(self, index: int, leaf: int, depth: int, read, write) -> int:
        node = leaf
        write(0, index, leaf)
        for level in range(depth):
            pos = index >> level
            if pos & 1:
                node = self.hash_fn(read(level, pos - 1), node)
            write(level + 1, pos >> 1, node)
        return node

    def _depth_for(self, size: int) -> int:
        depth = 0
        while (1 << depth) < size:
            depth += 1
        if depth > self.max_depth:
            raise ValueError("tree is full")
        return depth

    def insert(self, leaf: int) -> int:
        index = self.size
        depth = self._depth_for(index + 1)
        while len(self._nodes) <= depth:
            self._nodes.append([])

        def write(level: int, i: int, value: int) -> None:
            row = self._nodes[level]
            if i < len(row):
                row[i] = value
            else:
                row.append(value)

        root = self._climb(index, leaf, depth, lambda level, i: self._nodes[level][i], write)
        self._index.setdefault(leaf, index)
        return root

    def preview(self, leaves: Sequence[int]) -> List[Tuple[int, int, int]]:
        """(root, depth, size) after each of ``leaves`` would be inserted. Does not mutate."""
        overlay: Dict[Tuple[int, int], int] = {}

        def read(level: int, i: int) -> int:
            if (level, i) in overlay:
                return overlay[(level, i)]
            return self._nodes[level][i]

        def write(level: int, i: int, value: int) -> None:
            overlay[(level, i)] = value

        out = []
        for offset, leaf in enumerate(leaves):
            size = self.size + offset + 1
            depth = self._depth_for(size)
            out.append((self._climb(size - 1, leaf, depth, read, write), depth, size))
        return out

    def insert_many(self, leaves: Sequence[int]) -> Optional[int]:
        for leaf in leaves:
            self.insert(leaf)
        return self.root

    def generate_proof(self, index: int, depth: Optional[int] = None) -> MerkleProof:
        """Proof for the leaf at ``index``; ``depth`` may pad past the tree depth."""
        if not 0 <= index < self.size:
            raise IndexError(f"leaf index {index} out of range (size {self.size})")
        depth = self.depth if depth is None else depth
        if depth < self.depth or depth > self.max_depth:
            raise ValueError(f"proof depth {depth} outside [{self.depth}, {self.max_depth}]")

        siblings: List[int] = []
        pos = index
        for level in range(self.depth):
            sib = pos ^ 1
            nodes = self._nodes[level]
            siblings.append(nodes[sib] if sib < len(nodes) else SIBLING_SENTINEL)
            pos >>= 1
        siblings.extend([SIBLING_SENTINEL] * (depth - self.depth))
        return MerkleProof(self._nodes[0][index], index, depth, self.root, tuple(siblings))


__all__ = ["MAX_DEPTH", "SIBLING_SENTINEL", "MerkleProof", "verify_proof", "LeanIMT"]
