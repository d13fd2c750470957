#!/usr/bin/env python3
"""
Regression fixtures for the lean incremental Merkle tree.

Builds a tree of Poseidon2-derived leaves and dumps every leaf with its
membership proof:

    {tree: {root, depth, size}, leaves: [{index, leaf, root, proof}]}

All field elements are 0x-prefixed 64-digit hex.
"""
import argparse
import json
import pathlib
import sys
from typing import Any, Dict, List, Optional

from services.api.logging_config import configure_logging, get_logger
from services.crypto_core.field import to_hex
from services.crypto_core.lean_imt import LeanIMT
from services.crypto_core.poseidon2 import hash2

logger = get_logger("tree_fixtures")


def fixture_leaves(n: int, seed: int = 0) -> List[int]:
    return [hash2(seed, i) for i in range(n)]


def build_fixture(n: int, seed: int = 0) -> Dict[str, Any]:
    if n < 0:
        raise ValueError("--leaves must be >= 0")
    tree = LeanIMT()
    leaves_out = []
    tree.insert_many(fixture_leaves(n, seed))
    for i in range(tree.size):
        proof = tree.generate_proof(i)
        leaves_out.append({
            "index": i,
            "leaf": to_hex(proof.leaf),
            "root": to_hex(proof.root),
            "proof": [to_hex(s) for s in proof.siblings],
        })
    return {
        "tree": {
            "root": None if tree.root is None else to_hex(tree.root),
            "depth": tree.depth,
            "size": tree.size,
        },
        "leaves": leaves_out,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Dump lean IMT leaves and proofs as JSON fixtures")
    parser.add_argument("--leaves", type=int, required=True, help="Number of leaves to insert")
    parser.add_argument("--seed", type=int, default=0, help="Leaf i is poseidon2(seed, i)")
    parser.add_argument("--out", default=None, help="Output file (default: stdout)")
    args = parser.parse_args(argv)

    configure_logging()
    fixture = build_fixture(args.leaves, args.seed)
    blob = json.dumps(fixture, indent=2)
    if args.out:
        path = pathlib.Path(args.out)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(blob + "\n")
        logger.info(f"wrote {args.leaves} leaves to {path}")
    else:
        sys.stdout.write(blob + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
