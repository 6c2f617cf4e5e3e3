"""
BTC Staking - Taproot Script Tree Assembly

This module provides:
- TapLeaf / TapBranch hashing (BIP341)
- Deterministic script tree construction from an ordered list of leaves
- Control block generation and parsing for script-path spending
- Output key derivation from an internal key and the tree's merkle root
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

from crypto.keys import (
    UNSPENDABLE_INTERNAL_KEY,
    is_valid_x_only,
    tagged_hash,
    taproot_output_script,
    taproot_tweak_public_key,
)
from scripts.encoding import serialize_compact_size, taproot_address


logger = logging.getLogger(__name__)

TAPSCRIPT_LEAF_VERSION = 0xc0
TAPROOT_LEAF_MASK = 0xfe
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32
TAPROOT_CONTROL_MAX_NODE_COUNT = 128
MAX_SCRIPT_SIZE = 10000


@dataclass(frozen=True)
class TapLeaf:
    """Represents a single leaf in the Taproot script tree."""
    script: bytes
    leaf_version: int = TAPSCRIPT_LEAF_VERSION

    def __post_init__(self):
        """Validate leaf parameters."""
        if not self.script:
            raise ValueError("Tap leaf script cannot be empty")
        if len(self.script) > MAX_SCRIPT_SIZE:
            raise ValueError("Tap leaf script too large")
        if self.leaf_version & ~TAPROOT_LEAF_MASK & 0xff:
            raise ValueError(f"Invalid leaf version: {self.leaf_version:#x}")

    def leaf_hash(self) -> bytes:
        """Compute TapLeaf hash for this leaf."""
        return tap_leaf_hash(self.script, self.leaf_version)


@dataclass(frozen=True)
class TapBranch:
    """Represents an internal node in the Taproot script tree."""
    left: Union['TapBranch', TapLeaf]
    right: Union['TapBranch', TapLeaf]

    def branch_hash(self) -> bytes:
        """Compute TapBranch hash for this internal node."""
        return tap_branch_hash(node_hash(self.left), node_hash(self.right))


TapNode = Union[TapBranch, TapLeaf]


def tap_leaf_hash(script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + serialize_compact_size(len(script)) + script)


def tap_branch_hash(left_hash: bytes, right_hash: bytes) -> bytes:
    # Children are ordered lexicographically so proofs need no direction bits
    if right_hash < left_hash:
        left_hash, right_hash = right_hash, left_hash
    return tagged_hash("TapBranch", left_hash + right_hash)


def node_hash(node: TapNode) -> bytes:
    if isinstance(node, TapLeaf):
        return node.leaf_hash()
    return node.branch_hash()


@dataclass(frozen=True)
class ControlBlock:
    """
    Control block for script-path spending (BIP341).

    Layout: 1 byte (leaf version | output key parity), 32-byte internal key,
    then the merkle path from the leaf's sibling up to the root's child.
    """
    leaf_version: int
    output_key_parity: int
    internal_key: bytes
    merkle_path: Tuple[bytes, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if len(self.internal_key) != 32:
            raise ValueError("Internal key must be 32 bytes (x-only)")
        if self.output_key_parity not in (0, 1):
            raise ValueError("Output key parity must be 0 or 1")
        if len(self.merkle_path) > TAPROOT_CONTROL_MAX_NODE_COUNT:
            raise ValueError("Merkle path too long")
        for node in self.merkle_path:
            if len(node) != TAPROOT_CONTROL_NODE_SIZE:
                raise ValueError("Merkle path nodes must be 32 bytes")

    def to_bytes(self) -> bytes:
        """Serialize the control block for inclusion in a witness."""
        first_byte = (self.leaf_version & TAPROOT_LEAF_MASK) | self.output_key_parity
        return bytes([first_byte]) + self.internal_key + b''.join(self.merkle_path)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ControlBlock':
        """
        Parse a serialized control block.

        Raises:
            ValueError: If the length is not 33 + 32m with m <= 128
        """
        if len(data) < TAPROOT_CONTROL_BASE_SIZE:
            raise ValueError("Control block too short")
        if (len(data) - TAPROOT_CONTROL_BASE_SIZE) % TAPROOT_CONTROL_NODE_SIZE:
            raise ValueError("Invalid control block length")

        path_bytes = data[TAPROOT_CONTROL_BASE_SIZE:]
        path = tuple(
            path_bytes[i:i + TAPROOT_CONTROL_NODE_SIZE]
            for i in range(0, len(path_bytes), TAPROOT_CONTROL_NODE_SIZE)
        )
        return cls(
            leaf_version=data[0] & TAPROOT_LEAF_MASK,
            output_key_parity=data[0] & 1,
            internal_key=data[1:TAPROOT_CONTROL_BASE_SIZE],
            merkle_path=path,
        )

    def root_hash(self, script: bytes) -> bytes:
        """Recompute the merkle root committed to by this proof for ``script``."""
        current = tap_leaf_hash(script, self.leaf_version)
        for sibling in self.merkle_path:
            current = tap_branch_hash(current, sibling)
        return current

    def verify_commitment(self, script: bytes, output_key: bytes) -> bool:
        """Check that ``script`` is committed in the output key ``output_key``."""
        if not is_valid_x_only(self.internal_key):
            return False
        expected_key, parity = taproot_tweak_public_key(self.internal_key, self.root_hash(script))
        return expected_key == output_key and parity == self.output_key_parity


@dataclass(frozen=True)
class TaprootScriptTree:
    """
    Immutable Taproot script tree with one inclusion proof per leaf.

    ``leaves`` keeps the order they were supplied in; ``merkle_proofs[i]`` is
    the sibling path for ``leaves[i]``.
    """
    internal_key: bytes
    root: TapNode
    leaves: Tuple[TapLeaf, ...]
    merkle_proofs: Tuple[Tuple[bytes, ...], ...]
    output_key: bytes
    output_key_parity: int

    @property
    def merkle_root(self) -> bytes:
        return node_hash(self.root)

    @property
    def output_script(self) -> bytes:
        return taproot_output_script(self.output_key)

    def address(self, hrp: str) -> str:
        return taproot_address(self.output_key, hrp)

    def leaf_index(self, leaf: TapLeaf) -> int:
        """Find a leaf's position; raises KeyError if the tree does not commit to it."""
        target = leaf.leaf_hash()
        for index, candidate in enumerate(self.leaves):
            if candidate.leaf_hash() == target:
                return index
        raise KeyError(f"Leaf {target.hex()} not found in script tree")

    def control_block(self, leaf_index: int) -> ControlBlock:
        """Build the control block proving inclusion of ``leaves[leaf_index]``."""
        return ControlBlock(
            leaf_version=self.leaves[leaf_index].leaf_version,
            output_key_parity=self.output_key_parity,
            internal_key=self.internal_key,
            merkle_path=self.merkle_proofs[leaf_index],
        )


def assemble_taproot_script_tree(
    leaves: Sequence[TapLeaf],
    internal_key: bytes = UNSPENDABLE_INTERNAL_KEY
) -> TaprootScriptTree:
    """
    Build a script tree from an ordered list of leaves.

    Nodes are paired left to right on each level and an odd trailing node is
    carried up unchanged, so the shape depends only on the number of leaves.
    Three leaves [A, B, C] produce Branch(Branch(A, B), C).

    Args:
        leaves: Leaves in a fixed, caller-defined order
        internal_key: 32-byte x-only internal key (defaults to the BIP341
            unspendable point, disabling key-path spends)

    Returns:
        TaprootScriptTree with output key and per-leaf proofs
    """
    if not leaves:
        raise ValueError("At least one leaf is required to build a script tree")
    if len(internal_key) != 32 or not is_valid_x_only(internal_key):
        raise ValueError("Internal key must be a valid 32-byte x-only key")

    proofs: List[List[bytes]] = [[] for _ in leaves]
    # (node, indices of leaves under it)
    level: List[Tuple[TapNode, List[int]]] = [(leaf, [i]) for i, leaf in enumerate(leaves)]

    while len(level) > 1:
        next_level = []
        for i in range(0, len(level), 2):
            if i + 1 >= len(level):
                next_level.append(level[i])
                continue

            (left, left_leaves), (right, right_leaves) = level[i], level[i + 1]
            left_hash, right_hash = node_hash(left), node_hash(right)
            for index in left_leaves:
                proofs[index].append(right_hash)
            for index in right_leaves:
                proofs[index].append(left_hash)
            next_level.append((TapBranch(left, right), left_leaves + right_leaves))
        level = next_level

    root = level[0][0]
    output_key, parity = taproot_tweak_public_key(internal_key, node_hash(root))

    logger.debug(
        "Assembled taproot tree with %d leaves, root %s, output key %s",
        len(leaves), node_hash(root).hex(), output_key.hex()
    )

    return TaprootScriptTree(
        internal_key=internal_key,
        root=root,
        leaves=tuple(leaves),
        merkle_proofs=tuple(tuple(p) for p in proofs),
        output_key=output_key,
        output_key_parity=parity,
    )
