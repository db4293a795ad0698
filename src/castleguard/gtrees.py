"""
Generalization hierarchies for categorical quasi-identifier attributes.

A categorical attribute can be generalized in two ways. Without a hierarchy,
a cluster's generalization is simply the set of values its members hold.
With a hierarchy (a GTree), the generalization is the lowest node whose
leaves cover every member value, and its information loss is that node's
geometric size relative to the root's.

The GTree class extends treelib.Tree with the lookups the generalizer needs:
leaf-value indexing, lowest common ancestors, leaf ordering (used to keep
siblings together when a cluster is bisected) and a JSON representation so
hierarchies can live in engine configuration files.
"""

import json
import math
import tempfile
from collections import deque, namedtuple
from typing import Any, Iterable, Optional

import numpy as np
from treelib import (
    Node,  # type: ignore[reportPrivateImportUsage]  # Node is publicly exported from treelib
    Tree,  # type: ignore[reportPrivateImportUsage]  # Tree is publicly exported from treelib
)

from castleguard.constants import GTREE_ROOT_TAG, NOT_DEFINED_NA

GTreeData = namedtuple("GTreeData", ["geometric_size"])


class GTree(Tree):
    """
    Generalization tree for a categorical QI attribute.

    Leaves hold the concrete attribute values seen in the stream; inner nodes
    hold increasingly general labels, with the root (conventionally ``*``)
    covering every value.

    Attributes
    ----------
    value_to_leaf_nid : dict
        Maps leaf values to their node identifiers.
    value_to_leaf_rank : dict
        Maps leaf values to their position in a depth-first walk of the tree.
    """

    def __init__(
        self,
        tree: Optional["GTree"] = None,
        json_obj: Optional[dict[str, Any]] = None,
        identifier: Optional[str] = None,
        deep: bool = True,
    ) -> None:
        """
        Initialize a generalization tree.

        Parameters
        ----------
        tree : GTree, optional
            An existing GTree to copy, by default None
        json_obj : Dict[str, Any], optional
            A JSON object created by ``to_config_json``, by default None
        identifier : str, optional
            A string identifier for the tree, by default None
        deep : bool, optional
            Whether to deep copy ``tree``, by default True
        """
        super().__init__(tree=tree, deep=deep, identifier=identifier)
        assert not (tree is not None and json_obj is not None)
        self.value_to_leaf_nid: dict[Any, str] = {}
        self.value_to_leaf_rank: dict[Any, int] = {}
        if json_obj is not None:
            self.from_config_json(json_obj)

    def pprint(self) -> str:
        """Return a multi-line string representation of the hierarchy."""
        result = self.show(stdout=False)
        return str(result) if result is not None else ""

    def create_node(  # type: ignore[override]
        self,
        value: Any,
        parent: Optional[Node] = None,
        geometric_size: float = NOT_DEFINED_NA,
        identifier: Optional[str] = None,
    ) -> Node:  # pylint: disable=arguments-differ,arguments-renamed
        """
        Create a new node holding ``value``.

        Parameters
        ----------
        value : Any
            Value of the node. Leaf values must be hashable, they are what
            stream tuples carry for this attribute.
        parent : Node, optional
            Parent node, by default None (creates the root)
        geometric_size : float, optional
            Geometric size used for information loss, by default NaN
        identifier : str, optional
            Unique node identifier, by default generated by treelib

        Returns
        -------
        Node
            The new node.
        """
        self._reset_indexes()
        return super().create_node(
            tag=value,
            identifier=identifier,
            parent=parent,
            data=GTreeData(geometric_size),
        )

    def _reset_indexes(self) -> None:
        self.value_to_leaf_nid = {}
        self.value_to_leaf_rank = {}

    def update_leaf_indexes_if(self) -> bool:
        """
        Build the leaf value indexes if they are empty.

        Returns
        -------
        bool
            True if the indexes were rebuilt, False if already populated.
        """
        if self.value_to_leaf_nid or self.root is None:
            return False
        rank = 0
        for nid in self.expand_tree(self.root, mode=Tree.DEPTH, sorting=False):
            node = self.get_node(nid)
            assert node is not None
            if node.is_leaf():
                value = self.get_value(node)
                self.value_to_leaf_nid[value] = nid
                self.value_to_leaf_rank[value] = rank
                rank += 1
        return True

    def get_value(self, node: Node) -> Any:
        return node.tag

    def get_geometric_size(self, node: Node) -> float:
        return float(node.data.geometric_size)

    def root_node(self) -> Node:
        root_node = self.get_node(self.root)
        assert root_node is not None, "GTree has no root"
        return root_node

    def has_leaf_value(self, value: Any) -> bool:
        self.update_leaf_indexes_if()
        return value in self.value_to_leaf_nid

    def leaf_values(self) -> tuple[Any, ...]:
        """Leaf values in depth-first order."""
        self.update_leaf_indexes_if()
        return tuple(sorted(self.value_to_leaf_rank, key=self.value_to_leaf_rank.__getitem__))

    def leaf_rank(self, value: Any) -> int:
        """Position of a leaf value in depth-first order; siblings are adjacent."""
        self.update_leaf_indexes_if()
        return self.value_to_leaf_rank[value]

    def descendant_leaf_values(self, node: Node) -> tuple[Any, ...]:
        """All leaf values at or below ``node``, in depth-first order."""
        self.update_leaf_indexes_if()
        values = [self.get_value(leaf) for leaf in self.leaves(node.identifier)]
        return tuple(sorted(values, key=self.value_to_leaf_rank.__getitem__))

    def lowest_common_ancestor(self, values: Iterable[Any]) -> Node:
        """
        Find the lowest node whose leaves cover every value in ``values``.

        Parameters
        ----------
        values : Iterable[Any]
            Leaf values, must be non-empty and present in the tree.

        Returns
        -------
        Node
            The lowest common ancestor of the corresponding leaves.

        Raises
        ------
        ValueError
            If ``values`` is empty or holds a value that is not a leaf.
        """
        values = set(values)
        if not values:
            raise ValueError("values param must not be empty")
        self.update_leaf_indexes_if()
        common_path: Optional[list[str]] = None
        for value in values:
            if value not in self.value_to_leaf_nid:
                raise ValueError(f"Value {value!r} is not a leaf of the generalization tree")
            # root first
            path = list(reversed(list(self.rsearch(self.value_to_leaf_nid[value]))))
            if common_path is None:
                common_path = path
            else:
                shared = 0
                for mine, theirs in zip(common_path, path):
                    if mine != theirs:
                        break
                    shared += 1
                common_path = common_path[:shared]
        assert common_path, "leaves must share at least the root"
        node = self.get_node(common_path[-1])
        assert node is not None
        return node

    def relative_geometric_size(self, values: Iterable[Any]) -> float:
        """
        Geometric size of the lowest common ancestor of ``values`` over the root's.

        Returns 0.0 when the root has zero geometric size (a single-value domain).
        """
        root_size = self.get_geometric_size(self.root_node())
        if np.isnan(root_size) or root_size == 0:
            return 0.0
        return self.get_geometric_size(self.lowest_common_ancestor(values)) / root_size

    def add_default_geometric_sizes(self) -> None:
        """
        Compute and set default geometric sizes for all nodes in the tree.

        For each node the geometric size is 10^i - 1, where i is the number of
        distinct values on the longest walk from the node down to a leaf. Leaves
        therefore have size 0 and a flat tree's root has size 9.
        """
        node_to_unique_level: dict[str, int] = {}
        # post-order walk: every child is sized before its parent
        stack: deque[tuple[str, bool]] = deque([(self.root, False)] if self.root else [])
        while stack:
            nid, children_done = stack.pop()
            if not children_done:
                stack.append((nid, True))
                stack.extend((child.identifier, False) for child in self.children(nid))
                continue
            node = self.get_node(nid)
            assert node is not None
            children = self.children(nid)
            node_to_unique_level[nid] = max(
                (
                    node_to_unique_level[child.identifier]
                    + (0 if self.get_value(child) == self.get_value(node) else 1)
                    for child in children
                ),
                default=0,
            )
        for nid, unique_level in node_to_unique_level.items():
            node = self.get_node(nid)
            assert node is not None
            node.data = GTreeData(geometric_size=math.pow(10, unique_level) - 1)

    def to_config_json(self) -> dict[str, Any]:
        """
        Convert the tree to a JSON serializable dictionary.

        Returns
        -------
        Dict[str, Any]
            ``{"root_nid": ..., "nodes": {nid: [value, parent_nid, geometric_size, children]}}``
        """
        json_obj: dict[str, Any] = {"root_nid": self.root, "nodes": {}}
        for node in self.all_nodes_itr():
            parent = self.parent(node.identifier)
            json_obj["nodes"][node.identifier] = [
                self.get_value(node),
                parent.identifier if parent is not None else None,
                self.get_geometric_size(node),
                [child.identifier for child in self.children(node.identifier)],
            ]
        return json_obj

    def from_config_json(self, json_obj: dict[str, Any]) -> None:
        """
        Load the tree from a dictionary created by ``to_config_json``.

        Parameters
        ----------
        json_obj : Dict[str, Any]
            Dictionary representation of a GTree; it is not modified.
        """
        nodes = dict(json_obj["nodes"])
        queue = deque([json_obj["root_nid"]] if nodes else [])
        while queue:
            nid = queue.popleft()
            value, parent_nid, geometric_size, children = nodes.pop(nid)
            self.create_node(
                value,
                identifier=nid,
                parent=self.get_node(parent_nid) if parent_nid is not None else None,
                geometric_size=geometric_size,
            )
            queue.extend(children)
        assert not nodes, f"Nodes unreachable from the root: {sorted(nodes)}"

    def __eq__(self, other: Any) -> bool:
        """
        Two gtrees are equal if they hold the same values and geometric sizes in
        the same hierarchy (child order is ignored).
        """
        if not isinstance(other, GTree):
            return NotImplemented
        if self.root is None or other.root is None:
            return self.root is None and other.root is None
        return self._canonical(self.root_node()) == other._canonical(other.root_node())

    def _canonical(self, node: Node) -> tuple[Any, ...]:
        size = self.get_geometric_size(node)
        children = sorted(
            (self._canonical(child) for child in self.children(node.identifier)), key=repr
        )
        return (self.get_value(node), None if np.isnan(size) else size, tuple(children))


def make_flat_default_gtree(uniq_values: Iterable[Any]) -> GTree:
    """
    Create a two-level hierarchy: ``*`` at the root and every value as a leaf.

    Parameters
    ----------
    uniq_values : Iterable[Any]
        Values to place as leaves; duplicates are ignored and order is kept.

    Returns
    -------
    GTree
        A flat hierarchy with default geometric sizes.
    """
    gtree = GTree()
    root = gtree.create_node(GTREE_ROOT_TAG)
    for value in dict.fromkeys(uniq_values):
        gtree.create_node(value, parent=root)
    gtree.add_default_geometric_sizes()
    gtree.update_leaf_indexes_if()
    return gtree


def load_from_config_file(filename: str) -> GTree:
    """Load a GTree from a JSON file written by ``generate_config_file``."""
    with open(filename) as config_file:
        json_obj = json.load(config_file)
    return GTree(json_obj=json_obj)


def generate_config_file(gtree: GTree, filename: Optional[str] = None) -> str:
    """
    Serialize a GTree to a JSON file.

    Parameters
    ----------
    gtree : GTree
        The hierarchy to serialize.
    filename : str, optional
        Destination path; a temporary ``.json`` file is created when None.

    Returns
    -------
    str
        The path that was written.
    """
    if filename is None:
        _, filename = tempfile.mkstemp(suffix=".json")
    with open(filename, "w") as config_file:
        json.dump(gtree.to_config_json(), config_file)
    return filename
