"""Scene graph node classes for traversing a parsed DAE scene.

Provides the arena the SceneParser fills and the converter reads:
- Transform: local translation / rotation / scale of a node
- SceneNode: name, transform, geometry, materials, child indices
- SceneGraph: owns every node; nodes reference children by arena index

The graph is a strict tree. The parser builds it once; conversion only
reads it. Traversal uses an explicit stack so deep hierarchies cannot
exhaust the interpreter's recursion limit.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from mathutils import Matrix, Quaternion, Vector

from ..utils.diagnostics import report


@dataclass(frozen=True)
class Transform:
    """Local transform of a node.

    rotation is a unit quaternion in (w, x, y, z) order, the order
    mathutils.Quaternion uses.
    """

    translation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0)
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    @classmethod
    def identity(cls):
        return cls()

    @classmethod
    def from_matrix(cls, rows):
        """Decompose a 4x4 affine matrix into translation/rotation/scale.

        Args:
            rows: 4 rows of 4 floats, column-vector convention
                  (translation in the last column), or a mathutils.Matrix

        Returns:
            Transform
        """
        if isinstance(rows, Matrix):
            mat = rows
        else:
            mat = Matrix([tuple(float(v) for v in row) for row in rows])
        loc, rot, scale = mat.decompose()
        return cls(
            translation=tuple(float(c) for c in loc),
            rotation=(float(rot.w), float(rot.x), float(rot.y), float(rot.z)),
            scale=tuple(float(c) for c in scale),
        )

    def to_matrix(self):
        """Compose this transform into a 4x4 mathutils.Matrix."""
        return Matrix.LocRotScale(
            Vector(self.translation),
            Quaternion(self.rotation),
            Vector(self.scale),
        )

    @property
    def is_identity(self):
        return self == Transform()


@dataclass
class SceneNode:
    """One node of the scene tree.

    children holds arena indices into the owning SceneGraph, in document
    order. materials, when non-empty, overrides geometry.materials for this
    node (per-instance material binding).
    """

    name: Optional[str] = None
    transform: Transform = field(default_factory=Transform)
    children: List[int] = field(default_factory=list)
    geometry: Optional[object] = None
    materials: List[object] = field(default_factory=list)
    parent: Optional[int] = None


class SceneGraph:
    """Arena of SceneNodes with a single root.

    Usage:
        graph = SceneGraph()
        root = graph.root
        child = graph.add_node("arm", transform=Transform((0, 1, 0)))
        graph.add_child(root, child)
    """

    def __init__(self, root_name="root"):
        self.nodes: List[SceneNode] = [SceneNode(name=root_name)]
        self.root = 0

    def __len__(self):
        return len(self.nodes)

    def node(self, index):
        """Return the node at ``index``; raises IndexError for unknown indices."""
        if not 0 <= index < len(self.nodes):
            raise IndexError(f"No scene node at index {index}")
        return self.nodes[index]

    def add_node(self, name=None, transform=None, geometry=None,
                 materials=None, parent=None):
        """Append a node to the arena and return its index.

        When ``parent`` is given the node is attached as that parent's last
        child.
        """
        node = SceneNode(
            name=name,
            transform=transform if transform is not None else Transform(),
            geometry=geometry,
            materials=list(materials) if materials else [],
        )
        self.nodes.append(node)
        index = len(self.nodes) - 1
        if parent is not None:
            self.add_child(parent, index)
        return index

    def add_child(self, parent, child):
        """Attach ``child`` as the last child of ``parent``.

        A node has exactly one parent, and the root has none; anything else
        would turn the tree into a DAG or a cycle.
        """
        parent_node = self.node(parent)
        child_node = self.node(child)
        if child == self.root:
            raise ValueError("The root node cannot be attached as a child")
        if child_node.parent is not None:
            raise ValueError(
                f"Node {child} already has parent {child_node.parent}")
        if child == parent:
            raise ValueError(f"Node {child} cannot be its own child")
        ancestor = parent_node.parent
        while ancestor is not None:
            if ancestor == child:
                raise ValueError(
                    f"Node {child} is an ancestor of node {parent}")
            ancestor = self.nodes[ancestor].parent
        child_node.parent = parent
        parent_node.children.append(child)

    def walk(self, visitor, node=None):
        """Walk the tree depth-first, calling visitor methods.

        Visitor methods (all optional):
            enter_node(index, node, depth)  -> return False to skip children
            exit_node(index, node, depth)

        Children are visited in document order. Uses an explicit stack
        instead of recursion.

        Args:
            visitor: object with enter_node / exit_node methods
            node: starting index (defaults to the root)
        """
        start = self.root if node is None else node
        self.node(start)

        enter = getattr(visitor, 'enter_node', None)
        leave = getattr(visitor, 'exit_node', None)

        # (index, depth, exiting)
        stack = [(start, 0, False)]
        while stack:
            index, depth, exiting = stack.pop()
            current = self.nodes[index]
            if exiting:
                if leave is not None:
                    leave(index, current, depth)
                continue

            descend = True
            if enter is not None:
                descend = enter(index, current, depth) is not False

            stack.append((index, depth, True))
            if descend:
                for child in reversed(current.children):
                    stack.append((child, depth + 1, False))

    def iter_depth_first(self, node=None):
        """Yield (index, node, depth) in depth-first document order."""
        order = []

        class _Collect:
            def enter_node(self, index, current, depth):
                order.append((index, current, depth))

        self.walk(_Collect(), node)
        return iter(order)

    def geometry_nodes(self, node=None):
        """Return indices of every geometry-bearing node in the subtree."""
        return [
            index for index, current, _ in self.iter_depth_first(node)
            if current.geometry is not None
        ]

    def dump(self, sink=None, node=None):
        """Emit the node hierarchy as INFO diagnostics (code "scene-dump").

        One record per node, plus one per geometry with its element and
        source counts. Purely informational; nothing reads it back.
        """
        for index, current, depth in self.iter_depth_first(node):
            indent = "  " * depth
            report(sink, "scene-dump",
                   f"{indent}Node: {current.name or 'unnamed'}",
                   level=logging.INFO, index=index)
            geom = current.geometry
            if geom is not None:
                report(sink, "scene-dump",
                       f"{indent}  Geometry: {geom.name or 'unnamed'}, "
                       f"{len(geom.elements)} elements, "
                       f"{len(geom.sources)} sources",
                       level=logging.INFO, index=index)
