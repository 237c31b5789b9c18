"""Element registry: the live graph of addressable UI elements.

The registry is the only writer of node state. The hosting UI layer calls
``register`` / ``unregister`` / ``update_state`` as elements mount, unmount
and change; the action engine and the session channel only read.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from .errors import DuplicateElementError
from .types import ElementNode, ElementState, ElementType, NavigationGraph
from .verbs import VerbTable

logger = logging.getLogger("uipilot")

Subscriber = Callable[[NavigationGraph], None]

_PATCHABLE = frozenset({"state", "label", "metadata", "handle", "available_actions"})


class ElementRegistry:
    def __init__(self) -> None:
        self.graph = NavigationGraph()
        self._subscribers: list[Subscriber] = []

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(
        self,
        id: str,
        type: ElementType | str,
        label: str,
        parent: Optional[str] = None,
        available_actions: Iterable[str] = (),
        metadata: Optional[dict] = None,
        handle: Any = None,
        verbs: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> ElementNode:
        """Insert a node and link it under *parent*.

        Raises ``DuplicateElementError`` if *id* is already registered and
        ``VerbTableError`` if *verbs* is malformed.
        """
        if id in self.graph.nodes:
            raise DuplicateElementError(id)
        node = ElementNode(
            id=id,
            type=ElementType(type),
            label=label,
            parent=parent,
            available_actions=list(available_actions),
            metadata=dict(metadata or {}),
            handle=handle,
            verbs=verbs if isinstance(verbs, VerbTable) else VerbTable(verbs),
        )
        # Children that registered before this node already have edges
        node.children = list(self.graph.edges.get(id, []))
        self.graph.nodes[id] = node

        if parent:
            siblings = self.graph.edges.setdefault(parent, [])
            if id not in siblings:
                siblings.append(id)
            parent_node = self.graph.nodes.get(parent)
            if parent_node is not None and id not in parent_node.children:
                parent_node.children.append(id)

        self.graph.visible.add(id)
        logger.debug(f"[Registry] Registered {node.type.value} '{id}' ({label})")
        self._notify()
        return node

    def unregister(self, id: str) -> None:
        node = self.graph.nodes.pop(id, None)
        if node is None:
            logger.warning(f"[Registry] Cannot unregister unknown component: {id}")
            return

        if node.parent:
            siblings = self.graph.edges.get(node.parent)
            if siblings is not None:
                if id in siblings:
                    siblings.remove(id)
                if not siblings:
                    del self.graph.edges[node.parent]
            parent_node = self.graph.nodes.get(node.parent)
            if parent_node is not None and id in parent_node.children:
                parent_node.children.remove(id)

        # Orphan the surviving children rather than leave edges to a missing node
        for child_id in self.graph.edges.pop(id, []):
            child = self.graph.nodes.get(child_id)
            if child is not None:
                child.parent = None

        self.graph.visible.discard(id)
        logger.debug(f"[Registry] Unregistered '{id}'")
        self._notify()

    def update_state(self, id: str, **patch: Any) -> None:
        """Shallow-merge *patch* into the node; warns and returns on unknown ids."""
        node = self.graph.nodes.get(id)
        if node is None:
            logger.warning(f"[Registry] Cannot update unknown component: {id}")
            return
        unknown = set(patch) - _PATCHABLE
        if unknown:
            logger.warning(f"[Registry] Ignoring unknown fields for '{id}': {sorted(unknown)}")

        if "state" in patch:
            node.state = ElementState(patch["state"])
            if node.state is ElementState.HIDDEN:
                self.graph.visible.discard(id)
            else:
                self.graph.visible.add(id)
        if "label" in patch:
            node.label = patch["label"]
        if "metadata" in patch:
            node.metadata = dict(patch["metadata"] or {})
        if "handle" in patch:
            node.handle = patch["handle"]
        if "available_actions" in patch:
            node.available_actions = list(patch["available_actions"])
        self._notify()

    def update_metadata(self, id: str, **values: Any) -> None:
        """Merge *values* into the node's metadata (e.g. ``value=15``)."""
        node = self.graph.nodes.get(id)
        if node is None:
            logger.warning(f"[Registry] Cannot update metadata of unknown component: {id}")
            return
        self.update_state(id, metadata={**node.metadata, **values})

    def bind_handle(self, id: str, handle: Any) -> None:
        self.update_state(id, handle=handle)

    def set_verbs(self, id: str, verbs: Mapping[str, Callable[..., Any]]) -> None:
        """Replace the node's verb table (fresh closures after a re-render)."""
        node = self.graph.nodes.get(id)
        if node is None:
            logger.warning(f"[Registry] Cannot set verbs of unknown component: {id}")
            return
        node.verbs = verbs if isinstance(verbs, VerbTable) else VerbTable(verbs)

    def clear(self) -> None:
        self.graph = NavigationGraph()
        logger.debug("[Registry] Cleared")
        self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, id: str) -> Optional[ElementNode]:
        return self.graph.nodes.get(id)

    def __contains__(self, id: str) -> bool:
        return id in self.graph.nodes

    def __len__(self) -> int:
        return len(self.graph.nodes)

    def children_of(self, id: str) -> list[ElementNode]:
        return [self.graph.nodes[c] for c in self.graph.edges.get(id, []) if c in self.graph.nodes]

    def path_to(self, id: str) -> list[str]:
        """Ids from the root ancestor down to *id*; empty for unknown ids."""
        path: list[str] = []
        current = self.graph.nodes.get(id)
        while current is not None and current.id not in path:
            path.insert(0, current.id)
            current = self.graph.nodes.get(current.parent) if current.parent else None
        return path

    def visible_nodes(self) -> list[ElementNode]:
        return [self.graph.nodes[i] for i in self.graph.visible if i in self.graph.nodes]

    def find(
        self,
        type: ElementType | str | None = None,
        label: Optional[str] = None,
        parent: Optional[str] = None,
        state: ElementState | str | None = None,
    ) -> list[ElementNode]:
        wanted_type = ElementType(type) if type is not None else None
        wanted_state = ElementState(state) if state is not None else None
        needle = label.lower() if label else None
        matches = []
        for node in self.graph.nodes.values():
            if wanted_type is not None and node.type is not wanted_type:
                continue
            if needle and needle not in node.label.lower():
                continue
            if parent is not None and node.parent != parent:
                continue
            if wanted_state is not None and node.state is not wanted_state:
                continue
            matches.append(node)
        return matches

    def export_snapshot(self) -> dict:
        """Serializable projection of the graph; handles and verbs stay behind."""
        return {
            "components": [n.to_snapshot() for n in self.graph.nodes.values()],
            "hierarchy": {p: list(c) for p, c in self.graph.edges.items()},
            "currentlyVisible": sorted(n.id for n in self.visible_nodes()),
        }

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* after every mutation; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.graph)
            except Exception as e:
                logger.warning(f"[Registry] Subscriber failed: {e}")
