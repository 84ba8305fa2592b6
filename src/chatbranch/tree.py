"""Pure functions that derive tree views from the flat message store."""

from typing import Dict, Iterable, List, Mapping, Optional

from .models import Message, TreeNode


def _sort_key(node: TreeNode):
    return node.message.timestamp


def build_tree(messages: Mapping[str, Message]) -> List[TreeNode]:
    """Builds the forest of ``TreeNode`` objects from the flat store.

    Children and roots are ordered by ascending timestamp. Equal timestamps
    keep the store's insertion order (``list.sort`` is stable and the store
    is an insertion-ordered dict).

    Parameters
    ----------
    messages : Mapping[str, Message]
        The flat store, id -> message.

    Returns
    -------
    List[TreeNode]
        The root nodes, each with recursively populated ``children``.
    """
    nodes: Dict[str, TreeNode] = {
        message_id: TreeNode(message=message) for message_id, message in messages.items()
    }
    roots: List[TreeNode] = []

    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id is not None else None
        if parent is None:
            # dangling parent ids (hand-edited snapshots) surface as roots
            roots.append(node)
        else:
            parent.children.append(node)

    for node in nodes.values():
        node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)

    _assign_depths(roots)
    return roots


def _assign_depths(roots: List[TreeNode]) -> None:
    stack = [(root, 0) for root in roots]
    while stack:
        node, depth = stack.pop()
        node.depth = depth
        stack.extend((child, depth + 1) for child in node.children)


def iter_nodes(roots: Iterable[TreeNode]) -> Iterable[TreeNode]:
    """Yields every node of the forest, depth first."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def build_node_map(roots: Iterable[TreeNode]) -> Dict[str, TreeNode]:
    """Indexes every node of the forest by id."""
    return {node.id: node for node in iter_nodes(roots)}


def resolve_active_path(active_path: List[str], roots: List[TreeNode]) -> List[TreeNode]:
    """Maps the active path ids to nodes, silently dropping ids that do not resolve."""
    if not active_path:
        return []
    node_map = build_node_map(roots)
    return [node_map[node_id] for node_id in active_path if node_id in node_map]


def get_conversation_history(
    message_id: Optional[str], messages: Mapping[str, Message]
) -> List[Message]:
    """Returns the ancestor chain root -> ... -> ``message_id`` (inclusive).

    The walk stops at the first id that does not resolve, so an unknown id
    yields an empty list.
    """
    history: List[Message] = []
    seen = set()
    current_id = message_id
    while current_id is not None and current_id not in seen:
        message = messages.get(current_id)
        if message is None:
            break
        seen.add(current_id)
        history.append(message)
        current_id = message.parent_id
    history.reverse()
    return history


def ancestor_path(message_id: Optional[str], messages: Mapping[str, Message]) -> List[str]:
    """Ids of the ancestor chain ending at ``message_id``; a valid active path prefix."""
    return [message.id for message in get_conversation_history(message_id, messages)]
