"""Branch navigation: sibling positions and branch switching."""

from typing import Dict, List, Literal, Optional

from .models import BranchNavigation, TreeNode
from .tree import build_node_map

Direction = Literal["left", "right"]


def _siblings(node: TreeNode, roots: List[TreeNode], node_map: Dict[str, TreeNode]) -> List[TreeNode]:
    if node.parent_id is None:
        return roots
    parent = node_map.get(node.parent_id)
    return parent.children if parent is not None else roots


def get_branch_navigation(
    node_id: str, roots: List[TreeNode], node_map: Optional[Dict[str, TreeNode]] = None
) -> BranchNavigation:
    """Computes where ``node_id`` sits among its siblings.

    A node that is not in the tree yields a single-branch result. Pass a
    prebuilt ``node_map`` when asking about many nodes of the same forest.
    """
    if node_map is None:
        node_map = build_node_map(roots)
    node = node_map.get(node_id)
    if node is None:
        return BranchNavigation()

    siblings = _siblings(node, roots, node_map)
    current_index = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id)
    return BranchNavigation(
        current_index=current_index,
        total_branches=len(siblings),
        can_navigate_left=current_index > 0,
        can_navigate_right=current_index < len(siblings) - 1,
    )


def find_deepest_latest_path(node: TreeNode) -> List[str]:
    """Descends through the newest child at each level until reaching a leaf.

    Returns the ids below ``node`` (``node`` itself excluded). Switching to a
    branch therefore resumes the most recently created sub-conversation.
    """
    path: List[str] = []
    current = node
    while current.children:
        current = current.children[-1]
        path.append(current.id)
    return path


def navigate_branch(
    node_id: str, direction: Direction, active_path: List[str], roots: List[TreeNode]
) -> Optional[List[str]]:
    """Computes the active path after moving from ``node_id`` to its neighbour.

    Returns
    -------
    Optional[List[str]]
        The new active path, or ``None`` when there is no sibling in that
        direction, the direction is unknown, or ``node_id`` is not on the
        active path.
    """
    node_map = build_node_map(roots)
    node = node_map.get(node_id)
    if node is None:
        return None

    navigation = get_branch_navigation(node_id, roots, node_map)
    if direction == "left" and navigation.can_navigate_left:
        new_index = navigation.current_index - 1
    elif direction == "right" and navigation.can_navigate_right:
        new_index = navigation.current_index + 1
    else:
        return None

    if node_id not in active_path:
        return None
    position = active_path.index(node_id)

    target = _siblings(node, roots, node_map)[new_index]
    return active_path[:position] + [target.id] + find_deepest_latest_path(target)
