"""Concrete implementations for rendering the active path as Dash components."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from dash import dcc, html
from dash.development.base_component import Component as DashComponent

from .models import ASSISTANT_ROLE, USER_ROLE, BranchNavigation, TreeNode

BRANCH_NAV_TYPE = "branch-nav"


def branch_button_id(node_id: str, direction: str) -> Dict[str, str]:
    """Pattern-matching id carried by a branch navigation button."""
    return {"type": BRANCH_NAV_TYPE, "node": node_id, "direction": direction}


class Layout(ABC):
    """Interface for turning the active path into renderable components."""

    @abstractmethod
    def build_messages(
        self,
        nodes: List[TreeNode],
        navigations: Dict[str, BranchNavigation],
        streaming: Optional[Dict[str, str]] = None,
    ) -> List[DashComponent]:
        """Converts the active nodes into components.

        Parameters
        ----------
        nodes : List[TreeNode]
            The resolved active path, root first.
        navigations : Dict[str, BranchNavigation]
            Sibling position of each node, keyed by node id.
        streaming : Dict[str, str], optional
            ``{"thinking", "answer"}`` buffers of the in-flight generation.
            They replace the placeholder's sentinel text while present.
        """
        pass

    @abstractmethod
    def get_external_stylesheets(self) -> List:
        """Stylesheets the components rely on."""
        pass

    def _display_text(self, node: TreeNode, streaming: Optional[Dict[str, str]]):
        content = node.message.content
        reasoning = node.message.reasoning
        if streaming is not None and node.message.is_placeholder:
            content = streaming.get("answer") or content
            reasoning = streaming.get("thinking") or None
        return content, reasoning


class Minimal(Layout):
    """Plain ``dash.html`` bubbles, no extra dependencies."""

    def get_external_stylesheets(self) -> List:
        return []

    def build_messages(self, nodes, navigations, streaming=None):
        if not nodes:
            return []
        return [
            self.build_message(node, navigations.get(node.id, BranchNavigation()), streaming)
            for node in nodes
        ]

    def build_message(
        self,
        node: TreeNode,
        navigation: BranchNavigation,
        streaming: Optional[Dict[str, str]] = None,
    ) -> DashComponent:
        content, reasoning = self._display_text(node, streaming)
        style = {
            "padding": "10px",
            "borderRadius": "15px",
            "marginBottom": "10px",
            "maxWidth": "70%",
            "width": "fit-content",
        }
        if node.role == USER_ROLE:
            style["marginLeft"] = "auto"
            style["backgroundColor"] = "#dcf8c6"
        else:
            style["marginRight"] = "auto"
            style["backgroundColor"] = "#ffffff"
            style["border"] = "1px solid #eee"

        children = []
        if node.role == ASSISTANT_ROLE and reasoning:
            children.append(
                html.Details([html.Summary("Reasoning"), dcc.Markdown(reasoning)])
            )
        children.append(dcc.Markdown(content))
        if navigation.total_branches > 1:
            children.append(self.build_branch_controls(node.id, navigation))

        return html.Div(
            children,
            id={"type": "message", "node": node.id},
            className=f"message {node.role}",
            style=style,
        )

    def build_branch_controls(self, node_id: str, navigation: BranchNavigation) -> DashComponent:
        return html.Div(
            [
                html.Button(
                    "‹",
                    id=branch_button_id(node_id, "left"),
                    disabled=not navigation.can_navigate_left,
                ),
                html.Span(f"{navigation.current_index + 1}/{navigation.total_branches}"),
                html.Button(
                    "›",
                    id=branch_button_id(node_id, "right"),
                    disabled=not navigation.can_navigate_right,
                ),
            ],
            className="branch-controls",
        )


class Bootstrap(Minimal):
    """Bootstrap-styled bubbles using dash-bootstrap-components."""

    def __init__(self):
        import dash_bootstrap_components as dbc

        self._dbc = dbc

    def get_external_stylesheets(self) -> List:
        return [self._dbc.themes.BOOTSTRAP, self._dbc.icons.BOOTSTRAP]

    def build_message(self, node, navigation, streaming=None):
        dbc = self._dbc
        content, reasoning = self._display_text(node, streaming)
        is_user = node.role == USER_ROLE

        body = []
        if node.role == ASSISTANT_ROLE and reasoning:
            body.append(
                html.Details(
                    [html.Summary("Reasoning"), dcc.Markdown(reasoning)],
                    className="text-muted small mb-2",
                )
            )
        body.append(dcc.Markdown(content, className="mb-0"))
        if navigation.total_branches > 1:
            body.append(self.build_branch_controls(node.id, navigation))

        return dbc.Card(
            dbc.CardBody(body),
            id={"type": "message", "node": node.id},
            color="success" if is_user else "light",
            outline=is_user,
            className=("ms-auto" if is_user else "me-auto") + " mb-2 w-75",
        )

    def build_branch_controls(self, node_id, navigation):
        dbc = self._dbc
        return dbc.ButtonGroup(
            [
                dbc.Button(
                    html.I(className="bi bi-chevron-left"),
                    id=branch_button_id(node_id, "left"),
                    disabled=not navigation.can_navigate_left,
                    size="sm",
                    color="link",
                ),
                dbc.Button(
                    f"{navigation.current_index + 1}/{navigation.total_branches}",
                    disabled=True,
                    size="sm",
                    color="link",
                ),
                dbc.Button(
                    html.I(className="bi bi-chevron-right"),
                    id=branch_button_id(node_id, "right"),
                    disabled=not navigation.can_navigate_right,
                    size="sm",
                    color="link",
                ),
            ],
            className="mt-2",
        )
