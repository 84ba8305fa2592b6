"""
Defines the core Pydantic data models for the conversation tree.

These models serve as the formal, validated data contract between the tree
functions, the engine, and the store/llm/layout collaborators. The flat store
is a single owned table (id -> Message); every tree view is derived from it.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
Role = Literal["user", "assistant", "system"]

GENERATING_PLACEHOLDER = "Generating..."
INTERRUPTED_MESSAGE = "Generation interrupted"
FAILED_MESSAGE_TEMPLATE = "Generation failed: {reason}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Models ---
class Message(BaseModel):
    """A single message in the flat store.

    Messages are frozen. The one-time placeholder finalization replaces the
    store entry with a copy that keeps ``id``, ``role``, ``timestamp`` and
    ``parent_id``.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    reasoning: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    parent_id: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.role == ASSISTANT_ROLE and self.content == GENERATING_PLACEHOLDER


class TreeNode(BaseModel):
    """A derived view: a message plus its time-ordered children and depth."""

    message: Message
    children: List["TreeNode"] = Field(default_factory=list)
    depth: int = 0

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.message.parent_id

    @property
    def role(self) -> str:
        return self.message.role

    @property
    def content(self) -> str:
        return self.message.content


class BranchNavigation(BaseModel):
    """Position of a node among its siblings. Computed on demand, never stored."""

    current_index: int = 0
    total_branches: int = 1
    can_navigate_left: bool = False
    can_navigate_right: bool = False


class GenerationResult(BaseModel):
    """Final output of one generation call."""

    content: str
    reasoning: Optional[str] = None


class ConversationMetadata(BaseModel):
    """Lightweight index entry describing a stored conversation."""

    id: str
    title: str = "New conversation"
    preview: str = "Empty conversation"
    renamed: bool = False
    updated_at: datetime = Field(default_factory=_utcnow)


class ConversationTree(BaseModel):
    """The aggregate: flat store plus the active path.

    ``roots`` is recomputed from ``messages`` on every access and is never
    serialized.
    """

    messages: Dict[str, Message] = Field(default_factory=dict)
    active_path: List[str] = Field(default_factory=list)

    @classmethod
    def initial(cls, welcome_message: Optional[str] = None) -> "ConversationTree":
        """Creates an empty tree, optionally seeded with a root welcome message."""
        tree = cls()
        if welcome_message:
            welcome = Message(role=ASSISTANT_ROLE, content=welcome_message)
            tree.add_message(welcome)
            tree.active_path = [welcome.id]
        return tree

    @property
    def roots(self) -> List[TreeNode]:
        """The forest built from the store. Rebuilt on every access, so hold on to it."""
        from .tree import build_tree

        return build_tree(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.messages

    def get(self, message_id: Optional[str]) -> Optional[Message]:
        if message_id is None:
            return None
        return self.messages.get(message_id)

    def add_message(self, message: Message) -> Message:
        """Appends a message to the flat store.

        Raises
        ------
        ValueError
            If the id is already taken or the parent does not exist.
        """
        if message.id in self.messages:
            raise ValueError(f"Duplicate message id: {message.id}")
        if message.parent_id is not None and message.parent_id not in self.messages:
            raise ValueError(f"Unknown parent id: {message.parent_id}")
        self.messages[message.id] = message
        return message

    def replace_message(
        self, message_id: str, content: str, reasoning: Optional[str] = None
    ) -> Message:
        """Overwrites a message's content in place, keeping its identity and parent."""
        current = self.messages[message_id]
        updated = current.model_copy(update={"content": content, "reasoning": reasoning})
        self.messages[message_id] = updated
        return updated
