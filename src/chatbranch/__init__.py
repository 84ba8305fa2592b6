"""
The main entrypoint for the Chatbranch package.

Chatbranch stores a conversation as a tree of user/assistant messages. Editing
a user message or regenerating an answer creates a sibling branch instead of
overwriting history, and the ``Engine`` keeps track of which root-to-leaf path
is currently shown.

The extensible pieces are injected into the ``Engine``:

- ``llm``: the generation provider (``llm.OpenAI``, ``llm.Anthropic``, ``llm.Echo``, ...)
- ``store``: conversation persistence (``store.InMemory``, ``store.File``)
- ``layout``: rendering of the active path (``layout.Bootstrap``, ``layout.Minimal``)
"""

from .config import Config
from .engine import Engine
from .models import (
    ASSISTANT_ROLE,
    SYSTEM_ROLE,
    USER_ROLE,
    BranchNavigation,
    ConversationTree,
    GenerationResult,
    Message,
    TreeNode,
)

__all__ = [
    "ASSISTANT_ROLE",
    "SYSTEM_ROLE",
    "USER_ROLE",
    "BranchNavigation",
    "Config",
    "ConversationTree",
    "Engine",
    "GenerationResult",
    "Message",
    "TreeNode",
]
