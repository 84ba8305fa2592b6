"""The conversation engine: send, edit, regenerate, abort and branch switching.

One ``Engine`` owns one conversation. It holds the ``ConversationTree``, the
``is_loading`` flag, the streaming buffers and the cancellation signal of the
in-flight generation. At most one generation runs at a time; any
send/edit/regenerate call made while ``is_loading`` is true is a no-op.

Public operations never raise. Rejected operations return ``False`` (or
``None``) and log a warning; provider failures and cancellations are
committed into the placeholder message instead.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from . import llm as llm_module
from . import store as store_module
from .config import Config
from .models import (
    ASSISTANT_ROLE,
    FAILED_MESSAGE_TEMPLATE,
    GENERATING_PLACEHOLDER,
    INTERRUPTED_MESSAGE,
    SYSTEM_ROLE,
    USER_ROLE,
    BranchNavigation,
    ConversationTree,
    GenerationResult,
    Message,
    TreeNode,
)
from .navigation import Direction, get_branch_navigation
from .navigation import navigate_branch as compute_branch_path
from .tree import ancestor_path, build_node_map, get_conversation_history, resolve_active_path

logger = logging.getLogger(__name__)


class Engine:
    """Coordinates the conversation tree with the LLM, store and layout.

    Parameters
    ----------
    llm : llm.LLM, optional
        Generation provider. Defaults to ``llm.OpenAI()``, or ``llm.Echo()``
        when the ``openai`` package is not installed.
    store : store.Store, optional
        Persistence for conversation snapshots. Defaults to ``store.InMemory()``.
    layout : layout.Layout, optional
        Renderer used by ``build_messages``. Defaults to ``layout.Bootstrap()``,
        or ``layout.Minimal()`` when ``dash-bootstrap-components`` is missing.
    config : Config, optional
        Generation settings. Defaults to ``Config()``.
    conversation_id : str, optional
        Conversation to load from the store. A new id is generated when
        omitted or when the store has no such conversation.
    on_update : Callable[[Engine], None], optional
        Called after every change to the tree or the streaming buffers.

    Examples
    --------
    >>> from chatbranch.llm import Echo
    >>> engine = Engine(llm=Echo())
    >>> asyncio.run(engine.send_message("Hello"))
    True
    >>> [node.role for node in engine.active_nodes()]
    ['user', 'assistant']
    """

    def __init__(
        self,
        llm: Optional[llm_module.LLM] = None,
        store: Optional[store_module.Store] = None,
        layout=None,
        config: Optional[Config] = None,
        conversation_id: Optional[str] = None,
        on_update: Optional[Callable[["Engine"], None]] = None,
    ) -> None:
        if llm is not None:
            self.llm = llm
        else:
            try:
                self.llm = llm_module.OpenAI()
            except ImportError:
                import warnings

                warnings.warn(
                    "Chatbranch is running with a simple Echo LLM because the 'openai' package is not installed. "
                    'For the default OpenAI integration, install with: pip install "chatbranch[default]"',
                    UserWarning,
                )
                self.llm = llm_module.Echo()

        self._layout = layout
        self.store = store if store is not None else store_module.InMemory()
        self.config = config if config is not None else Config()

        self.is_loading = False
        self.current_thinking = ""
        self.current_answer = ""
        self._cancel_event: Optional[asyncio.Event] = None
        self._episode = 0
        self._listeners: List[Callable[["Engine"], None]] = []
        if on_update is not None:
            self._listeners.append(on_update)

        self.conversation_id = conversation_id or self.store.get_next_conversation_id()
        loaded = self.store.load_conversation(self.conversation_id) if conversation_id else None
        if loaded is not None:
            self.tree = loaded
        else:
            self.tree = ConversationTree.initial(self.config.welcome_message)

    # --- Read views ---

    @property
    def active_path(self) -> List[str]:
        return self.tree.active_path

    @property
    def roots(self) -> List[TreeNode]:
        return self.tree.roots

    def active_nodes(self) -> List[TreeNode]:
        """Nodes to render, in order. Stale ids are skipped."""
        return resolve_active_path(self.tree.active_path, self.tree.roots)

    def branch_navigation(self, node_id: str) -> BranchNavigation:
        return get_branch_navigation(node_id, self.tree.roots)

    @property
    def layout(self):
        if self._layout is None:
            try:
                from .layout import Bootstrap

                self._layout = Bootstrap()
            except ImportError:
                import warnings

                warnings.warn(
                    "Chatbranch is rendering with a minimal layout because 'dash-bootstrap-components' is not installed. "
                    'For the default UI, install with: pip install "chatbranch[default]"',
                    UserWarning,
                )
                from .layout import Minimal

                self._layout = Minimal()
        return self._layout

    def build_messages(self) -> list:
        """Renders the active path, with branch controls and live streaming text."""
        roots = self.tree.roots
        nodes = resolve_active_path(self.tree.active_path, roots)
        node_map = build_node_map(roots)
        navigations: Dict[str, BranchNavigation] = {
            node.id: get_branch_navigation(node.id, roots, node_map) for node in nodes
        }
        streaming = None
        if self.is_loading:
            streaming = {"thinking": self.current_thinking, "answer": self.current_answer}
        return self.layout.build_messages(nodes, navigations, streaming)

    def subscribe(self, listener: Callable[["Engine"], None]) -> None:
        self._listeners.append(listener)

    # --- Branch switching ---

    def navigate_branch(self, node_id: str, direction: Direction) -> Optional[List[str]]:
        """Switches the active path to the neighbouring sibling of ``node_id``.

        Returns the new active path, or None when the move is not possible.
        Navigation only changes ``active_path``; the store is untouched.
        """
        new_path = compute_branch_path(node_id, direction, self.tree.active_path, self.tree.roots)
        if new_path is None:
            logger.warning(f"Cannot navigate {direction} from {node_id}")
            return None
        self.tree.active_path = new_path
        self._notify()
        self._save()
        return new_path

    # --- Conversation management ---

    def new_conversation(self, welcome_message: Optional[str] = None) -> Optional[str]:
        """Starts a fresh conversation. Returns its id, or None while generating."""
        if self.is_loading:
            logger.warning("Ignoring new_conversation: a generation is in progress")
            return None
        self.conversation_id = self.store.get_next_conversation_id()
        self.tree = ConversationTree.initial(welcome_message or self.config.welcome_message)
        self._notify()
        self._save()
        return self.conversation_id

    def load_conversation(self, convo_id: str) -> bool:
        """Switches to a stored conversation."""
        if self.is_loading:
            logger.warning("Ignoring load_conversation: a generation is in progress")
            return False
        tree = self.store.load_conversation(convo_id)
        if tree is None:
            logger.warning(f"Conversation {convo_id} not found")
            return False
        self.conversation_id = convo_id
        self.tree = tree
        self._notify()
        return True

    # --- Generation operations ---

    async def send_message(
        self,
        content: str,
        parent_id: Optional[str] = None,
        extra_context: Optional[str] = None,
    ) -> bool:
        """Adds a user message and generates the assistant reply.

        Parameters
        ----------
        content : str
            The user's text. Blank input is ignored.
        parent_id : str, optional
            Message to reply under. Defaults to the end of the active path;
            an empty conversation starts a new root.
        extra_context : str, optional
            Sent to the model for this call only, never stored.

        Returns
        -------
        bool
            False if the call was rejected.
        """
        if self._reject_if_busy("send_message"):
            return False
        content = (content or "").strip()
        if not content:
            return False

        if parent_id is None:
            parent_id = next((i for i in reversed(self.tree.active_path) if i in self.tree), None)
        elif parent_id not in self.tree:
            logger.warning(f"Ignoring send_message: unknown parent {parent_id}")
            return False

        user_message = self.tree.add_message(
            Message(role=USER_ROLE, content=content, parent_id=parent_id)
        )
        self.tree.active_path = ancestor_path(user_message.id, self.tree.messages)
        await self._generate(
            placeholder_parent_id=user_message.id,
            path_prefix=self.tree.active_path,
            history_anchor_id=user_message.id,
            extra_context=extra_context,
        )
        return True

    async def edit_user_message(
        self, node_id: str, new_content: str, extra_context: Optional[str] = None
    ) -> bool:
        """Creates an edited sibling of a user message and generates its reply.

        The original message and its replies are left untouched and stay
        reachable through branch navigation. Only user messages can be edited.
        """
        if self._reject_if_busy("edit_user_message"):
            return False
        target = self.tree.get(node_id)
        if target is None or target.role != USER_ROLE:
            logger.warning(f"Ignoring edit_user_message: {node_id} is not a user message")
            return False
        new_content = (new_content or "").strip()
        if not new_content:
            return False

        parent_id = self._existing_parent(target.parent_id)
        prefix = self._prefix_before(node_id, parent_id)
        edited = self.tree.add_message(
            Message(role=USER_ROLE, content=new_content, parent_id=parent_id)
        )
        self.tree.active_path = prefix + [edited.id]
        await self._generate(
            placeholder_parent_id=edited.id,
            path_prefix=self.tree.active_path,
            history_anchor_id=edited.id,
            extra_context=extra_context,
        )
        return True

    async def regenerate_message(self, node_id: str, extra_context: Optional[str] = None) -> bool:
        """Generates a new assistant answer branch.

        For an assistant target the new answer is its sibling (same parent);
        for a user target it is a new child of that user message.
        """
        if self._reject_if_busy("regenerate_message"):
            return False
        target = self.tree.get(node_id)
        if target is None or target.role == SYSTEM_ROLE:
            logger.warning(f"Ignoring regenerate_message: cannot regenerate {node_id}")
            return False

        if target.role == ASSISTANT_ROLE:
            anchor_id = self._existing_parent(target.parent_id)
            prefix = self._prefix_before(node_id, anchor_id)
        else:
            anchor_id = node_id
            if node_id in self.tree.active_path:
                prefix = self.tree.active_path[: self.tree.active_path.index(node_id) + 1]
            else:
                prefix = ancestor_path(node_id, self.tree.messages)

        await self._generate(
            placeholder_parent_id=anchor_id,
            path_prefix=prefix,
            history_anchor_id=anchor_id,
            extra_context=extra_context,
        )
        return True

    def abort_request(self) -> bool:
        """Signals cooperative cancellation to the in-flight generation.

        Returns False when nothing is running. The generation keeps running
        until the provider observes the signal; the placeholder is then
        finalized with whatever text had streamed.
        """
        if not self.is_loading or self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.info(f"Cancellation requested for conversation {self.conversation_id}")
        return True

    # --- Internals ---

    def _reject_if_busy(self, operation: str) -> bool:
        if self.is_loading:
            logger.warning(f"Ignoring {operation}: a generation is in progress")
            return True
        return False

    def _existing_parent(self, parent_id: Optional[str]) -> Optional[str]:
        # snapshots may carry dangling parent ids; those messages sit at root level
        if parent_id is not None and parent_id not in self.tree:
            logger.warning(f"Parent {parent_id} is missing from the store, branching at the root")
            return None
        return parent_id

    def _prefix_before(self, node_id: str, parent_id: Optional[str]) -> List[str]:
        if parent_id is None:
            return []
        if node_id in self.tree.active_path:
            return self.tree.active_path[: self.tree.active_path.index(node_id)]
        return ancestor_path(parent_id, self.tree.messages)

    async def _generate(
        self,
        placeholder_parent_id: Optional[str],
        path_prefix: List[str],
        history_anchor_id: Optional[str],
        extra_context: Optional[str] = None,
    ) -> None:
        # Everything up to the provider call runs without suspending, so
        # is_loading is set before any other operation can interleave.
        placeholder = self.tree.add_message(
            Message(
                role=ASSISTANT_ROLE,
                content=GENERATING_PLACEHOLDER,
                parent_id=placeholder_parent_id,
            )
        )
        self.tree.active_path = list(path_prefix) + [placeholder.id]
        self.is_loading = True
        self._clear_stream()
        self._episode += 1
        episode = self._episode
        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        self._notify()

        def on_thinking(text: str) -> None:
            if episode == self._episode and self.is_loading:
                self.current_thinking = text
                self._notify()

        def on_answer(text: str) -> None:
            if episode == self._episode and self.is_loading:
                self.current_answer = text
                self._notify()

        history = get_conversation_history(history_anchor_id, self.tree.messages)
        messages = llm_module.compose_messages(history, self.config, extra_context)
        logger.info(
            f"Generating reply {placeholder.id} in conversation {self.conversation_id} "
            f"from {len(history)} messages"
        )

        final: Optional[GenerationResult] = None
        try:
            try:
                final = await self.llm.generate(
                    messages, self.config, cancel_event, on_thinking, on_answer
                )
            except (llm_module.GenerationCancelled, asyncio.CancelledError) as e:
                final = self._interrupted_result()
                logger.info(f"Generation {placeholder.id} interrupted")
                if isinstance(e, asyncio.CancelledError) and not cancel_event.is_set():
                    # our own task was cancelled; finalize, then honour it
                    raise
            except Exception as e:
                if cancel_event.is_set():
                    final = self._interrupted_result()
                    logger.info(f"Generation {placeholder.id} ended after cancellation: {e}")
                else:
                    logger.exception(f"Generation {placeholder.id} failed")
                    reason = str(e) or type(e).__name__
                    final = GenerationResult(content=FAILED_MESSAGE_TEMPLATE.format(reason=reason))
        finally:
            if final is None:
                final = self._interrupted_result()
            self.tree.replace_message(placeholder.id, final.content, final.reasoning)
            self.is_loading = False
            self._cancel_event = None
            self._clear_stream()
            self._notify()
            self._save()

    def _interrupted_result(self) -> GenerationResult:
        return GenerationResult(
            content=self.current_answer if self.current_answer.strip() else INTERRUPTED_MESSAGE,
            reasoning=self.current_thinking if self.current_thinking.strip() else None,
        )

    def _clear_stream(self) -> None:
        self.current_thinking = ""
        self.current_answer = ""

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Update listener failed")

    def _save(self) -> None:
        if self.is_loading:
            return
        try:
            self.store.save_conversation(self.conversation_id, self.tree)
        except Exception:
            logger.exception(f"Failed to save conversation {self.conversation_id}")
