"""Concrete implementations for conversation persistence.

A store saves and loads whole ``ConversationTree`` snapshots by conversation
id and keeps a lightweight metadata index (title, preview, last update) for
listing. Message ids round-trip unchanged.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from .models import USER_ROLE, ConversationMetadata, ConversationTree

logger = logging.getLogger(__name__)

TITLE_LENGTH = 30
PREVIEW_LENGTH = 50
DEFAULT_TITLE = "New conversation"
EMPTY_PREVIEW = "Empty conversation"


def _truncate(text: str, length: int) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def generate_title(tree: ConversationTree) -> str:
    """Title from the first user message in the store."""
    first_user = next(
        (m for m in tree.messages.values() if m.role == USER_ROLE and m.content), None
    )
    return _truncate(first_user.content, TITLE_LENGTH) if first_user else DEFAULT_TITLE


def generate_preview(tree: ConversationTree) -> str:
    """Preview from the most recently created message."""
    messages = [m for m in tree.messages.values() if m.content]
    if not messages:
        return EMPTY_PREVIEW
    latest = max(messages, key=lambda m: m.timestamp)
    return _truncate(latest.content, PREVIEW_LENGTH)


def build_metadata(
    convo_id: str, tree: ConversationTree, previous: Optional[ConversationMetadata] = None
) -> ConversationMetadata:
    """Recomputes index metadata for a snapshot. A renamed title is kept."""
    renamed = previous is not None and previous.renamed
    return ConversationMetadata(
        id=convo_id,
        title=previous.title if renamed else generate_title(tree),
        preview=generate_preview(tree),
        renamed=renamed,
        updated_at=datetime.now(timezone.utc),
    )


class Store(ABC):
    """Interface for saving and loading conversation snapshots."""

    @abstractmethod
    def load_conversation(self, convo_id: str) -> Optional[ConversationTree]:
        """Loads a conversation snapshot, or None if it does not exist."""
        pass

    @abstractmethod
    def save_conversation(self, convo_id: str, tree: ConversationTree) -> None:
        """Saves a conversation snapshot and refreshes its metadata."""
        pass

    @abstractmethod
    def list_conversations(self) -> List[ConversationMetadata]:
        """Lists conversation metadata, most recently updated first."""
        pass

    @abstractmethod
    def delete_conversation(self, convo_id: str) -> None:
        """Removes a conversation. Unknown ids are ignored."""
        pass

    @abstractmethod
    def rename_conversation(self, convo_id: str, title: str) -> bool:
        """Sets a fixed title. Returns False for unknown ids."""
        pass

    def get_next_conversation_id(self) -> str:
        """Generates a new, unique conversation ID."""
        return f"conv_{uuid.uuid4().hex[:12]}"


class InMemory(Store):
    """Saves and loads conversations from an in-memory dictionary."""

    def __init__(self):
        self._store: Dict[str, ConversationTree] = {}
        self._index: Dict[str, ConversationMetadata] = {}

    def load_conversation(self, convo_id: str) -> Optional[ConversationTree]:
        tree = self._store.get(convo_id)
        return tree.model_copy(deep=True) if tree is not None else None

    def save_conversation(self, convo_id: str, tree: ConversationTree) -> None:
        self._store[convo_id] = tree.model_copy(deep=True)
        previous = self._index.pop(convo_id, None)
        self._index[convo_id] = build_metadata(convo_id, tree, previous)

    def list_conversations(self) -> List[ConversationMetadata]:
        # latest save last in the dict; ties resolve newest first
        return sorted(reversed(list(self._index.values())), key=lambda m: m.updated_at, reverse=True)

    def delete_conversation(self, convo_id: str) -> None:
        self._store.pop(convo_id, None)
        self._index.pop(convo_id, None)

    def rename_conversation(self, convo_id: str, title: str) -> bool:
        if convo_id not in self._index:
            return False
        self._index[convo_id] = self._index[convo_id].model_copy(
            update={"title": title, "renamed": True}
        )
        return True


_INDEX_ADAPTER = TypeAdapter(List[ConversationMetadata])


class File(Store):
    """Saves conversations as JSON files: one ``<id>.json`` each plus ``index.json``.

    Parameters
    ----------
    base_dir : str
        Directory for the files. Created if missing.
    """

    INDEX_FILE = "index.json"

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, convo_id: str) -> Optional[Path]:
        # ids must not escape base_dir
        safe_id = "".join(c for c in convo_id if c.isalnum() or c in "-_")
        if not safe_id or safe_id != convo_id:
            return None
        return self.base_dir / f"{safe_id}.json"

    def _read_index(self) -> List[ConversationMetadata]:
        index_path = self.base_dir / self.INDEX_FILE
        if not index_path.exists():
            return []
        try:
            return _INDEX_ADAPTER.validate_json(index_path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable conversation index {index_path}: {e}")
            return []

    def _write_index(self, index: List[ConversationMetadata]) -> None:
        (self.base_dir / self.INDEX_FILE).write_bytes(_INDEX_ADAPTER.dump_json(index, indent=2))

    def load_conversation(self, convo_id: str) -> Optional[ConversationTree]:
        path = self._path(convo_id)
        if path is None or not path.exists():
            return None
        try:
            tree = ConversationTree.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to load conversation {convo_id}: {e}")
            return None
        logger.info(f"Loaded conversation {convo_id} ({len(tree)} messages)")
        return tree

    def save_conversation(self, convo_id: str, tree: ConversationTree) -> None:
        path = self._path(convo_id)
        if path is None:
            raise ValueError(f"Invalid conversation id: {convo_id!r}")
        path.write_text(tree.model_dump_json(indent=2), encoding="utf-8")

        index = self._read_index()
        previous = next((entry for entry in index if entry.id == convo_id), None)
        metadata = build_metadata(convo_id, tree, previous)
        self._write_index([metadata] + [entry for entry in index if entry.id != convo_id])
        logger.info(f"Saved conversation {convo_id} to {path}")

    def list_conversations(self) -> List[ConversationMetadata]:
        return sorted(self._read_index(), key=lambda m: m.updated_at, reverse=True)

    def delete_conversation(self, convo_id: str) -> None:
        path = self._path(convo_id)
        if path is None:
            return
        path.unlink(missing_ok=True)
        self._write_index([entry for entry in self._read_index() if entry.id != convo_id])

    def rename_conversation(self, convo_id: str, title: str) -> bool:
        index = self._read_index()
        if not any(entry.id == convo_id for entry in index):
            return False
        self._write_index(
            [
                entry.model_copy(update={"title": title, "renamed": True})
                if entry.id == convo_id
                else entry
                for entry in index
            ]
        )
        return True
