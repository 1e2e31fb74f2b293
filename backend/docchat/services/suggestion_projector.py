"""Suggestion projector — anchor stored suggestions on live document text.

A small editing model mirroring the client editor: a node tree whose
positions are character offsets over its text, replace steps with position
mapping, and widget decorations (one per suggestion) that slide through edits.
Suggestion state is an explicit value passed through ``EditorState.apply``;
``apply_suggestions_state`` is a pure function of the previous state and the
transaction.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator

SUGGESTIONS_KEY = "suggestions"
NO_DEBOUNCE = "no-debounce"


# ---------------------------------------------------------------------------
# Document tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    type: str
    text: str | None = None
    children: tuple["Node", ...] = ()

    @classmethod
    def text_node(cls, text: str) -> "Node":
        return cls(type="text", text=text)

    @classmethod
    def from_text(cls, content: str) -> "Node":
        """Single-paragraph document whose text content is exactly ``content``."""
        return cls(type="doc", children=(cls(type="paragraph", children=(cls.text_node(content),)),))

    @property
    def is_text(self) -> bool:
        return self.text is not None

    @property
    def size(self) -> int:
        return sum(len(node.text) for _, node in self.text_nodes())

    @property
    def text_content(self) -> str:
        return "".join(node.text for _, node in self.text_nodes())

    def text_nodes(self) -> Iterator[tuple[int, "Node"]]:
        """Text nodes in document order, depth-first, with their start offsets."""
        offset = 0
        stack = [self]
        while stack:
            node = stack.pop()
            if node.is_text:
                yield offset, node
                offset += len(node.text)
            else:
                stack.extend(reversed(node.children))

    def replace(self, start: int, end: int, text: str) -> "Node":
        """Return a new tree with ``[start, end)`` replaced by ``text``."""
        if not 0 <= start <= end <= self.size:
            raise ValueError(f"Range [{start}, {end}) outside document of size {self.size}")

        pos = 0
        inserted = False

        def visit(node: Node) -> Node:
            nonlocal pos, inserted
            if not node.is_text:
                return dataclasses.replace(node, children=tuple(visit(child) for child in node.children))

            a, b = pos, pos + len(node.text)
            pos = b
            if b < start or a > end:
                return node

            head = node.text[: start - a] if start >= a else ""
            tail = node.text[end - a:] if end <= b else ""
            middle = "" if inserted else text
            inserted = True
            return dataclasses.replace(node, text=head + middle + tail)

        result = visit(self)
        if not inserted and text:
            paragraph = Node(type="paragraph", children=(Node.text_node(text),))
            result = dataclasses.replace(result, children=result.children + (paragraph,))
        return result


# ---------------------------------------------------------------------------
# Steps & mapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReplaceStep:
    start: int
    end: int
    text: str

    def apply(self, doc: Node) -> Node:
        return doc.replace(self.start, self.end, self.text)

    def map_result(self, pos: int, assoc: int = 1) -> tuple[int, bool]:
        """Map ``pos`` across this step; the flag is set when the token on the
        ``assoc`` side of ``pos`` was removed."""
        old_size = self.end - self.start
        new_size = len(self.text)
        if pos < self.start:
            return pos, False
        if pos > self.end:
            return pos + new_size - old_size, False

        if not old_size:
            side = assoc
        elif pos == self.start:
            side = -1
        elif pos == self.end:
            side = 1
        else:
            side = assoc
        mapped = self.start + (new_size if side > 0 else 0)
        deleted = bool(old_size) and (pos != self.end if assoc > 0 else pos != self.start)
        return mapped, deleted


@dataclass(frozen=True)
class Mapping:
    steps: tuple[ReplaceStep, ...] = ()

    def map_result(self, pos: int, assoc: int = 1) -> tuple[int, bool]:
        deleted = False
        for step in self.steps:
            pos, step_deleted = step.map_result(pos, assoc)
            deleted = deleted or step_deleted
        return pos, deleted

    def map(self, pos: int, assoc: int = 1) -> int:
        return self.map_result(pos, assoc)[0]


# ---------------------------------------------------------------------------
# Anchors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectedSuggestion:
    id: str
    original_text: str
    suggested_text: str
    description: str
    selection_start: int
    selection_end: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "originalText": self.original_text,
            "suggestedText": self.suggested_text,
            "description": self.description,
            "selectionStart": self.selection_start,
            "selectionEnd": self.selection_end,
        }


def find_position(doc: Node, search_text: str) -> tuple[int, int] | None:
    """First literal occurrence of ``search_text`` inside a single text node."""
    if not search_text:
        return None
    for offset, node in doc.text_nodes():
        index = node.text.find(search_text)
        if index != -1:
            return offset + index, offset + index + len(search_text)
    return None


def project_with_positions(doc: Node, suggestions: Iterable[Any]) -> list[ProjectedSuggestion]:
    """Anchor each suggestion; unmatched ones collapse to ``[0, 0)``."""
    projected = []
    for suggestion in suggestions:
        start, end = find_position(doc, suggestion.original_text) or (0, 0)
        projected.append(ProjectedSuggestion(
            id=suggestion.id,
            original_text=suggestion.original_text,
            suggested_text=suggestion.suggested_text,
            description=suggestion.description or "",
            selection_start=start,
            selection_end=end,
        ))
    return projected


# ---------------------------------------------------------------------------
# Decorations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Decoration:
    """Widget rendered after the anchored span (side 1)."""

    suggestion: ProjectedSuggestion
    pos: int
    side: int = 1

    @property
    def suggestion_id(self) -> str:
        return self.suggestion.id

    def map(self, mapping: Mapping) -> "Decoration | None":
        pos, deleted = mapping.map_result(self.pos, 1 if self.side > 0 else -1)
        if deleted:
            return None
        start = mapping.map(self.suggestion.selection_start, 1)
        end = mapping.map(self.suggestion.selection_end, -1)
        anchored = dataclasses.replace(self.suggestion, selection_start=min(start, end), selection_end=end)
        return Decoration(suggestion=anchored, pos=pos, side=self.side)


def suggestion_decoration(suggestion: ProjectedSuggestion) -> Decoration:
    return Decoration(suggestion=suggestion, pos=suggestion.selection_end)


@dataclass(frozen=True)
class DecorationSet:
    decorations: tuple[Decoration, ...] = ()

    @classmethod
    def create(cls, decorations: Iterable[Decoration]) -> "DecorationSet":
        by_id: dict[str, Decoration] = {}
        for decoration in decorations:
            by_id.pop(decoration.suggestion_id, None)  # later registration wins
            by_id[decoration.suggestion_id] = decoration
        return cls(tuple(sorted(by_id.values(), key=lambda d: d.pos)))

    def __len__(self) -> int:
        return len(self.decorations)

    def __iter__(self) -> Iterator[Decoration]:
        return iter(self.decorations)

    def find(self, predicate: Callable[[Decoration], bool] | None = None) -> list[Decoration]:
        return [d for d in self.decorations if predicate is None or predicate(d)]

    def get(self, suggestion_id: str) -> Decoration | None:
        for decoration in self.decorations:
            if decoration.suggestion_id == suggestion_id:
                return decoration
        return None

    def remove(self, suggestion_id: str) -> "DecorationSet":
        return DecorationSet(tuple(d for d in self.decorations if d.suggestion_id != suggestion_id))

    def map(self, mapping: Mapping) -> "DecorationSet":
        if not mapping.steps:
            return self
        mapped = (d.map(mapping) for d in self.decorations)
        return DecorationSet.create(d for d in mapped if d is not None)


EMPTY_DECORATIONS = DecorationSet()


# ---------------------------------------------------------------------------
# State & transactions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SuggestionsState:
    decorations: DecorationSet = EMPTY_DECORATIONS
    selected: str | None = None


@dataclass
class Transaction:
    before: Node
    doc: Node
    steps: list[ReplaceStep] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def mapping(self) -> Mapping:
        return Mapping(tuple(self.steps))

    @property
    def doc_changed(self) -> bool:
        return bool(self.steps)

    def replace_with(self, start: int, end: int, text: str) -> "Transaction":
        step = ReplaceStep(start, end, text)
        self.doc = step.apply(self.doc)
        self.steps.append(step)
        return self

    def set_meta(self, key: str, value: Any) -> "Transaction":
        self.meta[key] = value
        return self

    def get_meta(self, key: str) -> Any:
        return self.meta.get(key)


def apply_suggestions_state(prev: SuggestionsState, tr: Transaction) -> SuggestionsState:
    """An explicit state in the transaction replaces the set; otherwise decorations
    are mapped through the transaction's edits."""
    meta = tr.get_meta(SUGGESTIONS_KEY)
    if meta is not None:
        return meta
    return SuggestionsState(decorations=prev.decorations.map(tr.mapping), selected=prev.selected)


@dataclass(frozen=True)
class EditorState:
    doc: Node
    suggestions: SuggestionsState = SuggestionsState()

    @classmethod
    def create(cls, content: str, suggestions: Iterable[Any] = ()) -> "EditorState":
        state = cls(doc=Node.from_text(content))
        return state.apply(set_suggestions(state, suggestions))

    @property
    def content(self) -> str:
        return self.doc.text_content

    def tr(self) -> Transaction:
        return Transaction(before=self.doc, doc=self.doc)

    def apply(self, tr: Transaction) -> "EditorState":
        if tr.before is not self.doc:
            raise ValueError("Transaction was not created from this state")
        return EditorState(doc=tr.doc, suggestions=apply_suggestions_state(self.suggestions, tr))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def set_suggestions(state: EditorState, suggestions: Iterable[Any]) -> Transaction:
    """Replace all decorations with freshly projected ones."""
    projected = project_with_positions(state.doc, suggestions)
    decorations = DecorationSet.create(suggestion_decoration(s) for s in projected)
    return state.tr().set_meta(SUGGESTIONS_KEY, SuggestionsState(decorations=decorations))


def select_suggestion(state: EditorState, suggestion_id: str | None) -> Transaction:
    current = state.suggestions
    return state.tr().set_meta(
        SUGGESTIONS_KEY, SuggestionsState(decorations=current.decorations, selected=suggestion_id)
    )


def accept_suggestion(state: EditorState, suggestion_id: str) -> Transaction:
    """Drop the suggestion's decoration and write its text over the anchored span.

    The transaction is flagged ``no-debounce`` so the change is saved at once.
    A neighbouring widget sitting exactly at the start of the replaced span is
    dropped with it, as its position no longer survives the edit; it reappears
    the next time suggestions are projected from the stored rows.
    """
    decoration = state.suggestions.decorations.get(suggestion_id)
    if decoration is None:
        raise KeyError(suggestion_id)

    anchored = decoration.suggestion
    tr = state.tr().replace_with(anchored.selection_start, anchored.selection_end, anchored.suggested_text)
    remaining = state.suggestions.decorations.remove(suggestion_id).map(tr.mapping)
    return (
        tr.set_meta(SUGGESTIONS_KEY, SuggestionsState(decorations=remaining))
        .set_meta(NO_DEBOUNCE, True)
    )


def decline_suggestion(state: EditorState, suggestion_id: str) -> Transaction:
    """Drop the suggestion's decoration; the text is left as is."""
    if state.suggestions.decorations.get(suggestion_id) is None:
        raise KeyError(suggestion_id)
    remaining = state.suggestions.decorations.remove(suggestion_id)
    return state.tr().set_meta(SUGGESTIONS_KEY, SuggestionsState(decorations=remaining))
