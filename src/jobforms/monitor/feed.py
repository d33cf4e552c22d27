"""
Change notifications consumed by the form monitor.

A ``ChangeFeed`` delivers structural mutation records and user interaction
events for one subtree. A live browser bridge would implement it over a
MutationObserver; ``SyntheticFeed`` lets tests and the CLI demo drive the
monitor by editing a parsed tree and pushing the matching records.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Protocol, Sequence, Tuple

from bs4 import BeautifulSoup

from ..tree import Node, SoupNode


MutationKind = Literal["child_list", "attributes"]
InteractionKind = Literal["input", "change", "focus", "blur", "submit", "click"]


@dataclass(frozen=True)
class MutationRecord:
    kind: MutationKind
    target: Node
    added: Tuple[Node, ...] = ()
    removed: Tuple[Node, ...] = ()
    attribute: Optional[str] = None
    old_value: Optional[str] = None


@dataclass(frozen=True)
class InteractionEvent:
    kind: InteractionKind
    target: Node
    submitter: Optional[Node] = None


MutationHandler = Callable[[Sequence[MutationRecord]], None]
InteractionHandler = Callable[[InteractionEvent], None]


class Subscription(Protocol):
    def disconnect(self) -> None: ...


class ChangeFeed(Protocol):
    def subscribe(self, root: Node, on_mutations: MutationHandler, on_interaction: InteractionHandler) -> Subscription: ...


class _SyntheticSubscription:
    def __init__(self, feed: "SyntheticFeed", root: Node, on_mutations: MutationHandler, on_interaction: InteractionHandler):
        self.feed = feed
        self.root = root
        self.on_mutations = on_mutations
        self.on_interaction = on_interaction
        self.active = True

    def disconnect(self) -> None:
        self.active = False
        if self in self.feed._subscriptions:
            self.feed._subscriptions.remove(self)


class SyntheticFeed:
    """In-process feed; each helper edits the tree, then notifies subscribers."""

    def __init__(self) -> None:
        self._subscriptions: List[_SyntheticSubscription] = []

    def subscribe(self, root: Node, on_mutations: MutationHandler, on_interaction: InteractionHandler) -> _SyntheticSubscription:
        sub = _SyntheticSubscription(self, root, on_mutations, on_interaction)
        self._subscriptions.append(sub)
        return sub

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    # -- raw delivery --------------------------------------------------------

    def push_mutations(self, records: Sequence[MutationRecord]) -> None:
        for sub in list(self._subscriptions):
            if not sub.active:
                continue
            scoped = [r for r in records if sub.root.contains(r.target)]
            if scoped:
                sub.on_mutations(scoped)

    def push(self, event: InteractionEvent) -> None:
        for sub in list(self._subscriptions):
            if sub.active and sub.root.contains(event.target):
                sub.on_interaction(event)

    # -- tree edits ----------------------------------------------------------

    def type_text(self, node: Node, value: str, kind: InteractionKind = "input") -> None:
        node.set_attr("value", value)
        self.push(InteractionEvent(kind, node))

    def set_checked(self, node: Node, checked: bool = True) -> None:
        if checked:
            node.set_attr("checked", "checked")
        else:
            node.remove_attr("checked")
        self.push(InteractionEvent("change", node))

    def select_option(self, node: Node, value: str) -> None:
        for opt in node.select("option"):
            if (opt.attr("value") or opt.text()) == value:
                opt.set_attr("selected", "selected")
            else:
                opt.remove_attr("selected")
        self.push(InteractionEvent("change", node))

    def focus(self, node: Node) -> None:
        self.push(InteractionEvent("focus", node))

    def blur(self, node: Node) -> None:
        self.push(InteractionEvent("blur", node))

    def click(self, node: Node) -> None:
        self.push(InteractionEvent("click", node))

    def submit(self, form: Node, submitter: Optional[Node] = None) -> None:
        self.push(InteractionEvent("submit", form, submitter))

    def set_attribute(self, node: Node, name: str, value: Optional[str]) -> None:
        """Set (or with ``None`` remove) an attribute and report the flip."""
        old = node.attr(name)
        if value is None:
            node.remove_attr(name)
        else:
            node.set_attr(name, value)
        self.push_mutations([MutationRecord("attributes", node, attribute=name, old_value=old)])

    def insert_html(self, parent: SoupNode, html: str) -> List[SoupNode]:
        fragment = BeautifulSoup(html, "html.parser")
        added = []
        for child in list(fragment.find_all(recursive=False)):
            parent.raw.append(child.extract())
            added.append(SoupNode(child))
        self.push_mutations([MutationRecord("child_list", parent, added=tuple(added))])
        return added

    def remove(self, node: SoupNode) -> None:
        parent = node.parent
        node.raw.extract()
        if parent is not None:
            self.push_mutations([MutationRecord("child_list", parent, removed=(node,))])
