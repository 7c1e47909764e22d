"""
LiveMorph DOM Reconciliation.

Morphs a live element tree into the shape of a freshly fetched one in
place, reusing matching nodes so unrelated state survives.
Requires Python 3.11+.
"""

from collections.abc import Callable

from client.dom import Element, Node, Text

# The container hosting the live event channel is never reconciled
EVENTS_CONTAINER_ID = "events"

SkipPredicate = Callable[[Element], bool]


def is_events_container(element: Element) -> bool:
    """Whether an element is the live events container."""
    return element.id == EVENTS_CONTAINER_ID


def morph(target: Element, source: Element, skip: SkipPredicate = is_events_container) -> Node:
    """
    Reconcile ``target`` with ``source`` in place.

    Attributes are synchronized, children are matched by id first and
    then by tag in document order, unmatched old children are removed
    and new ones cloned in. Elements for which ``skip`` returns True are
    left untouched and never removed, even when the element around them
    is replaced because its tag changed.

    Args:
        target: Live element to update
        source: Element from the freshly fetched document
        skip: Predicate selecting elements to leave alone

    Returns:
        The node now occupying target's place
    """
    if skip(target):
        return target

    if target.tag != source.tag:
        replacement = source.clone()
        _graft_skipped(replacement, _skipped_descendants(target, skip), skip)
        target.replace_with(replacement)
        return replacement

    _sync_attributes(target, source)
    _morph_children(target, source, skip)
    return target


def _sync_attributes(target: Element, source: Element) -> None:
    for name in [name for name in target.attrs if name not in source.attrs]:
        del target.attrs[name]
    for name, value in source.attrs.items():
        if target.attrs.get(name) != value:
            target.attrs[name] = value


def _compatible(old: Node, new: Node) -> bool:
    if isinstance(new, Text):
        return isinstance(old, Text)
    if not isinstance(old, Element) or old.tag != new.tag:
        return False
    return old.id is None or old.id == new.id


def _morph_children(target: Element, source: Element, skip: SkipPredicate) -> None:
    old_children = list(target.children)
    by_id = {
        child.id: child
        for child in old_children
        if isinstance(child, Element) and child.id is not None
    }
    used: set[int] = set()
    result: list[Node] = []
    cursor = 0

    for new in source.children:
        match: Node | None = None

        if isinstance(new, Element) and new.id is not None:
            candidate = by_id.get(new.id)
            if candidate is not None and id(candidate) not in used and candidate.tag == new.tag:
                match = candidate

        if match is None:
            for old in old_children[cursor:]:
                if id(old) not in used and _compatible(old, new):
                    match = old
                    break

        if match is None:
            result.append(new.clone())
            continue

        used.add(id(match))
        cursor = max(cursor, old_children.index(match) + 1)

        if isinstance(match, Text) and isinstance(new, Text):
            match.data = new.data
        elif isinstance(match, Element) and isinstance(new, Element) and not skip(match):
            _sync_attributes(match, new)
            _morph_children(match, new, skip)
        result.append(match)

    # Skipped elements survive even when the new markup lacks them
    for index, old in enumerate(old_children):
        if id(old) in used or not isinstance(old, Element) or not _contains_skipped(old, skip):
            continue
        if skip(old):
            result.insert(min(index, len(result)), old)
        else:
            for kept in _skipped_descendants(old, skip):
                result.insert(min(index, len(result)), kept)

    target.replace_children(result)


def _contains_skipped(element: Element, skip: SkipPredicate) -> bool:
    return skip(element) or any(skip(el) for el in element.iter())


def _skipped_descendants(element: Element, skip: SkipPredicate) -> list[Element]:
    found: list[Element] = []
    for child in element.children:
        if isinstance(child, Element):
            if skip(child):
                found.append(child)
            else:
                found.extend(_skipped_descendants(child, skip))
    return found


def _graft_skipped(replacement: Element, kept: list[Element], skip: SkipPredicate) -> None:
    """Move preserved live elements into a freshly cloned subtree."""
    for element in kept:
        if element.parent is not None:
            element.parent.children.remove(element)
            element.parent = None
        # Take the place of the fresh copy of the same element, if there is one
        placeholder = next(
            (
                el for el in replacement.iter()
                if el is not element and skip(el) and el.id == element.id
            ),
            None,
        )
        if placeholder is not None and placeholder.parent is not None:
            placeholder.replace_with(element)
        else:
            replacement.append(element)
