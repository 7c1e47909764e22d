"""
LiveMorph Minimal DOM.

A small HTML element tree with CSS selector lookup, enough for the
headless client to reconcile page fragments.
Requires Python 3.11+.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from html import escape
from html.parser import HTMLParser

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})

# Elements whose content is raw text, never child markup
RAW_TEXT_ELEMENTS = frozenset({"script", "style"})


@dataclass(eq=False)
class Text:
    """A text node."""

    data: str
    parent: "Element | None" = field(default=None, repr=False)

    def clone(self) -> "Text":
        return Text(self.data)

    def to_html(self) -> str:
        if self.parent is not None and self.parent.tag in RAW_TEXT_ELEMENTS:
            return self.data
        return escape(self.data, quote=False)


@dataclass(eq=False)
class Element:
    """An element node with ordered attributes and children."""

    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list["Node"] = field(default_factory=list)
    parent: "Element | None" = field(default=None, repr=False)

    @property
    def id(self) -> str | None:
        return self.attrs.get("id")

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    def append(self, node: "Node") -> "Node":
        node.parent = self
        self.children.append(node)
        return node

    def replace_children(self, nodes: list["Node"]) -> None:
        for old in self.children:
            if old.parent is self:
                old.parent = None
        for node in nodes:
            node.parent = self
        self.children = list(nodes)

    def replace_with(self, node: "Node") -> None:
        """Swap this element for another node in its parent."""
        if self.parent is None:
            raise ValueError("cannot replace a detached element")
        parent = self.parent
        index = next(i for i, child in enumerate(parent.children) if child is self)
        parent.children[index] = node
        node.parent = parent
        self.parent = None

    def clone(self) -> "Element":
        copy = Element(self.tag, dict(self.attrs))
        for child in self.children:
            copy.append(child.clone())
        return copy

    def iter(self) -> Iterator["Element"]:
        """Descendant elements in document order, excluding self."""
        for child in self.children:
            if isinstance(child, Element):
                yield child
                yield from child.iter()

    def query_selector(self, selector: str) -> "Element | None":
        return next(self.query_selector_all(selector), None)

    def query_selector_all(self, selector: str) -> Iterator["Element"]:
        compiled = Selector.parse(selector)
        return (el for el in self.iter() if compiled.matches(el))

    def text_content(self) -> str:
        return "".join(
            child.data if isinstance(child, Text) else child.text_content()
            for child in self.children
        )

    def inner_html(self) -> str:
        return "".join(child.to_html() for child in self.children)

    def to_html(self) -> str:
        if self.tag == Document.TAG:
            return self.inner_html()
        attrs = "".join(
            f' {name}="{escape(value)}"' if value != "" else f" {name}"
            for name, value in self.attrs.items()
        )
        if self.tag in VOID_ELEMENTS:
            return f"<{self.tag}{attrs}>"
        return f"<{self.tag}{attrs}>{self.inner_html()}</{self.tag}>"


Node = Element | Text


class Document:
    """Factory for document roots."""

    TAG = "#document"

    @classmethod
    def create(cls) -> Element:
        return Element(cls.TAG)


_COMPOUND_RE = re.compile(
    r"""
    (?P<tag>[a-zA-Z][\w-]*|\*)?
    (?P<rest>(?:\#[\w-]+|\.[\w-]+|\[[\w-]+(?:=(?:"[^"]*"|'[^']*'|[^\]]*))?\])*)
    """,
    re.VERBOSE,
)
_PART_RE = re.compile(r"""\#([\w-]+)|\.([\w-]+)|\[([\w-]+)(?:=("[^"]*"|'[^']*'|[^\]]*))?\]""")


@dataclass(frozen=True)
class Compound:
    """One compound selector: ``tag#id.class[attr=value]``."""

    tag: str | None = None
    id: str | None = None
    classes: tuple[str, ...] = ()
    attrs: tuple[tuple[str, str | None], ...] = ()

    def matches(self, el: Element) -> bool:
        if self.tag is not None and self.tag != "*" and el.tag != self.tag:
            return False
        if self.id is not None and el.id != self.id:
            return False
        if any(cls not in el.classes for cls in self.classes):
            return False
        for name, value in self.attrs:
            if name not in el.attrs:
                return False
            if value is not None and el.attrs[name] != value:
                return False
        return True


@dataclass(frozen=True)
class Selector:
    """Compound selectors joined by the descendant combinator."""

    parts: tuple[Compound, ...]

    @classmethod
    def parse(cls, selector: str) -> "Selector":
        parts = []
        for token in selector.split():
            match = _COMPOUND_RE.fullmatch(token)
            if match is None or not token:
                raise ValueError(f"Unsupported selector: {selector!r}")
            ident = None
            classes: list[str] = []
            attrs: list[tuple[str, str | None]] = []
            for part in _PART_RE.finditer(match.group("rest")):
                id_, cls_, attr, value = part.groups()
                if id_:
                    ident = id_
                elif cls_:
                    classes.append(cls_)
                else:
                    if value is not None and value[:1] in "\"'":
                        value = value[1:-1]
                    attrs.append((attr, value))
            tag = match.group("tag")
            parts.append(Compound(tag.lower() if tag else None, ident, tuple(classes), tuple(attrs)))
        if not parts:
            raise ValueError("Empty selector")
        return cls(tuple(parts))

    def matches(self, el: Element) -> bool:
        *ancestors, last = self.parts
        if not last.matches(el):
            return False
        node = el.parent
        for compound in reversed(ancestors):
            while node is not None and not compound.matches(node):
                node = node.parent
            if node is None:
                return False
            node = node.parent
        return True


class _TreeBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Document.create()
        self._stack: list[Element] = [self.root]

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        element = Element(tag, {name: value or "" for name, value in attrs})
        self._stack[-1].append(element)
        if tag not in VOID_ELEMENTS:
            self._stack.append(element)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._stack[-1].append(Element(tag, {name: value or "" for name, value in attrs}))

    def handle_endtag(self, tag: str) -> None:
        # Pop to the nearest open element with this tag; stray end tags are ignored
        for index in range(len(self._stack) - 1, 0, -1):
            if self._stack[index].tag == tag:
                del self._stack[index:]
                return

    def handle_data(self, data: str) -> None:
        self._stack[-1].append(Text(data))


def parse_html(html: str) -> Element:
    """Parse markup into a document root element."""
    builder = _TreeBuilder()
    builder.feed(html)
    builder.close()
    return builder.root
