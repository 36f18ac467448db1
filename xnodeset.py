"""
:mod:`xnodeset` is a jQuery-style query and mutation layer over an XML
element tree.

:mod:`xnodeset`

- is a single module;
- has no dependency outside `PSL <https://docs.python.org/3/library/>`_;
- wraps every query result in an immutable :class:`NodeSet`, so lookups
  chain freely and degrade to :data:`EMPTY` instead of failing.

Client code chains child-name lookups, applies compact selector strings
(``"catalog > book price"``, ``"#bk101"``), navigates axes (parent,
siblings, nth child, root, ...), and reads or writes attributes and text
across a whole set at once.

Simple example:

.. doctest::

   >>> import xnodeset
   >>> doc = xnodeset.Document.from_xml('''<?xml version="1.0"?>
   ... <catalog>
   ...   <book id="bk101"><author>Gambardella, Matthew</author><price>44.95</price></book>
   ...   <book id="bk102"><author>Ralls, Kim</author><price>5.95</price></book>
   ... </catalog>''')
   >>> doc["catalog > book > price"].count()
   2
   >>> doc.child("catalog").child("book").last().attr("id")
   'bk102'
   >>> doc["#bk101 price"].text()
   '44.95'
   >>> print(doc["price"].path())
   catalog\\book\\price
   >>> doc["book"].attr("sold", "yes")["#bk102"].attr("sold")
   'yes'
"""

import logging
import random
import re
import time
from collections import OrderedDict
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)
from xml.parsers import expat
from xml.sax.saxutils import escape, quoteattr

logger = logging.getLogger(__name__)

# Shared by every random() call; seeded once per process.
_random = random.Random(int(time.time() * 1000))


class NodeKind(Enum):
    """
    Node kinds, as seen by the query engine.

    Only :attr:`ELEMENT` nodes are candidates for selector matching;
    everything that is neither an element nor text (comments, processing
    instructions, the XML declaration, the document container) is
    :attr:`OTHER`.
    """

    ELEMENT = 1
    TEXT = 2
    OTHER = 3


class Node(object):
    """
    Represents a node in the document tree.

    Names and attribute names keep their case but are looked up
    case-insensitively by the query layer. Two nodes are equal if and
    only if they are the same node.

    Attributes:
        name     (:class:`str`)
        attrs    (:class:`Dict`\\[:class:`str`, :class:`str`])
        parent   (:class:`Optional`\\[:class:`Node`])
        children (:class:`List`\\[:class:`Node`])
    """

    kind = NodeKind.OTHER

    def __init__(self) -> None:
        self.name = ""  # type: str
        self.attrs = OrderedDict()  # type: Dict[str, str]
        self.parent = None  # type: Optional[Node]
        self.children = []  # type: List[Node]

    # XML representation of the node. Meant to be implemented by
    # subclasses.
    def outer_xml(self) -> str:  # pragma: no cover
        raise NotImplementedError

    def __str__(self) -> str:
        return self.outer_xml()

    def inner_xml(self) -> str:
        """XML representation of the node's children."""
        return serialize(self.children)

    @property
    def local_name(self) -> str:
        """Name without namespace prefix."""
        return self.name.rpartition(":")[2]

    def append_child(self, child: "Node") -> "Node":
        child.parent = self
        self.children.append(child)
        return child

    def last_child(self) -> Optional["Node"]:
        if self.children:
            return self.children[-1]
        else:
            return None

    def position(self) -> int:
        """Position among the parent's children, or -1 without a parent."""
        parent = self.parent
        if parent is None:
            return -1
        for index, sibling in enumerate(parent.children):
            if sibling is self:
                return index
        raise ValueError("node is not found in children of its parent")

    def next_sibling(self) -> Optional["Node"]:
        index = self.position()
        if index < 0 or index + 1 >= len(self.parent.children):  # type: ignore
            return None
        return self.parent.children[index + 1]  # type: ignore

    def previous_sibling(self) -> Optional["Node"]:
        index = self.position()
        if index <= 0:
            return None
        return self.parent.children[index - 1]  # type: ignore

    def ancestors(self) -> Generator["Node", None, None]:
        """Ancestors are generated in reverse order of depth."""
        ancestor = self.parent
        while ancestor is not None:
            yield ancestor
            ancestor = ancestor.parent

    def descendants(self) -> Generator["Node", None, None]:
        """Descendants are generated in depth-first order."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def get_attribute(self, name: str) -> Optional[str]:
        """Case-insensitive attribute lookup; ``None`` if absent."""
        key = _attribute_key(self.attrs, name)
        if key is None:
            return None
        return self.attrs[key]

    def set_attribute(self, name: str, value: str) -> None:
        """Updates the existing attribute (any case) or appends a new one."""
        key = _attribute_key(self.attrs, name)
        self.attrs[key if key is not None else name] = value

    def remove_attribute(self, name: str) -> None:
        key = _attribute_key(self.attrs, name)
        if key is not None:
            del self.attrs[key]

    @property
    def text(self) -> str:
        """The concatenation of all descendant text nodes."""
        return "".join(
            node.text for node in self.descendants() if node.kind is NodeKind.TEXT
        )

    def set_text(self, value: str) -> None:
        """Replaces all children with a single text node."""
        for child in self.children:
            child.parent = None
        self.children = []
        if value:
            self.append_child(TextNode(value))

    def clone(self) -> "Node":
        """Detached deep copy."""
        copy = self._copy()
        stack = [(self, copy)]
        while stack:
            source, target = stack.pop()
            for child in source.children:
                child_copy = target.append_child(child._copy())
                if child.children:
                    stack.append((child, child_copy))
        return copy

    # Copy of the node without its children. Meant to be implemented by
    # subclasses.
    def _copy(self) -> "Node":  # pragma: no cover
        raise NotImplementedError


class ElementNode(Node):
    """Represents an element node."""

    kind = NodeKind.ELEMENT

    def __init__(
        self,
        name: str,
        attrs: Iterable[Tuple[str, str]] = (),
        *,
        parent: Optional["Node"] = None,
        children: Optional[List["Node"]] = None
    ) -> None:
        Node.__init__(self)
        self.name = name
        self.attrs = OrderedDict(attrs)
        self.parent = parent
        self.children = children or []

    def __repr__(self) -> str:
        s = "<" + self.name
        if self.attrs:
            s += " attrs=%s" % repr(list(self.attrs.items()))
        if self.children:
            s += " children=%s" % repr(self.children)
        s += ">"
        return s

    def start_tag(self) -> str:
        """Opening tag, self-closing when the element has no children."""
        s = "<" + self.name
        for attr, val in self.attrs.items():
            s += " %s=%s" % (attr, quoteattr(val))
        s += ">" if self.children else "/>"
        return s

    def outer_xml(self) -> str:
        return serialize([self])

    def _copy(self) -> "Node":
        return ElementNode(self.name, self.attrs.items())


class TextNode(Node):
    """
    Represents a text node.

    Attributes:
        data (:class:`str`): unescaped text.
    """

    kind = NodeKind.TEXT

    def __init__(self, data: str) -> None:
        Node.__init__(self)
        self.name = "#text"
        self.data = data

    def __repr__(self) -> str:
        return "<%s>" % repr(self.data)

    # Escaped form of the text node. Use text for the unescaped version.
    def outer_xml(self) -> str:
        return escape(self.data)

    @property
    def text(self) -> str:
        return self.data

    def set_text(self, value: str) -> None:
        self.data = value

    def _copy(self) -> "Node":
        return TextNode(self.data)


class CommentNode(TextNode):
    """Represents a comment. Never matched by selectors."""

    kind = NodeKind.OTHER

    def __init__(self, data: str) -> None:
        TextNode.__init__(self, data)
        self.name = "#comment"

    def __repr__(self) -> str:
        return "<!--%s-->" % self.data

    def outer_xml(self) -> str:
        return "<!--%s-->" % self.data

    def _copy(self) -> "Node":
        return CommentNode(self.data)


class ProcessingInstructionNode(TextNode):
    """Represents a processing instruction; :attr:`name` is the target."""

    kind = NodeKind.OTHER

    def __init__(self, target: str, data: str) -> None:
        TextNode.__init__(self, data)
        self.name = target

    def __repr__(self) -> str:
        return "<?%s %s?>" % (self.name, self.data)

    def outer_xml(self) -> str:
        if self.data:
            return "<?%s %s?>" % (self.name, self.data)
        return "<?%s?>" % self.name

    def _copy(self) -> "Node":
        return ProcessingInstructionNode(self.name, self.data)


class DeclarationNode(ProcessingInstructionNode):
    """
    Represents the ``<?xml ...?>`` declaration.

    Kept as the first child of the document, which is why the root
    element is the document's *last* child.
    """

    def __init__(
        self,
        version: Optional[str] = "1.0",
        encoding: Optional[str] = None,
        standalone: Optional[bool] = None,
    ) -> None:
        pseudo_attrs = []
        if version:
            pseudo_attrs.append('version="%s"' % version)
        if encoding:
            pseudo_attrs.append('encoding="%s"' % encoding)
        if standalone is not None:
            pseudo_attrs.append('standalone="%s"' % ("yes" if standalone else "no"))
        ProcessingInstructionNode.__init__(self, "xml", " ".join(pseudo_attrs))
        self.version = version
        self.encoding = encoding
        self.standalone = standalone

    def _copy(self) -> "Node":
        return DeclarationNode(self.version, self.encoding, self.standalone)


class DocumentNode(Node):
    """
    The top-level container of a parsed document.

    It has no parent; its children are the declaration (if any),
    top-level comments and processing instructions, and the root
    element.
    """

    def __init__(self) -> None:
        Node.__init__(self)
        self.name = "#document"

    def __repr__(self) -> str:
        return "<#document children=%s>" % repr(self.children)

    def outer_xml(self) -> str:
        return self.inner_xml()

    def _copy(self) -> "Node":
        return DocumentNode()


def _attribute_key(attrs: Dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key in attrs:
        if key.lower() == lowered:
            return key
    return None


def serialize(nodes: Iterable[Node]) -> str:
    """
    XML text of the given nodes, concatenated.

    The tree is walked with an explicit stack, so nesting depth is not
    limited by the interpreter's recursion limit.
    """
    parts = []  # type: List[str]
    stack = list(reversed(list(nodes)))  # type: List[Union[Node, str]]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, ElementNode):
            parts.append(item.start_tag())
            if item.children:
                stack.append("</%s>" % item.name)
                stack.extend(reversed(item.children))
        elif isinstance(item, DocumentNode):
            stack.extend(reversed(item.children))
        else:
            parts.append(item.outer_xml())
    return "".join(parts)


class XNodeSetError(Exception):
    """Base class of all errors raised by this module."""


class InvalidArgument(XNodeSetError, ValueError):
    """A present but malformed argument, e.g. an empty attribute name."""


class MissingArgument(XNodeSetError, ValueError):
    """A required argument was ``None``."""


class IndexOutOfRange(XNodeSetError, IndexError):
    """
    Raised by ``nth`` for a position outside ``[0, count)``.

    Attributes:
        index (:class:`int`)
        count (:class:`int`)
    """

    def __init__(self, index: int, count: int) -> None:
        XNodeSetError.__init__(
            self, "index %d out of range for %d element(s)" % (index, count)
        )
        self.index = index
        self.count = count


class UnsupportedOperation(XNodeSetError, TypeError):
    """
    Unknown operation, or a known one called with an argument
    count/type combination outside its contract.

    Attributes:
        name      (:class:`str`)
        arguments (:class:`Tuple`)
    """

    def __init__(self, name: str, arguments: Sequence[Any] = ()) -> None:
        if arguments:
            msg = "Function '%s' with %d argument(s) is not supported." % (
                name,
                len(arguments),
            )
        else:
            msg = "Unsupported function: '%s'." % name
        XNodeSetError.__init__(self, msg)
        self.name = name
        self.arguments = tuple(arguments)


class DuplicateKey(XNodeSetError, ValueError):
    """
    ``map`` produced the same key for two elements.

    Attributes:
        key: the duplicated key.
    """

    def __init__(self, key: Any) -> None:
        XNodeSetError.__init__(self, "duplicate key: %s" % repr(key))
        self.key = key


class DocumentParseError(XNodeSetError):
    """
    Exception raised when :class:`XMLBuilder` cannot build a tree.

    Attributes:
        pos (:class:`Tuple`\\[:class:`int`, :class:`int`]):
            Line number and offset in XML input.
        why (:class:`str`):
            Reason of the exception.
    """

    def __init__(self, pos: Tuple[int, int], why: str) -> None:
        XNodeSetError.__init__(self, pos, why)
        self.pos = pos
        self.why = why

    def __str__(self) -> str:
        return "XML builder aborted at %d:%d: %s" % (self.pos[0], self.pos[1], self.why)


class XMLBuilder(object):
    """
    XML parser / tree builder.

    Drives an :mod:`xml.parsers.expat` parser and builds a
    :class:`DocumentNode` tree. Once finished, use :attr:`root` to
    access the document.

    Whitespace-only text is dropped unless `preserve_whitespace` is
    set, so element positions are not shifted by indentation.
    """

    def __init__(self, *, preserve_whitespace: bool = False) -> None:
        self.preserve_whitespace = preserve_whitespace
        self._document = DocumentNode()
        self._stack = [self._document]  # type: List[Node]
        self._parser = expat.ParserCreate()
        self._parser.ordered_attributes = True
        self._parser.buffer_text = True
        self._parser.StartElementHandler = self.handle_starttag
        self._parser.EndElementHandler = self.handle_endtag
        self._parser.CharacterDataHandler = self.handle_data
        self._parser.CommentHandler = self.handle_comment
        self._parser.ProcessingInstructionHandler = self.handle_pi
        self._parser.XmlDeclHandler = self.handle_xmldecl

    def feed(self, data: Union[str, bytes]) -> None:
        self._parse(data, False)

    def close(self) -> None:
        self._parse(b"", True)

    def _parse(self, data: Union[str, bytes], final: bool) -> None:
        try:
            self._parser.Parse(data, final)
        except expat.ExpatError as e:
            raise DocumentParseError(
                (e.lineno, e.offset), expat.ErrorString(e.code)
            ) from e

    def handle_starttag(self, tag: str, attrs: List[str]) -> None:
        # ordered_attributes gives a flat [name, value, name, value, ...] list.
        node = ElementNode(tag, zip(attrs[::2], attrs[1::2]))
        self._stack[-1].append_child(node)
        self._stack.append(node)

    # expat rejects mismatched end tags before this is called.
    def handle_endtag(self, tag: str) -> None:
        self._stack.pop()

    def handle_data(self, text: str) -> None:
        if not self.preserve_whitespace and not text.strip():
            return
        self._stack[-1].append_child(TextNode(text))

    def handle_comment(self, data: str) -> None:
        self._stack[-1].append_child(CommentNode(data))

    def handle_pi(self, target: str, data: str) -> None:
        self._stack[-1].append_child(ProcessingInstructionNode(target, data))

    def handle_xmldecl(
        self, version: Optional[str], encoding: Optional[str], standalone: int
    ) -> None:
        # expat reports -1 when standalone is not specified.
        self._stack[-1].append_child(
            DeclarationNode(version, encoding, None if standalone < 0 else bool(standalone))
        )

    def getpos(self) -> Tuple[int, int]:
        return self._parser.CurrentLineNumber, self._parser.CurrentColumnNumber

    @property
    def root(self) -> DocumentNode:
        """
        Returns the document node.

        Raises :class:`DocumentParseError` if the root element is not
        closed yet.
        """
        if len(self._stack) > 1:
            raise DocumentParseError(self.getpos(), "root tag not closed yet")
        return self._document


def parse_xml(
    xml: Union[str, bytes],
    *,
    BuilderClass: type = XMLBuilder,
    preserve_whitespace: bool = False
) -> DocumentNode:
    """
    Parses XML, builds the tree, and returns the document node.

    The builder may raise :class:`DocumentParseError`.

    Args:
        xml: input XML, as text or as encoded bytes
        BuilderClass: :class:`XMLBuilder` or a subclass
        preserve_whitespace: keep whitespace-only text nodes

    Returns:
        The :class:`DocumentNode` container of the parsed tree.
    """
    if xml is None:
        raise MissingArgument("xml")
    builder = BuilderClass(preserve_whitespace=preserve_whitespace)  # type: XMLBuilder
    builder.feed(xml)
    builder.close()
    return builder.root


class TokenKind(Enum):
    """
    Selector token kinds.

    - :attr:`NAME`: ``book``, element local name, case-insensitive;
    - :attr:`ID`: ``#bk101``, ``id`` attribute equal to the value;
    - :attr:`CHILD`: ``>``, the next match must be the immediate parent.
    """

    NAME = 1
    ID = 2
    CHILD = 3


class SelectorToken:
    """
    One whitespace-delimited token of a selector.

    Attributes:
        kind  (:class:`TokenKind`)
        value (:class:`str`)
    """

    def __init__(self, kind: TokenKind, value: str) -> None:
        self.kind = kind
        self.value = value

    def __repr__(self) -> str:
        return "<SelectorToken %s %s>" % (self.kind.name, repr(self.value))

    def __str__(self) -> str:
        if self.kind == TokenKind.ID:
            return "#" + self.value
        return self.value

    @classmethod
    def from_str(cls, s: str) -> "SelectorToken":
        if s == ">":
            return cls(TokenKind.CHILD, s)
        if s.startswith("#"):
            return cls(TokenKind.ID, s[1:])
        return cls(TokenKind.NAME, s)

    def matches(self, node: Node) -> bool:
        if node.kind is not NodeKind.ELEMENT:
            return False
        if self.kind == TokenKind.ID:
            id = node.get_attribute("id")
            return bool(id) and id == self.value
        if self.kind == TokenKind.NAME:
            return node.local_name.lower() == self.value.lower()
        # Combinators are consumed, never compared.
        return False


class Selector:
    """
    Represents a selector string such as ``catalog > book #bk101 price``.

    Tokens are separated by runs of spaces or tabs. ``>`` requires the
    next match to be the immediate parent; whitespace alone lets it be
    any ancestor. There is no other combinator, no attribute syntax, and
    no compound token (``book#bk101`` is a name that matches nothing).

    Tokens are stored innermost first, in the order they are consumed
    while walking from a candidate element up through its ancestors.

    Attributes:
        tokens (:class:`List`\\[:class:`SelectorToken`])
    """

    SEPARATOR = re.compile(r"[ \t]+")

    def __init__(self, tokens: Iterable[SelectorToken]) -> None:
        self.tokens = list(tokens)

    def __repr__(self) -> str:
        return "<Selector %s>" % repr(str(self))

    def __str__(self) -> str:
        return " ".join(str(token) for token in reversed(self.tokens))

    def __len__(self) -> int:
        return len(self.tokens)

    @classmethod
    def from_str(cls, s: str) -> "Selector":
        tokens = [SelectorToken.from_str(t) for t in cls.SEPARATOR.split(s) if t]
        tokens.reverse()
        logger.debug("compiled selector %r into %d token(s)", s, len(tokens))
        return cls(tokens)

    def matches(self, node: Node) -> bool:
        """
        Decides whether the selector matches `node`.

        Starting at `node` with the innermost token, each step compares
        the current node against the current token. On a match the
        cursor advances (consuming a following ``>`` sets `exact`); on a
        mismatch the candidate is rejected if `exact` is set, otherwise
        the walk continues upward. The candidate is accepted once every
        token is consumed, rejected once the walk runs past the top.
        """
        tokens = self.tokens
        if not tokens:
            return False
        cursor = 0
        # The candidate itself must match the innermost token.
        exact = True
        current = node  # type: Optional[Node]
        while current is not None:
            if tokens[cursor].matches(current):
                cursor += 1
                if cursor < len(tokens) and tokens[cursor].kind == TokenKind.CHILD:
                    cursor += 1
                    exact = True
                else:
                    exact = False
                if cursor >= len(tokens):
                    return True
            elif exact:
                return False
            current = current.parent
        return False

    def select(self, nodes: Iterable[Node]) -> List[Node]:
        """All matching elements in the subtrees of `nodes`, in pre-order."""
        return [node for node in iter_elements(nodes) if self.matches(node)]


def iter_elements(nodes: Iterable[Node]) -> Generator[Node, None, None]:
    """
    Pre-order walk over the element nodes of the given subtrees.

    Non-element nodes and everything below them are skipped.
    """
    stack = list(reversed(list(nodes)))
    while stack:
        node = stack.pop()
        if node.kind is NodeKind.ELEMENT:
            yield node
            stack.extend(reversed(node.children))


def find_nodes(nodes: Iterable[Node], predicate: Callable[[Node], Any]) -> List[Node]:
    """Like :meth:`Selector.select`, with `predicate` as the acceptance test."""
    return [node for node in iter_elements(nodes) if predicate(node)]


class NodeSet(object):
    """
    An immutable, ordered set of references to nodes of one document.

    Every query goes through :meth:`invoke`; the named methods below are
    shortcuts for it. Operations that produce no nodes return
    :data:`EMPTY`. Mutating operations (``attr`` and ``text`` setters)
    change the referenced nodes in place, so the change is visible
    through every set that shares them.

    Equality is identity of the members, pairwise and in order.

    Python protocol: ``len(s)``, ``bool(s)``, ``str(s)`` (inner XML of
    the first node), iteration (single-element sets), ``s[i]`` (same as
    :meth:`nth`), ``s["selector"]`` (selector search) and ``node in s``.
    """

    def __init__(self, nodes: Iterable[Node] = ()) -> None:
        self._nodes = tuple(nodes)  # type: Tuple[Node, ...]

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return self._nodes

    def __repr__(self) -> str:
        return "<NodeSet %s>" % repr(list(self._nodes))

    def __str__(self) -> str:
        if self._nodes:
            return self._nodes[0].inner_xml()
        return ""

    def __bool__(self) -> bool:
        return bool(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator["NodeSet"]:
        for node in self._nodes:
            yield _single(node)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, NodeSet):
            return bool(item) and all(node in self for node in item.nodes)
        return any(node is item for node in self._nodes)

    def __getitem__(self, key: Union[int, str]) -> "NodeSet":
        if isinstance(key, str):
            return _search(self._nodes, key)
        return self.nth(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NodeSet):
            return NotImplemented
        if len(self._nodes) != len(other._nodes):
            return False
        return all(a is b for a, b in zip(self._nodes, other._nodes))

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        return hash(tuple(id(node) for node in self._nodes))

    def to_list(self) -> List[Node]:
        """Copy of the member references."""
        return list(self._nodes)

    def to_node(self) -> Optional[Node]:
        """Detached clone of the first member, or ``None``."""
        if self._nodes:
            return self._nodes[0].clone()
        return None

    def child(self, name: str) -> "NodeSet":
        """Direct children of every member whose name matches `name`, any case."""
        lowered = _check_name(name, "child name").lower()
        return _wrap(
            child
            for node in self._nodes
            for child in node.children
            if child.local_name.lower() == lowered
        )

    def invoke(self, name: str, *args: Any) -> Any:
        """
        Runs operation `name` (case-insensitive) with `args`.

        Raises :class:`UnsupportedOperation` for an unknown name or an
        argument list outside the operation's contract.
        """
        return dispatch(self, name, args)

    def count(self) -> int:
        return self.invoke("count")

    def length(self) -> int:
        return self.invoke("length")

    def any(self) -> bool:
        return self.invoke("any")

    def empty(self) -> bool:
        return self.invoke("empty")

    def first(self) -> "NodeSet":
        return self.invoke("first")

    def last(self) -> "NodeSet":
        return self.invoke("last")

    def nth(self, *args: Any) -> "NodeSet":
        """
        The member at 0-based position ``args[0]``.

        Raises :class:`IndexOutOfRange` outside ``[0, count)``, including
        on an empty set.
        """
        return self.invoke("nth", *args)

    def prev(self) -> "NodeSet":
        return self.invoke("prev")

    def next(self) -> "NodeSet":
        return self.invoke("next")

    def parent(self) -> "NodeSet":
        return self.invoke("parent")

    def root(self) -> "NodeSet":
        """Last child of the top-most container above the first member."""
        return self.invoke("root")

    def children(self, *args: Any) -> "NodeSet":
        """
        Without arguments, every child of every member, in order. With
        a position, that child of the first member only, or
        :data:`EMPTY` when out of range.
        """
        return self.invoke("children", *args)

    def random(self) -> "NodeSet":
        return self.invoke("random")

    def siblings(self) -> "NodeSet":
        return self.invoke("siblings")

    def index(self) -> int:
        return self.invoke("index")

    def name(self) -> str:
        return self.invoke("name")

    def n(self) -> str:
        return self.invoke("n")

    def path(self) -> str:
        """Backslash-joined names from the root element down to the first member."""
        return self.invoke("path")

    def value(self, *args: Any) -> Any:
        """
        Text of the first member, or with one argument, sets the text of
        every member and returns the set.
        """
        return self.invoke("value", *args)

    def val(self, *args: Any) -> Any:
        return self.invoke("val", *args)

    def v(self, *args: Any) -> Any:
        return self.invoke("v", *args)

    def text(self, *args: Any) -> Any:
        return self.invoke("text", *args)

    def attr(self, *args: Any) -> Any:
        """
        ``attr(name)`` reads an attribute of the first member (any case,
        ``""`` if absent). ``attr(name, value)`` sets it on every member
        and returns the set; a ``None`` value removes it instead.
        """
        return self.invoke("attr", *args)

    def eq(self, other: Any) -> bool:
        return self.invoke("eq", other)

    def equals(self, other: Any) -> bool:
        return self.invoke("equals", other)

    def where(self, arg: Any) -> "NodeSet":
        """
        Members for which the predicate holds, or with a selector
        string, a selector search rooted at this set.
        """
        return self.invoke("where", arg)

    def filter(self, arg: Any) -> "NodeSet":
        return self.invoke("filter", arg)

    def find(self, arg: Any) -> "NodeSet":
        """Subtree search by predicate or selector string."""
        return self.invoke("find", arg)

    def lookup(self, arg: Any) -> "NodeSet":
        return self.invoke("lookup", arg)

    def map(self, key: Any) -> Dict[Any, "NodeSet"]:
        """
        Maps ``key(member)`` to each single-member set.

        Raises :class:`DuplicateKey` when two members produce the same
        key.
        """
        return self.invoke("map", key)

    def to_dictionary(self, key: Any) -> Dict[Any, "NodeSet"]:
        return self.invoke("toDictionary", key)

    def to_dict(self, key: Any) -> Dict[Any, "NodeSet"]:
        return self.invoke("toDict", key)

    def select(self, projection: Any) -> List[Any]:
        """Non-``None`` results of `projection` over the members."""
        return self.invoke("select", projection)

    def project(self, projection: Any) -> List[Any]:
        return self.invoke("project", projection)

    def each(self, action: Any) -> None:
        return self.invoke("each", action)


EMPTY = NodeSet()


def _wrap(nodes: Iterable[Node]) -> NodeSet:
    nodes = tuple(nodes)
    if not nodes:
        return EMPTY
    return NodeSet(nodes)


def _single(node: Optional[Node]) -> NodeSet:
    if node is None:
        return EMPTY
    return NodeSet((node,))


def _search(nodes: Sequence[Node], selector: str) -> NodeSet:
    if not nodes or not selector:
        return EMPTY
    return _wrap(Selector.from_str(selector).select(nodes))


def _check_name(name: Optional[str], what: str) -> str:
    if name is None:
        raise MissingArgument(what)
    if not isinstance(name, str) or not name:
        raise InvalidArgument(what)
    return name


class Document(NodeSet):
    """
    A :class:`NodeSet` holding the root element of a parsed document.

    The root element is the document's last top-level child (the
    declaration and any leading comments come first). :attr:`tree` is
    the :class:`DocumentNode` itself.

    :meth:`child` on a document matches the root element by name, so
    ``doc.child("catalog")`` is the root ``catalog`` element.
    """

    def __init__(self, tree: DocumentNode) -> None:
        root = tree.last_child()
        NodeSet.__init__(self, (root,) if root is not None else (tree,))
        self.tree = tree

    def __repr__(self) -> str:
        return "<Document %s>" % repr(list(self.nodes))

    def child(self, name: str) -> NodeSet:
        lowered = _check_name(name, "child name").lower()
        return _wrap(node for node in self.nodes if node.local_name.lower() == lowered)

    @classmethod
    def from_xml(cls, xml: str, **kwargs: Any) -> "Document":
        """
        Parses an XML string.

        Keyword arguments are passed on to :func:`parse_xml`.
        """
        tree = parse_xml(xml, **kwargs)
        logger.debug("loaded document from %d character(s) of XML", len(xml))
        return cls(tree)

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "Document":
        # Read as bytes so expat honours the declared encoding.
        with open(path, "rb") as fp:
            data = fp.read()
        tree = parse_xml(data, **kwargs)
        logger.debug("loaded document from %s", path)
        return cls(tree)

    @classmethod
    def from_tree(cls, tree: DocumentNode) -> "Document":
        if tree is None:
            raise MissingArgument("tree")
        return cls(tree)


# Axis resolution.


def _element_at(nodes: Sequence[Node], pos: int) -> NodeSet:
    if pos < 0 or pos >= len(nodes):
        raise IndexOutOfRange(pos, len(nodes))
    return _single(nodes[pos])


def _axis_first(nodes: Sequence[Node]) -> NodeSet:
    return _single(nodes[0])


def _axis_last(nodes: Sequence[Node]) -> NodeSet:
    return _single(nodes[-1])


def _axis_prev(nodes: Sequence[Node]) -> NodeSet:
    return _single(nodes[0].previous_sibling())


def _axis_next(nodes: Sequence[Node]) -> NodeSet:
    return _single(nodes[0].next_sibling())


def _axis_parent(nodes: Sequence[Node]) -> NodeSet:
    return _single(nodes[0].parent)


def _axis_root(nodes: Sequence[Node]) -> NodeSet:
    # The last child stands for the root element: the top-level
    # container may start with the declaration or comments.
    top = nodes[0]
    while top.parent is not None:
        top = top.parent
    return _single(top.last_child())


def _axis_children(nodes: Sequence[Node], *args: int) -> NodeSet:
    if not args:
        return _wrap(child for node in nodes for child in node.children)
    pos = args[0]
    children = nodes[0].children
    if 0 <= pos < len(children):
        return _single(children[pos])
    return EMPTY


def _axis_random(nodes: Sequence[Node]) -> NodeSet:
    return _single(_random.choice(nodes))


def _axis_siblings(nodes: Sequence[Node]) -> NodeSet:
    results = []  # type: List[Node]
    seen = set()
    for node in nodes:
        if node.kind is not NodeKind.ELEMENT or node.parent is None:
            continue
        for sibling in node.parent.children:
            if sibling is node or id(sibling) in seen:
                continue
            seen.add(id(sibling))
            results.append(sibling)
    return _wrap(results)


class Operation(Enum):
    """
    The closed set of operations understood by :func:`dispatch`.

    Values are canonical names; aliases (``length``, ``val``,
    ``toDict``, ...) resolve through :func:`resolve_operation`.
    """

    INVOKE = "invoke"
    EQ = "eq"
    INDEX = "index"
    COUNT = "count"
    NAME = "name"
    PATH = "path"
    ANY = "any"
    EMPTY = "empty"
    FIRST = "first"
    LAST = "last"
    NTH = "nth"
    PREV = "prev"
    NEXT = "next"
    PARENT = "parent"
    ROOT = "root"
    CHILDREN = "children"
    RANDOM = "random"
    SIBLINGS = "siblings"
    ATTR = "attr"
    EACH = "each"
    WHERE = "where"
    VALUE = "value"
    MAP = "map"
    SELECT = "select"
    FIND = "find"


_OPERATION_ALIASES = {
    "equals": Operation.EQ,
    "length": Operation.COUNT,
    "n": Operation.NAME,
    "val": Operation.VALUE,
    "v": Operation.VALUE,
    "text": Operation.VALUE,
    "filter": Operation.WHERE,
    "todictionary": Operation.MAP,
    "todict": Operation.MAP,
    "project": Operation.SELECT,
    "lookup": Operation.FIND,
}  # type: Dict[str, Operation]

_AXES = {
    Operation.FIRST: _axis_first,
    Operation.LAST: _axis_last,
    Operation.PREV: _axis_prev,
    Operation.NEXT: _axis_next,
    Operation.PARENT: _axis_parent,
    Operation.ROOT: _axis_root,
    Operation.CHILDREN: _axis_children,
    Operation.RANDOM: _axis_random,
    Operation.SIBLINGS: _axis_siblings,
}  # type: Dict[Operation, Callable[..., NodeSet]]


def resolve_operation(name: str) -> Optional[Operation]:
    """Case-insensitive name lookup; underscores are ignored."""
    key = name.lower().replace("_", "")
    if key in _OPERATION_ALIASES:
        return _OPERATION_ALIASES[key]
    try:
        return Operation(key)
    except ValueError:
        return None


def resolve_axis(nodes: Sequence[Node], axis: Operation, *args: int) -> NodeSet:
    """
    Computes `axis` relative to `nodes`.

    Every axis yields :data:`EMPTY` for empty input, except
    :attr:`Operation.NTH`, for which no position is ever valid.
    """
    if axis == Operation.NTH:
        return _element_at(nodes, args[0])
    if axis not in _AXES:
        raise UnsupportedOperation(axis.value, args)
    if not nodes:
        return EMPTY
    return _AXES[axis](nodes, *args)


def _op_invoke(nodeset: NodeSet, *args: Any) -> Any:
    if not args:
        raise UnsupportedOperation(Operation.INVOKE.value, args)
    return dispatch(nodeset, args[0], args[1:])


def _op_eq(nodeset: NodeSet, other: Any) -> bool:
    if not isinstance(other, NodeSet):
        return False
    return nodeset == other


def _op_index(nodeset: NodeSet) -> int:
    if not nodeset:
        return -1
    node = nodeset.nodes[0]
    if node.parent is None or isinstance(node.parent, DocumentNode):
        return -1
    return node.position()


def _op_count(nodeset: NodeSet) -> int:
    return len(nodeset.nodes)


def _op_name(nodeset: NodeSet) -> str:
    if nodeset:
        return nodeset.nodes[0].local_name
    return ""


def _op_path(nodeset: NodeSet) -> str:
    if not nodeset:
        return ""
    node = nodeset.nodes[0]
    # The top-most node has no parent and is not part of the path.
    chain = [node] + list(node.ancestors())
    return "\\".join(n.local_name for n in reversed(chain[:-1]))


def _op_any(nodeset: NodeSet) -> bool:
    return bool(nodeset.nodes)


def _op_empty(nodeset: NodeSet) -> bool:
    return not nodeset.nodes


def _axis_operation(axis: Operation) -> Callable[..., NodeSet]:
    def handler(nodeset: NodeSet, *args: int) -> NodeSet:
        return resolve_axis(nodeset.nodes, axis, *args)

    return handler


def _op_attr(nodeset: NodeSet, name: Any, *value: Any) -> Any:
    name = _check_name(name, "attribute name")
    if not value:
        if not nodeset:
            return ""
        result = nodeset.nodes[0].get_attribute(name)
        return result if result is not None else ""
    new_value = value[0]
    if new_value is not None and not isinstance(new_value, str):
        new_value = str(new_value)
    for node in nodeset.nodes:
        if node.kind is not NodeKind.ELEMENT:
            continue
        if new_value is None:
            node.remove_attribute(name)
        else:
            node.set_attribute(name, new_value)
    return nodeset


def _op_each(nodeset: NodeSet, action: Callable[[NodeSet], Any]) -> None:
    for node in nodeset.nodes:
        action(_single(node))


def _op_where(nodeset: NodeSet, arg: Union[str, Callable[[NodeSet], Any]]) -> NodeSet:
    if isinstance(arg, str):
        return _search(nodeset.nodes, arg)
    return _wrap(node for node in nodeset.nodes if arg(_single(node)))


def _op_value(nodeset: NodeSet, *args: Any) -> Any:
    if not args:
        if nodeset:
            return nodeset.nodes[0].text
        return ""
    value = args[0]
    if value is None:
        value = ""
    elif not isinstance(value, str):
        value = str(value)
    for node in nodeset.nodes:
        node.set_text(value)
    return nodeset


def _op_map(nodeset: NodeSet, key: Callable[[NodeSet], Any]) -> Dict[Any, NodeSet]:
    result = OrderedDict()  # type: Dict[Any, NodeSet]
    for node in nodeset.nodes:
        value = _single(node)
        k = key(value)
        if k in result:
            raise DuplicateKey(k)
        result[k] = value
    return result


def _op_select(nodeset: NodeSet, projection: Callable[[NodeSet], Any]) -> List[Any]:
    results = []
    for node in nodeset.nodes:
        res = projection(_single(node))
        if res is not None:
            results.append(res)
    return results


def _op_find(nodeset: NodeSet, arg: Union[str, Callable[[NodeSet], Any]]) -> NodeSet:
    if isinstance(arg, str):
        return _search(nodeset.nodes, arg)
    return _wrap(find_nodes(nodeset.nodes, lambda node: arg(_single(node))))


# Argument signatures: a tuple of accepted argument-type tuples, or None
# when the handler takes anything. `callable` stands for any callable;
# `int` excludes bool.
_NO_ARGS = ((),)
_SEARCH_ARGS = ((callable,), (str,))

_HANDLERS = {
    Operation.INVOKE: (_op_invoke, None),
    Operation.EQ: (_op_eq, ((object,),)),
    Operation.INDEX: (_op_index, _NO_ARGS),
    Operation.COUNT: (_op_count, _NO_ARGS),
    Operation.NAME: (_op_name, _NO_ARGS),
    Operation.PATH: (_op_path, _NO_ARGS),
    Operation.ANY: (_op_any, _NO_ARGS),
    Operation.EMPTY: (_op_empty, _NO_ARGS),
    Operation.FIRST: (_axis_operation(Operation.FIRST), _NO_ARGS),
    Operation.LAST: (_axis_operation(Operation.LAST), _NO_ARGS),
    Operation.NTH: (_axis_operation(Operation.NTH), ((int,),)),
    Operation.PREV: (_axis_operation(Operation.PREV), _NO_ARGS),
    Operation.NEXT: (_axis_operation(Operation.NEXT), _NO_ARGS),
    Operation.PARENT: (_axis_operation(Operation.PARENT), _NO_ARGS),
    Operation.ROOT: (_axis_operation(Operation.ROOT), _NO_ARGS),
    Operation.CHILDREN: (_axis_operation(Operation.CHILDREN), ((), (int,))),
    Operation.RANDOM: (_axis_operation(Operation.RANDOM), _NO_ARGS),
    Operation.SIBLINGS: (_axis_operation(Operation.SIBLINGS), _NO_ARGS),
    Operation.ATTR: (_op_attr, ((object,), (object, object))),
    Operation.EACH: (_op_each, ((callable,),)),
    Operation.WHERE: (_op_where, _SEARCH_ARGS),
    Operation.VALUE: (_op_value, ((), (object,))),
    Operation.MAP: (_op_map, ((callable,),)),
    Operation.SELECT: (_op_select, ((callable,),)),
    Operation.FIND: (_op_find, _SEARCH_ARGS),
}  # type: Dict[Operation, Tuple[Callable[..., Any], Optional[Tuple[Tuple[Any, ...], ...]]]]


def _accepts(expected: Any, arg: Any) -> bool:
    if expected is callable:
        return callable(arg)
    if expected is int:
        return isinstance(arg, int) and not isinstance(arg, bool)
    return isinstance(arg, expected)


def _signature_matches(signatures: Tuple[Tuple[Any, ...], ...], args: Sequence[Any]) -> bool:
    return any(
        len(signature) == len(args)
        and all(_accepts(expected, arg) for expected, arg in zip(signature, args))
        for signature in signatures
    )


def dispatch(nodeset: NodeSet, name: str, args: Sequence[Any] = ()) -> Any:
    """
    The single entry point for every operation on a :class:`NodeSet`.

    Args:
        nodeset: the input set
        name:    operation name, case-insensitive
        args:    positional arguments

    Returns:
        A scalar (count, name, path, attribute value, ...), a new
        :class:`NodeSet`, or for setters the input set itself.

    Raises:
        MissingArgument: `name` is ``None``.
        InvalidArgument: `name` is empty or not a string.
        UnsupportedOperation: unknown `name`, or `args` outside the
            operation's contract.
    """
    name = _check_name(name, "operation name")
    args = tuple(args)
    operation = resolve_operation(name)
    if operation is None:
        logger.debug("rejected unknown operation %r", name)
        raise UnsupportedOperation(name, args)
    handler, signatures = _HANDLERS[operation]
    if signatures is not None and not _signature_matches(signatures, args):
        logger.debug("rejected %r with %d argument(s)", name, len(args))
        raise UnsupportedOperation(name, args)
    return handler(nodeset, *args)
