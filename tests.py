import pytest

from xnodeset import *


BOOK_COUNT = 12

SAMPLE_XML = """\
<?xml version="1.0"?>
<catalog>
  <book id="bk101">
    <author>Gambardella, Matthew</author>
    <title>XML Developer's Guide</title>
    <genre>Computer</genre>
    <price>44.95</price>
    <publish_date>2000-10-01</publish_date>
    <description>An in-depth look at creating applications with XML &amp; friends.</description>
  </book>
  <book id="bk102">
    <author>Ralls, Kim</author>
    <title>Midnight Rain</title>
    <genre>Fantasy</genre>
    <price>5.95</price>
    <publish_date>2000-12-16</publish_date>
  </book>
  <book id="bk103">
    <author>Corets, Eva</author>
    <title>Maeve Ascendant</title>
    <genre>Fantasy</genre>
    <price>5.95</price>
    <publish_date>2000-11-17</publish_date>
  </book>
  <book id="bk104">
    <author>Corets, Eva</author>
    <title>Oberon's Legacy</title>
    <genre>Fantasy</genre>
    <price>5.95</price>
    <publish_date>2001-03-10</publish_date>
  </book>
  <book id="bk105">
    <author>Corets, Eva</author>
    <title>The Sundered Grail</title>
    <genre>Fantasy</genre>
    <price>5.95</price>
    <publish_date>2001-09-10</publish_date>
  </book>
  <book id="bk106">
    <author>Randall, Cynthia</author>
    <title>Lover Birds</title>
    <genre>Romance</genre>
    <price>4.95</price>
    <publish_date>2000-09-02</publish_date>
  </book>
  <book id="bk107">
    <author>Thurman, Paula</author>
    <title>Splish Splash</title>
    <genre>Romance</genre>
    <price>4.95</price>
    <publish_date>2000-11-02</publish_date>
  </book>
  <book id="bk108">
    <author>Knorr, Stefan</author>
    <title>Creepy Crawlies</title>
    <genre>Horror</genre>
    <price>4.95</price>
    <publish_date>2000-12-06</publish_date>
  </book>
  <book id="bk109">
    <author>Kress, Peter</author>
    <title>Paradox Lost</title>
    <genre>Science Fiction</genre>
    <price>6.95</price>
    <publish_date>2000-11-02</publish_date>
  </book>
  <book id="bk110">
    <author>O'Brien, Tim</author>
    <title>Microsoft .NET: The Programming Bible</title>
    <genre>Computer</genre>
    <price>36.95</price>
    <publish_date>2000-12-09</publish_date>
  </book>
  <book id="bk111">
    <author>O'Brien, Tim</author>
    <title>MSXML3: A Comprehensive Guide</title>
    <genre>Computer</genre>
    <price>36.95</price>
    <publish_date>2000-12-01</publish_date>
  </book>
  <book id="bk112">
    <author>Galos, Mike</author>
    <title>Visual Studio 7: A Comprehensive Guide</title>
    <genre>Computer</genre>
    <price>49.95</price>
    <publish_date>2001-04-16</publish_date>
  </book>
</catalog>
"""


@pytest.fixture(scope="module")
def doc():
    return Document.from_xml(SAMPLE_XML)


# For tests that mutate the tree.
@pytest.fixture
def fresh_doc():
    return Document.from_xml(SAMPLE_XML)


@pytest.fixture(scope="module")
def books(doc):
    return doc.child("catalog").child("book")


def test_from_xml_single_root():
    d = Document.from_xml("<doc></doc>")
    assert isinstance(d, NodeSet)
    assert d.count() == 1
    assert d.name() == "doc"


def test_from_xml_none():
    with pytest.raises(MissingArgument):
        Document.from_xml(None)


@pytest.mark.parametrize(
    "xml",
    [
        "",
        "<doc><insert invalid xml here></doc>",
        "<doc>",
        "<a></b>",
        "<a/><b/>",
    ],
)
def test_malformed_xml(xml):
    with pytest.raises(DocumentParseError) as excinfo:
        Document.from_xml(xml)
    assert len(excinfo.value.pos) == 2
    assert excinfo.value.why


def test_from_file(tmp_path):
    path = tmp_path / "books.xml"
    path.write_text(SAMPLE_XML, encoding="utf-8")
    d = Document.from_file(str(path))
    assert d["book"].count() == BOOK_COUNT


def test_from_file_declared_encoding(tmp_path):
    path = tmp_path / "latin1.xml"
    path.write_bytes(
        '<?xml version="1.0" encoding="ISO-8859-1"?><doc>caf\xe9</doc>'.encode("latin-1")
    )
    assert Document.from_file(str(path)).text() == "caf\xe9"


def test_from_tree():
    tree = parse_xml("<doc><item/></doc>")
    d = Document.from_tree(tree)
    assert d.tree is tree
    assert d.child("doc").child("item").count() == 1
    with pytest.raises(MissingArgument):
        Document.from_tree(None)


def test_document_tree(doc):
    assert isinstance(doc.tree, DocumentNode)
    declaration = doc.tree.children[0]
    assert isinstance(declaration, DeclarationNode)
    assert declaration.version == "1.0"
    assert doc.tree.last_child() is doc.to_list()[0]


def test_preserve_whitespace():
    xml = "<doc>\n  <a/>\n  <b/>\n</doc>"
    assert Document.from_xml(xml).children().count() == 2
    kept = Document.from_xml(xml, preserve_whitespace=True)
    assert kept.children().count() == 5
    assert kept["b"].index() == 3


def test_comments_and_processing_instructions():
    d = Document.from_xml("<doc><!-- note --><?app run?>text</doc>")
    children = d.children()
    assert children.count() == 3
    assert [child.kind for child in children.to_list()] == [
        NodeKind.OTHER,
        NodeKind.OTHER,
        NodeKind.TEXT,
    ]
    assert d.text() == "text"
    assert str(d) == "<!-- note --><?app run?>text"


def test_chained_child_queries(doc):
    prices = doc.child("catalog").child("book").child("price")
    assert isinstance(prices, NodeSet)
    assert prices.count() == BOOK_COUNT


def test_invalid_chained_child_queries(doc):
    prices = doc.child("cat___alog").child("book").child("price")
    assert isinstance(prices, NodeSet)
    assert prices.count() == 0
    assert prices is EMPTY


def test_child_name_case(doc):
    results = [doc.child(name) for name in ["catalog", "CATALOG", "Catalog", "CATaLOg"]]
    for a, b in zip(results, results[1:]):
        assert a == b
    assert results[0].count() == 1
    assert results[0] != EMPTY


def test_child_name_errors(books):
    with pytest.raises(MissingArgument):
        books.child(None)
    with pytest.raises(InvalidArgument):
        books.child("")


def test_missing_node(doc):
    node = doc.child("non_existent_node")
    assert node.count() == 0
    assert node == EMPTY
    assert not node
    assert str(node) == ""


@pytest.mark.parametrize(
    "selector,count",
    [
        ("price", BOOK_COUNT),
        ("pr_ice", 0),
        ("book", BOOK_COUNT),
        ("catalog", 1),
        ("does_not_exist", 0),
        ("catalog price", BOOK_COUNT),
        ("catalog > book > price", BOOK_COUNT),
        ("catalog book > price", BOOK_COUNT),
        ("catalog > book price", BOOK_COUNT),
        ("book > price", BOOK_COUNT),
        ("book price", BOOK_COUNT),
        ("CATALOG  >  Book\tPRICE", BOOK_COUNT),
        ("cat_alog price", 0),
        ("catalog pri_ce", 0),
        ("price catalog", 0),
        ("catalog > price", 0),
        ("price > catalog", 0),
        ("#bk105", 1),
        ("#BK105", 0),
        ("#bk105 > price", 1),
        ("catalog #bk105 title", 1),
        ("catalog > #bk105 > title", 1),
        ("book > #bk105", 0),
        ("book#bk105", 0),
        ("catalog>book", 0),
        ("", 0),
        ("   ", 0),
    ],
)
def test_selector(doc, selector, count):
    results = doc[selector]
    assert isinstance(results, NodeSet)
    assert results.count() == count
    assert doc.where(selector) == results
    assert doc.find(selector) == results
    for node in results.to_list():
        assert Selector.from_str(selector).matches(node)


def test_selector_tokens():
    selector = Selector.from_str("catalog > book\t #bk101  price")
    assert len(selector) == 5
    assert [token.kind for token in selector.tokens] == [
        TokenKind.NAME,
        TokenKind.ID,
        TokenKind.NAME,
        TokenKind.CHILD,
        TokenKind.NAME,
    ]
    assert str(selector) == "catalog > book #bk101 price"


def test_non_root_selection(books):
    first = books.first()
    assert first["price"].count() == 1
    assert first["price"].text() == "44.95"
    assert first["#bk102"].count() == 0
    assert books["#bk102 title"].text() == "Midnight Rain"


def test_iteration(books):
    assert len(books) == BOOK_COUNT
    n = 0
    for book in books:
        assert book == books[n]
        n += 1
    assert n == BOOK_COUNT


def test_iteration_empty(books):
    for _ in books.child("does_not_exist"):
        pytest.fail("empty set yielded an element")


def test_forward_walk(books):
    n = 0
    current = books.first()
    while current:
        assert current == books[n]
        n += 1
        current = current.next()
    assert n == BOOK_COUNT


def test_backward_walk(books):
    n = 0
    current = books.last()
    while current:
        n += 1
        assert current == books[BOOK_COUNT - n]
        current = current.prev()
    assert n == BOOK_COUNT


@pytest.mark.parametrize(
    "method", ["count", "COUnT", "COUNT", "cOUNT", "Count", "length", "LENGTH", "lENgth"]
)
def test_count_case(books, method):
    assert books.invoke(method) == BOOK_COUNT
    assert books.invoke("invoke", method) == BOOK_COUNT


@pytest.mark.parametrize(
    "method,args",
    [
        ("PARENT", ()),
        ("Root", ()),
        ("FIRST", ()),
        ("Last", ()),
        ("Nth", (3,)),
        ("nTH", (11,)),
        ("SiBlings", ()),
        ("cHILDREN", ()),
        ("Children", (0,)),
        ("Index", ()),
        ("PATH", ()),
    ],
)
def test_axis_case(books, method, args):
    assert books.invoke(method, *args) == books.invoke(method.lower(), *args)


@pytest.mark.parametrize("method", ["ToDict", "TODICTIONARY", "Map", "to_Dict"])
def test_map_case(books, method):
    def key(b):
        return b.attr("id")

    assert books.invoke(method, key) == books.invoke(method.lower(), key)
    assert books.invoke(method, key) == books.map(key)


def test_empty_set():
    assert EMPTY.count() == 0
    assert EMPTY.length() == 0
    assert EMPTY.empty()
    assert not EMPTY.any()
    assert EMPTY.index() == -1
    assert EMPTY.name() == ""
    assert EMPTY.path() == ""
    assert EMPTY.text() == ""
    assert EMPTY.attr("id") == ""
    assert EMPTY.to_list() == []
    assert EMPTY.to_node() is None


@pytest.mark.parametrize(
    "selector,count",
    [("book", BOOK_COUNT), ("catalog", 1), ("price", BOOK_COUNT), ("does_not_exist", 0)],
)
def test_any_empty(doc, selector, count):
    result = doc[selector]
    assert result.count() == count
    assert result.any() == (count > 0)
    assert result.empty() == (count == 0)


def test_unknown_operation(doc):
    with pytest.raises(UnsupportedOperation) as excinfo:
        doc.invoke("invalidFunctionCall")
    assert str(excinfo.value) == "Unsupported function: 'invalidFunctionCall'."
    with pytest.raises(UnsupportedOperation) as excinfo:
        doc.invoke("invalidFunctionCall", 1, 2)
    assert str(excinfo.value) == (
        "Function 'invalidFunctionCall' with 2 argument(s) is not supported."
    )
    assert excinfo.value.arguments == (1, 2)


def test_invoke_errors(doc):
    with pytest.raises(MissingArgument):
        doc.invoke(None)
    with pytest.raises(InvalidArgument):
        doc.invoke("")
    with pytest.raises(UnsupportedOperation):
        doc.invoke("invoke")
    with pytest.raises(MissingArgument):
        doc.invoke("invoke", None)


@pytest.mark.parametrize(
    "name,args",
    [
        ("count", (1,)),
        ("first", (0,)),
        ("nth", ()),
        ("nth", (1, 2)),
        ("nth", ("1",)),
        ("nth", (True,)),
        ("children", ("0",)),
        ("children", (0, 1)),
        ("attr", ()),
        ("attr", ("a", "b", "c")),
        ("where", ()),
        ("where", (None,)),
        ("where", (42,)),
        ("find", ()),
        ("map", ("id",)),
        ("select", (None,)),
        ("each", ()),
        ("eq", ()),
        ("text", ("a", "b")),
    ],
)
def test_unsupported_signatures(books, name, args):
    with pytest.raises(UnsupportedOperation):
        books.invoke(name, *args)


@pytest.mark.parametrize("query", ["catalog", "book", "price", "genre", "title"])
def test_name(doc, query):
    assert doc[query].name() == query
    assert doc[query].n() == query
    assert doc[query].invoke("NAME") == query


def test_name_empty(doc):
    result = doc.child("does_not_exist")
    assert result.name() == ""
    assert result.n() == ""


@pytest.mark.parametrize(
    "name,value",
    [
        ("author", "Gambardella, Matthew"),
        ("title", "XML Developer's Guide"),
        ("genre", "Computer"),
        ("price", "44.95"),
        ("publish_date", "2000-10-01"),
        ("description", "An in-depth look at creating applications with XML & friends."),
    ],
)
def test_value(books, name, value):
    node = books.first()[name]
    assert node.value() == value
    assert node.val() == value
    assert node.v() == value
    assert node.text() == value


def test_value_empty(doc):
    node = doc.child("does_not_exist")
    assert [node.value(), node.val(), node.v(), node.text()] == ["", "", "", ""]


@pytest.mark.parametrize(
    "query,path",
    [
        ("catalog", "catalog"),
        ("book", "catalog\\book"),
        ("price", "catalog\\book\\price"),
        ("invalid_name", ""),
        ("", ""),
    ],
)
def test_path(doc, query, path):
    assert doc[query].path() == path


@pytest.mark.parametrize(
    "axis",
    ["first", "last", "prev", "next", "parent", "root", "random", "children", "siblings"],
)
def test_axis_on_empty(doc, axis):
    result = doc.child("does_not_exist").invoke(axis)
    assert result is EMPTY


@pytest.mark.parametrize("index", [0, 1, -1, 5])
def test_nth_on_empty(index):
    with pytest.raises(IndexOutOfRange):
        EMPTY.nth(index)


def test_first_last_nth(books):
    assert books.first().count() == 1
    assert books.last().count() == 1
    assert books.nth(0) == books.first()
    assert books.nth(books.count() - 1) == books.last()
    all_nodes = books.to_list()
    for pos in range(BOOK_COUNT):
        assert books.nth(pos).to_list() == [all_nodes[pos]]


@pytest.mark.parametrize(
    "index", [-17, -42, -69, -(2 ** 31), -1, BOOK_COUNT, BOOK_COUNT + 1, 2 ** 31 - 1]
)
def test_nth_out_of_range(books, index):
    with pytest.raises(IndexOutOfRange) as excinfo:
        books.nth(index)
    assert excinfo.value.index == index
    assert excinfo.value.count == BOOK_COUNT
    with pytest.raises(IndexError):
        books[index]


def test_random(books):
    seen = set()
    for _ in range(500):
        rnd = books.random()
        assert rnd.count() == 1
        assert rnd.parent() == books.parent()
        assert rnd in books
        seen.add(rnd)
    assert 0.85 * BOOK_COUNT <= len(seen) <= BOOK_COUNT


@pytest.mark.parametrize("query", ["book", "title", "catalog", "price", "genre"])
def test_root(doc, query):
    assert doc[query].root() == doc.child("catalog")


def test_parent(doc, books):
    price = books.first().child("price")
    assert price.parent() == books.first()
    root_parent = doc.parent()
    assert root_parent.name() == "#document"
    assert root_parent.to_list() == [doc.tree]
    assert root_parent.parent() is EMPTY


def test_next_prev_boundaries(books):
    assert books.first().prev() is EMPTY
    assert books.last().next() is EMPTY
    assert books.first().next() == books.nth(1)
    assert books.nth(1).prev() == books.first()


def test_children(doc, books):
    catalog = doc.child("catalog")
    assert catalog.children() == books
    assert catalog.children(0) == books.first()
    assert catalog.children(BOOK_COUNT - 1) == books.last()
    assert catalog.children(BOOK_COUNT) is EMPTY
    assert catalog.children(-1) is EMPTY
    # Fan-out across every member.
    assert books.children().count() == 5 * BOOK_COUNT + 1
    # Position applies to the first member only.
    assert books.children(1).text() == "XML Developer's Guide"


def test_siblings(books):
    first = books.first()
    siblings = first.siblings()
    assert siblings.count() == BOOK_COUNT - 1
    assert first.to_list()[0] not in siblings
    assert siblings.to_list() == books.to_list()[1:]


def test_siblings_fan_out(books):
    siblings = books.siblings()
    assert siblings.count() == BOOK_COUNT
    nodes = books.to_list()
    assert siblings.to_list() == nodes[1:] + nodes[:1]


def test_siblings_of_root(doc):
    # The declaration is the only other top-level node.
    siblings = doc.siblings()
    assert siblings.count() == 1
    assert isinstance(siblings.to_list()[0], DeclarationNode)


def test_attr_without_arguments(doc):
    with pytest.raises(UnsupportedOperation):
        doc.attr()


def test_attr_empty_name(doc):
    with pytest.raises(InvalidArgument):
        doc["book"].first().attr("")
    with pytest.raises(ValueError):
        doc["book"].first().attr("")


def test_attr_none_name(doc):
    with pytest.raises(MissingArgument):
        doc["book"].first().attr(None)


def test_attr_non_string_name(doc):
    with pytest.raises(InvalidArgument):
        doc["book"].first().attr(42)


def test_attr_get(doc):
    all_books = doc["book"]
    assert all_books.first().attr("doesNotExist") == ""
    for position, book in enumerate(all_books, 1):
        assert book.attr("id") == "bk1%02d" % position
        assert book.attr("ID") == "bk1%02d" % position


def test_attr_setter_errors(fresh_doc):
    all_books = fresh_doc["book"]
    assert all_books
    with pytest.raises(InvalidArgument):
        all_books.attr("", "true")
    with pytest.raises(MissingArgument):
        all_books.attr(None, "true")
    assert all(not node.attrs.get("new") for node in all_books.to_list())


@pytest.mark.parametrize("value", ["true", "false", "", None])
def test_attr_set(fresh_doc, value):
    all_books = fresh_doc["book"]
    assert all_books.attr("new", "initial") == all_books
    result = all_books.attr("new", value)
    assert result == all_books
    for node in all_books.to_list():
        if value is None:
            assert "new" not in node.attrs
        else:
            assert node.attrs["new"] == value
    for book in all_books:
        assert book.attr("new") == (value or "")


def test_attr_set_existing_any_case(fresh_doc):
    first = fresh_doc["book"].first()
    first.attr("ID", "changed")
    node = first.to_list()[0]
    assert list(node.attrs.items()) == [("id", "changed")]
    first.attr("Id", None)
    assert node.attrs == {}


def test_attr_set_aliasing(fresh_doc):
    fresh_doc["#bk103"].attr("sold", "yes")
    assert fresh_doc.child("catalog").child("book").nth(2).attr("sold") == "yes"


def test_attr_set_non_string(fresh_doc):
    fresh_doc["book"].attr("rank", 7)
    assert fresh_doc["book"].last().attr("rank") == "7"


def test_index(books):
    assert books.first().index() == 0
    assert books.index() == books.first().index()
    assert books.last().index() == BOOK_COUNT - 1
    for pos in (3, 7):
        assert books[pos].index() == pos
    assert EMPTY.index() == -1
    assert books.root().index() == -1
    assert books.child("does_not_exist").index() == -1


def test_text_set(fresh_doc):
    prices = fresh_doc["price"]
    assert prices.text("9.99") == prices
    assert fresh_doc["price"].select(lambda p: p.text()) == ["9.99"] * BOOK_COUNT
    prices.val(None)
    assert fresh_doc["price"].select(lambda p: p.text() or None) == []
    prices.v(12)
    assert prices.last().text() == "12"


def test_text_set_replaces_children(fresh_doc):
    book = fresh_doc["#bk101"]
    book.text("gone")
    assert book.children().count() == 1
    assert book.child("price") is EMPTY
    assert str(book) == "gone"


def test_eq(books):
    assert books.eq(books.first()) is False
    assert books.first().eq(books.nth(0))
    assert books.first().equals(books.nth(0))
    assert books.eq("book") is False
    assert books.eq(None) is False
    assert books.first() != books.last()


def test_where_predicate(books):
    computer = books.where(lambda b: b.child("genre").text() == "Computer")
    assert [b.attr("id") for b in computer] == ["bk101", "bk110", "bk111", "bk112"]
    assert books.filter(lambda b: False) is EMPTY


def test_where_selector_searches_subtree(books):
    # A selector string searches the subtree instead of filtering members.
    assert books.where("price").count() == BOOK_COUNT
    assert books.filter("book > title").count() == BOOK_COUNT


def test_find_predicate(doc):
    prices = doc.find(lambda n: n.name() == "price")
    assert prices == doc["price"]
    assert doc.lookup(lambda n: n.attr("id") == "bk107").attr("id") == "bk107"
    assert doc.find(lambda n: False) is EMPTY


def test_map(books):
    by_id = books.map(lambda b: b.attr("id"))
    assert list(by_id) == ["bk1%02d" % n for n in range(1, BOOK_COUNT + 1)]
    assert by_id["bk104"] == books.nth(3)
    assert books.to_dict(lambda b: b.attr("id")) == by_id
    assert books.to_dictionary(lambda b: b.attr("id")) == by_id
    assert books.invoke("toDictionary", lambda b: b.attr("id")) == by_id


def test_map_duplicate_key(books):
    with pytest.raises(DuplicateKey) as excinfo:
        books.map(lambda b: b.child("genre").text())
    assert excinfo.value.key == "Fantasy"


def test_select(books):
    fantasy = books.select(
        lambda b: b.attr("id") if b.child("genre").text() == "Fantasy" else None
    )
    assert fantasy == ["bk102", "bk103", "bk104", "bk105"]
    assert books.project(lambda b: b.child("price").text())[0] == "44.95"


def test_each(books):
    visited = []
    assert books.each(lambda b: visited.append(b.attr("id"))) is None
    assert len(visited) == BOOK_COUNT
    assert visited[0] == "bk101"


def test_conversions(books):
    first = books.first()
    assert bool(first)
    assert not bool(EMPTY)
    assert str(first.child("price")) == "44.95"
    assert str(first.child("description")) == (
        "An in-depth look at creating applications with XML &amp; friends."
    )
    assert len(books.to_list()) == BOOK_COUNT
    assert books.to_list() is not books.to_list()


def test_to_node_is_detached_clone(books):
    original = books.first().to_list()[0]
    clone = books.first().to_node()
    assert clone is not original
    assert clone.parent is None
    assert clone.outer_xml() == original.outer_xml()
    clone.set_attribute("id", "copy")
    assert original.get_attribute("id") == "bk101"


def test_membership_and_hash(books):
    first = books.first()
    assert first in books
    assert first.to_list()[0] in books
    assert books.child("price").first() not in books
    assert EMPTY not in books
    assert len({books.first(), books.nth(0), books.last()}) == 2


def test_outer_xml_escaping():
    d = Document.from_xml('<doc a="x &quot;y&quot; &lt;z&gt;">1 &lt; 2<empty/></doc>')
    node = d.to_list()[0]
    assert node.outer_xml() == '<doc a=\'x "y" &lt;z&gt;\'>1 &lt; 2<empty/></doc>'
    assert d.text() == "1 < 2"


DEPTH = 5000


def test_deep_nesting():
    xml = "<a>" * DEPTH + "x" + "</a>" * DEPTH
    d = Document.from_xml(xml)
    assert d["a"].count() == DEPTH
    assert d["a > a"].count() == DEPTH - 1
    assert d.find(lambda n: True).count() == DEPTH
    assert d.text() == "x"
    assert str(d) == "<a>" * (DEPTH - 1) + "x" + "</a>" * (DEPTH - 1)
    clone = d.to_node()
    assert clone.outer_xml() == xml
    assert d["a"].last().text() == "x"
