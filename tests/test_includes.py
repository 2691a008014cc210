"""
Tests for querykit.query.includes - include graph flattening.
"""

from querykit.query import flatten_includes, parse_graph


class TestFlattenIncludes:
    """Tests for flatten_includes."""

    def test_leaves_only(self):
        graph = {"Author": None, "Category": {"Publisher": None}}
        assert flatten_includes(graph) == ["Author", "Category.Publisher"]

    def test_segments_normalized(self):
        graph = {"author": None, "category": {"publisher": None}}
        assert flatten_includes(graph) == ["Author", "Category.Publisher"]

    def test_depth_first_key_order(self):
        graph = {"A": {"B": {"C": None}, "D": None}, "E": None}
        assert flatten_includes(graph) == ["A.B.C", "A.D", "E"]

    def test_empty_child_emits_nothing(self):
        assert flatten_includes({"Reviews": {}}) == []

    def test_empty_child_beside_leaf(self):
        graph = parse_graph('{"Author": null, "Category": {}}')
        assert flatten_includes(graph) == ["Author"]

    def test_none_and_empty(self):
        assert flatten_includes(None) == []
        assert flatten_includes({}) == []

    def test_from_parsed_graph(self):
        graph = parse_graph('{"Loans": {"User": null}, "Reviews": null}')
        assert flatten_includes(graph) == ["Loans.User", "Reviews"]
