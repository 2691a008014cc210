"""
Tests for querykit.query.parser and querykit.query.ast.

Covers:
- Filter, sort and graph grammars in both strictness profiles
- Request parsing with page defaults and limits
- The fluent builder
- YAML saved queries
"""

import pytest

from querykit.config import QueryKitConfig
from querykit.exceptions import ParseError, QueryValidationError
from querykit.query import (
    FilterClause, FilterOperator, PagedListQuery, QueryParser, QueryRegistry,
    SortClause, SortDirection, build_graph, normalize_path, normalize_property,
    parse_filter, parse_graph, parse_graph_strict, parse_query, parse_sort, query,
)


class TestNormalizeProperty:
    """Property names are matched with the first letter upper-cased."""

    def test_lower_first_letter(self):
        assert normalize_property("title") == "Title"

    def test_already_normalized(self):
        assert normalize_property("PageCount") == "PageCount"

    def test_rest_untouched(self):
        assert normalize_property("pageCount") == "PageCount"

    def test_empty(self):
        assert normalize_property("") == ""

    def test_every_path_segment(self):
        assert normalize_path("category.publisher.name") == "Category.Publisher.Name"


class TestParseFilter:
    """Tests for the filter grammar."""

    def test_single_clause(self):
        clauses = parse_filter("status~=~true")
        assert clauses == (FilterClause("Status", FilterOperator.EQUAL, "true"),)

    def test_all_operators(self):
        expression = "a~<~1,b~<=~2,c~=~3,d~>=~4,e~>~5,f~like~x,g~ilike~y"
        operators = [c.operator for c in parse_filter(expression)]
        assert operators == [
            FilterOperator.LESS, FilterOperator.LESS_OR_EQUAL, FilterOperator.EQUAL,
            FilterOperator.GREATER_OR_EQUAL, FilterOperator.GREATER,
            FilterOperator.LIKE, FilterOperator.ILIKE,
        ]

    def test_source_order_preserved(self):
        clauses = parse_filter("IsAvailable~=~true,PageCount~>~200,PageCount~<~800,Language~like~English")
        assert [c.property for c in clauses] == ["IsAvailable", "PageCount", "PageCount", "Language"]
        assert clauses[1].value == "200"
        assert clauses[2].operator is FilterOperator.LESS

    def test_value_is_url_decoded(self):
        clauses = parse_filter("email~=~john%40example.com,name~like~John%20Smith")
        assert clauses[0].value == "john@example.com"
        assert clauses[1].value == "John Smith"

    def test_encoded_comma_is_literal(self):
        clauses = parse_filter("title~like~one%2C%20two")
        assert len(clauses) == 1
        assert clauses[0].value == "one, two"

    def test_value_may_contain_tilde(self):
        clauses = parse_filter("path~=~a~b~c")
        assert clauses[0].value == "a~b~c"

    def test_blank_expression(self):
        assert parse_filter(None) == ()
        assert parse_filter("") == ()
        assert parse_filter("   ") == ()

    def test_unknown_operator_raises(self):
        with pytest.raises(ParseError) as exc:
            parse_filter("age~>>~5")
        assert "Unknown filter method" in str(exc.value)

    def test_unknown_operator_raises_in_strict_mode(self):
        with pytest.raises(ParseError):
            parse_filter("age~between~5", strict=True)

    def test_operator_token_is_case_sensitive(self):
        with pytest.raises(ParseError):
            parse_filter("name~LIKE~x")

    def test_unknown_operator_with_empty_value_raises(self):
        with pytest.raises(ParseError, match="Unknown filter method"):
            parse_filter("Title~bogus~")

    def test_unknown_operator_with_empty_property_raises(self):
        with pytest.raises(ParseError):
            parse_filter("~bogus~x")

    def test_malformed_clause_dropped(self):
        clauses = parse_filter("name~=~John,invalid,age~>=~18")
        assert [c.property for c in clauses] == ["Name", "Age"]

    def test_empty_value_dropped(self):
        assert parse_filter("name~=~") == ()

    def test_empty_property_dropped(self):
        assert parse_filter("~=~x") == ()

    def test_malformed_clause_raises_in_strict_mode(self):
        with pytest.raises(ParseError) as exc:
            parse_filter("name~=~John,invalid", strict=True)
        assert exc.value.clause == "invalid"

    def test_empty_value_raises_in_strict_mode(self):
        with pytest.raises(ParseError):
            parse_filter("name~=~", strict=True)

    def test_idempotent(self):
        expression = "title~ilike~ring,PageCount~>~100"
        assert parse_filter(expression) == parse_filter(expression)


class TestParseSort:
    """Tests for the sort grammar."""

    def test_two_clauses(self):
        assert parse_sort("name~asc,age~desc") == (
            SortClause("Name", SortDirection.ASC),
            SortClause("Age", SortDirection.DESC),
        )

    def test_direction_case_insensitive(self):
        clauses = parse_sort("a~ASC,b~Desc")
        assert [c.direction for c in clauses] == [SortDirection.ASC, SortDirection.DESC]

    def test_unknown_direction_defaults_to_desc(self):
        assert parse_sort("name~sideways")[0].direction is SortDirection.DESC

    def test_unknown_direction_raises_in_strict_mode(self):
        with pytest.raises(ParseError):
            parse_sort("name~sideways", strict=True)

    def test_clause_without_direction_dropped(self):
        assert parse_sort("name,age~asc") == (SortClause("Age", SortDirection.ASC),)

    def test_clause_without_direction_raises_in_strict_mode(self):
        with pytest.raises(ParseError):
            parse_sort("name", strict=True)

    def test_blank(self):
        assert parse_sort("") == ()


class TestParseGraph:
    """Tests for the graph grammar."""

    def test_nested(self):
        graph = parse_graph('{"Author": null, "Category": {"Publisher": null}}')
        assert graph == {"Author": None, "Category": {"Publisher": None}}

    def test_non_object_values_ignored(self):
        assert parse_graph('{"Author": null, "Count": 3, "Tags": ["a"]}') == {"Author": None}

    def test_malformed_json_means_no_includes(self):
        assert parse_graph('{"Author": ') is None

    def test_non_object_top_level(self):
        assert parse_graph('["Author"]') is None

    def test_empty(self):
        assert parse_graph("") is None
        assert parse_graph(None) is None

    def test_strict_requires_graph(self):
        with pytest.raises(QueryValidationError) as exc:
            parse_graph_strict("")
        assert exc.value.parameter == "graph"

    def test_strict_rejects_invalid_json(self):
        with pytest.raises(QueryValidationError, match="Invalid JSON"):
            parse_graph_strict("{oops}")

    def test_build_graph_from_mapping(self):
        assert build_graph({"Author": None, "Category": {"Publisher": None}, "x": 1}) == {
            "Author": None, "Category": {"Publisher": None}}


class TestQueryParser:
    """Tests for parsing whole requests."""

    def test_defaults(self):
        q = parse_query()
        assert q.page_size == 10
        assert q.page_number == 1
        assert q.filters == ()
        assert q.sorts == ()
        assert q.graph is None

    def test_full_request(self):
        q = parse_query(
            filter="PageCount~>~200",
            sort="Title~asc",
            graph='{"Author": null}',
            page_size="25",
            page_number="2",
        )
        assert q.page_size == 25
        assert q.page_number == 2
        assert q.filters[0].property == "PageCount"
        assert q.sorts[0].property == "Title"
        assert q.graph == {"Author": None}

    def test_invalid_page_size(self):
        with pytest.raises(QueryValidationError):
            parse_query(page_size=0)

    def test_invalid_page_number(self):
        with pytest.raises(QueryValidationError):
            parse_query(page_number=0)

    def test_non_numeric_page(self):
        with pytest.raises(QueryValidationError):
            parse_query(page_size="ten")

    def test_config_defaults_and_limits(self):
        config = QueryKitConfig(default_page_size=50, max_page_size=100)
        parser = QueryParser(config)
        assert parser.parse().page_size == 50
        with pytest.raises(QueryValidationError, match="exceeds"):
            parser.parse(page_size=101)

    def test_config_selects_strict_profile(self):
        parser = QueryParser(QueryKitConfig(strict_parsing=True))
        with pytest.raises(ParseError):
            parser.parse(filter="broken")

    def test_explicit_strict_overrides_config(self):
        parser = QueryParser(QueryKitConfig(strict_parsing=True), strict=False)
        assert parser.parse(filter="broken").filters == ()

    def test_from_params(self):
        q = PagedListQuery.from_params(page_size=5, filter="a~=~1")
        assert q.page_size == 5
        assert len(q.filters) == 1

    def test_with_page(self):
        q = parse_query(filter="a~=~1", page_size=5)
        moved = q.with_page(3)
        assert moved.page_number == 3
        assert moved.page_size == 5
        assert moved.filters == q.filters


class TestQueryBuilder:
    """Tests for the fluent builder."""

    def test_build(self):
        q = (query()
             .filter('pageCount', '>', 200)
             .filter('Language', FilterOperator.LIKE, 'English')
             .sort('PublicationDate', 'desc')
             .include('Author')
             .include('Category.Publisher')
             .page(2, size=25)
             .build())

        assert q.filters[0] == FilterClause("PageCount", FilterOperator.GREATER, "200")
        assert q.filters[1].operator is FilterOperator.LIKE
        assert q.sorts == (SortClause("PublicationDate", SortDirection.DESC),)
        assert q.graph == {"Author": None, "Category": {"Publisher": None}}
        assert q.page_number == 2
        assert q.page_size == 25

    def test_include_paths_normalized(self):
        q = query().include('category.publisher').include('Category.books').build()
        assert q.graph == {"Category": {"Publisher": None, "Books": None}}

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            query().filter('a', '!=', 1)

    def test_no_includes_means_no_graph(self):
        assert query().build().graph is None


class TestQueryRegistry:
    """Tests for YAML saved queries."""

    YAML = """
long_books:
  description: "Available books over 500 pages"
  filter: IsAvailable~=~true,PageCount~>~500
  sort: PublicationDate~desc
  graph:
    Author:
    Category:
      Publisher:
  page_size: 5

by_title:
  sort: Title~asc
  graph: '{"Author": null}'
"""

    def test_load_string(self):
        registry = QueryRegistry()
        assert registry.load_string(self.YAML) == 2
        assert registry.list() == ["long_books", "by_title"]

        q = registry.get("long_books")
        assert q.page_size == 5
        assert len(q.filters) == 2
        assert q.sorts[0].direction is SortDirection.DESC
        assert q.graph == {"Author": None, "Category": {"Publisher": None}}
        assert registry.describe("long_books") == "Available books over 500 pages"

    def test_graph_as_json_string(self):
        registry = QueryRegistry()
        registry.load_string(self.YAML)
        assert registry.get("by_title").graph == {"Author": None}
        assert registry.describe("by_title") is None

    def test_load_file(self, tmp_path):
        path = tmp_path / "queries.yaml"
        path.write_text(self.YAML)

        registry = QueryRegistry()
        assert registry.load_file(path) == 2
        assert registry.has("by_title")
        assert registry.source("by_title") == path

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError, match="not found"):
            QueryRegistry().load_file(tmp_path / "nope.yaml")

    def test_unknown_query(self):
        with pytest.raises(KeyError):
            QueryRegistry().get("nope")

    def test_not_a_mapping(self):
        with pytest.raises(ParseError):
            QueryRegistry().load_string("- a\n- b\n")

    def test_unknown_keys(self):
        with pytest.raises(ParseError, match="unknown keys"):
            QueryRegistry().load_string("q:\n  limit: 5\n")

    def test_grammar_errors_surface(self):
        with pytest.raises(ParseError):
            QueryRegistry().load_string("q:\n  filter: a~?~1\n")

    def test_clear(self):
        registry = QueryRegistry()
        registry.load_string(self.YAML)
        registry.clear()
        assert registry.list() == []
