#!/usr/bin/env python3
"""
querykit - query any SQL database with filter/sort/graph expressions.

Reflects the tables of an existing database and runs paged queries over
them from the command line.
"""
import sys
import json
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table
from sqlalchemy import inspect as sa_inspect

from querykit.config import init_config, get_config
from querykit.db import Database
from querykit.exceptions import ObjectNotFoundError, QueryValidationError
from querykit.query import (
    FieldRegistry, IncludeGraph, PagedList, QueryExecutor, QueryParser,
    QueryRegistry, flatten_includes, get_field_registry, parse_graph,
)
from querykit.sources import OrmSource

logger = logging.getLogger(__name__)

console = Console()

EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_NOT_FOUND = 4


def entity_to_dict(entity: Any, graph: Optional[IncludeGraph] = None,
                   registry: Optional[FieldRegistry] = None) -> Dict[str, Any]:
    """Column values of a mapped entity, plus the relations named by graph."""
    registry = registry or get_field_registry()
    mapper = sa_inspect(entity).mapper
    data = {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}

    for key, child in (graph or {}).items():
        descriptor = registry.model(type(entity)).lookup(key)
        if descriptor is None or not descriptor.relation:
            continue
        value = getattr(entity, descriptor.name)
        if value is None:
            data[descriptor.name] = None
        elif descriptor.many:
            data[descriptor.name] = [entity_to_dict(v, child, registry) for v in value]
        else:
            data[descriptor.name] = entity_to_dict(value, child, registry)
    return data


def output_page(page: PagedList, title: str, format: str = "table",
                graph: Optional[IncludeGraph] = None):
    """Output one page in the specified format."""
    rows = [entity_to_dict(e, graph) for e in page]

    if format == "json":
        print(json.dumps({"pageMeta": page.page_meta.to_dict(), "elements": rows},
                         indent=2, default=str))
        return

    meta = page.page_meta
    table = Table(title=f"{title}: page {meta.page_number}/{meta.total_pages} "
                        f"({meta.total_elements} matches)")
    columns = list(rows[0].keys()) if rows else []
    for column in columns:
        table.add_column(column, style="cyan" if column == "id" else None)
    for row in rows:
        table.add_row(*(_cell(row[c]) for c in columns))
    console.print(table)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _open_database(args) -> Database:
    return Database(args.db or get_config().get_database_url())


def cmd_parse(args):
    """Show how expressions are parsed."""
    parser = QueryParser(get_config(), strict=True if args.strict else None)
    query = parser.parse(filter=args.filter, sort=args.sort, graph=args.graph)
    includes = flatten_includes(query.graph)

    if args.output == "json":
        print(json.dumps({
            "filters": [{"property": f.property, "operator": f.operator.name, "value": f.value}
                        for f in query.filters],
            "sorts": [{"property": s.property, "direction": s.direction.name}
                      for s in query.sorts],
            "includes": includes,
        }, indent=2))
        return

    table = Table(title="Filters")
    table.add_column("Property", style="cyan")
    table.add_column("Operator", style="magenta")
    table.add_column("Value", style="green")
    for f in query.filters:
        table.add_row(f.property, f.operator.name, f.value)
    console.print(table)

    table = Table(title="Sorts")
    table.add_column("#", style="dim")
    table.add_column("Property", style="cyan")
    table.add_column("Direction", style="magenta")
    for i, s in enumerate(query.sorts, 1):
        table.add_row(str(i), s.property, s.direction.name)
    console.print(table)

    if includes:
        console.print("[bold]Includes:[/bold] " + ", ".join(includes))
    else:
        console.print("[dim]No includes[/dim]")


def cmd_tables(args):
    """List queryable tables."""
    db = _open_database(args)
    tables = db.tables()
    if args.output == "json":
        print(json.dumps(tables))
    else:
        for name in tables:
            console.print(name)


def cmd_run(args):
    """Run a paged query against a table."""
    config = get_config()
    parser = QueryParser(config)

    if args.saved:
        if args.filter or args.sort or args.graph:
            raise QueryValidationError("--saved cannot be combined with --filter, --sort or --graph")
        queries_file = args.queries or config.queries_file
        if not queries_file:
            raise QueryValidationError("--saved needs --queries or queries_file in config")
        registry = QueryRegistry(parser)
        registry.load_file(queries_file)
        query = registry.get(args.saved)
        if args.page is not None or args.page_size is not None:
            page_size, page_number = parser.page_window(
                args.page_size if args.page_size is not None else query.page_size,
                args.page if args.page is not None else query.page_number,
            )
            query = query.with_page(page_number, page_size)
    else:
        query = parser.parse(page_size=args.page_size, page_number=args.page,
                             filter=args.filter, sort=args.sort, graph=args.graph)

    db = _open_database(args)
    entity_type = db.entity(args.table)
    with db.session() as session:
        page = QueryExecutor().execute(query, OrmSource(session, entity_type))
        output_page(page, args.table, args.output, query.graph)


def cmd_get(args):
    """Load one row with related rows."""
    db = _open_database(args)
    entity_type = db.entity(args.table)
    with db.session() as session:
        entity = QueryExecutor().get_graph(OrmSource(session, entity_type), args.id, args.graph)
        data = entity_to_dict(entity, parse_graph(args.graph))

    if args.output == "json":
        print(json.dumps(data, indent=2, default=str))
    else:
        table = Table(title=f"{args.table} {args.id}")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, _cell(value))
        console.print(table)


def cmd_config(args):
    """Manage configuration."""
    config = get_config()

    if args.action == "show":
        from dataclasses import asdict
        print(json.dumps(asdict(config), indent=2))

    elif args.action == "init":
        path = config.save(Path(args.path) if args.path else None)
        console.print(f"[green]Created config at {path}[/green]")


def create_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="querykit",
        description="querykit: paged filter/sort/graph queries over SQL databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Inspect how an expression parses
  querykit parse --filter "PageCount~>~200,Title~ilike~ring" --sort "Title~asc"

  # Page through a table
  querykit run books --db sqlite:///library.db --filter "page_count~>~200" \\
      --sort "published~desc" --page-size 20 --page 2

  # Load one row with related rows
  querykit get books 42 --db sqlite:///library.db --graph '{"authors": null}'

  # Saved queries
  querykit run books --saved long_books --queries queries.yaml

Configuration:
  Config file: ~/.config/querykit/config.toml or ./querykit.toml
  Environment: QUERYKIT_DATABASE_URL, QUERYKIT_DEFAULT_PAGE_SIZE, QUERYKIT_STRICT_PARSING
        """
    )

    parser.add_argument("--db", help="Database URL (default: from config)")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("-o", "--output", choices=["table", "json"], help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Commands")

    parse_parser = subparsers.add_parser("parse", help="Show how expressions are parsed")
    parse_parser.add_argument("--filter", help="Filter expression")
    parse_parser.add_argument("--sort", help="Sort expression")
    parse_parser.add_argument("--graph", help="Include graph (JSON)")
    parse_parser.add_argument("--strict", action="store_true",
                              help="Reject malformed clauses instead of dropping them")
    parse_parser.set_defaults(func=cmd_parse)

    tables_parser = subparsers.add_parser("tables", help="List queryable tables")
    tables_parser.set_defaults(func=cmd_tables)

    run_parser = subparsers.add_parser("run", help="Run a paged query against a table")
    run_parser.add_argument("table", help="Table name")
    run_parser.add_argument("--filter", help="Filter expression")
    run_parser.add_argument("--sort", help="Sort expression")
    run_parser.add_argument("--graph", help="Include graph (JSON)")
    run_parser.add_argument("--page-size", type=int, help="Page size")
    run_parser.add_argument("--page", type=int, help="Page number (from 1)")
    run_parser.add_argument("--saved", help="Name of a saved query")
    run_parser.add_argument("--queries", help="YAML file of saved queries")
    run_parser.set_defaults(func=cmd_run)

    get_parser = subparsers.add_parser("get", help="Load one row with related rows")
    get_parser.add_argument("table", help="Table name")
    get_parser.add_argument("id", help="Primary key value")
    get_parser.add_argument("--graph", required=True, help="Include graph (JSON)")
    get_parser.set_defaults(func=cmd_get)

    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("action", choices=["show", "init"], help="Config action")
    config_parser.add_argument("--path", help="Where to write the config (init)")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv=None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    config_args = {}
    if args.output:
        config_args["output_format"] = args.output
    if args.config:
        config_args["config_file"] = Path(args.config)

    try:
        config = init_config(**config_args)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(EXIT_ERROR)

    if not args.output:
        args.output = config.output_format

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except QueryValidationError as e:
        console.print(f"[red]Invalid query: {e}[/red]")
        sys.exit(EXIT_INVALID)
    except ObjectNotFoundError as e:
        console.print(f"[red]Not found: {e}[/red]")
        sys.exit(EXIT_NOT_FOUND)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
