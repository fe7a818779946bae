from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, Sequence

import sqlitepp

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class QueryResult:
    path: str
    sql: str
    columns: list[str] = dataclasses.field(default_factory=list)
    rows: list[list[str | None]] = dataclasses.field(default_factory=list)
    truncated: bool = False


def result_to_dict(result: QueryResult) -> dict[str, Any]:
    return {
        "path": result.path,
        "sql": result.sql,
        "columns": list(result.columns),
        "rows": [list(r) for r in result.rows],
        "truncated": result.truncated,
    }


def run_query(
    path: str,
    sql: str,
    *,
    mode: str | sqlitepp.OpenMode = sqlitepp.OpenMode.READ_ONLY,
    params: Sequence[str] = (),
    limit: int | None = None,
) -> QueryResult:
    """Run one statement against ``path`` and collect its rows as text."""
    conn = sqlitepp.Connection(path, mode)
    try:
        with sqlitepp.PreparedStatement(conn) as st:
            st.prepare(sql)
            st.bind(*params)
            result = QueryResult(path=path, sql=sql, columns=st.column_names)
            ncols = len(result.columns)
            while st.fetch_row():
                if limit is not None and len(result.rows) >= limit:
                    result.truncated = True
                    break
                result.rows.append([st.get_text(i) for i in range(ncols)])
    finally:
        conn.close()

    logger.debug("%s: %d rows from %r", path, len(result.rows), sql)
    return result


def render_table(result: QueryResult) -> None:
    from rich.console import Console
    from rich.table import Table
    from rich.text import Text

    console = Console()
    if not result.columns:
        console.print(f"[green]OK[/green] {result.sql}")
        return

    table = Table(title=result.path, show_lines=False)
    for name in result.columns:
        table.add_column(name or "?", style="cyan" if name else None)
    for row in result.rows:
        table.add_row(*[Text("NULL", style="dim") if v is None else v for v in row])
    console.print(table)

    footer = f"{len(result.rows)} row(s)"
    if result.truncated:
        footer += " (truncated)"
    console.print(footer)


def main(argv: Sequence[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Run one SQL statement against an SQLite database file")
    p.add_argument("path", help="Path to the database file (':memory:' for a scratch database)")
    p.add_argument("sql", help="The statement to run; use ? placeholders with --param")
    p.add_argument(
        "--mode",
        choices=[m.name.lower() for m in sqlitepp.OpenMode],
        default="read_only",
        help="Open mode (default: read_only)",
    )
    p.add_argument(
        "--param",
        action="append",
        default=[],
        help="Bind a text value to the next placeholder (repeatable)",
    )
    p.add_argument("--limit", type=int, default=None, help="Stop after N rows")
    p.add_argument("--json", action="store_true", help="Print the result as JSON instead of a table")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = p.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        result = run_query(
            args.path,
            args.sql,
            mode=args.mode,
            params=args.param,
            limit=args.limit,
        )
    except sqlitepp.Error as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result_to_dict(result), ensure_ascii=False, indent=2))
    else:
        render_table(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
