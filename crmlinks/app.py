import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import EngineConfig
from .database import get_session, init_database
from .env import load_env
from .logger import get_logger
from .models import COMPANY, CONTACT, ENTITY_KINDS
from .retry import RetryError, retry_on_stale
from .schema import is_blank_row, map_row, validate_row
from pipelines.import_export.exporter import export_links, export_rows
from pipelines.import_export.orchestrator import ImportOptions, run_import
from pipelines.relationships.graph import RelationshipGraph, check_invariants
from storage.repositories.crm import apply_plan, load_snapshot


def _load_rows(path: Path) -> list:
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("rows", [data])
    if not isinstance(data, list):
        raise SystemExit("Input must be a JSON list of row objects (or {\"rows\": [...]})")
    return data


def _ensure_db(db_path: Path) -> None:
    if not db_path.exists():
        init_database(db_path)


def import_file(
    input_path: Path,
    db_path: Path,
    kind: str,
    config: EngineConfig,
    options: ImportOptions,
    dry_run: bool = False,
    max_retries: int = 3,
):
    """
    Read-compute-commit cycle for one file.

    A StaleSnapshotError from the commit re-reads the store and recomputes
    the whole batch.
    """
    rows = _load_rows(input_path)
    _ensure_db(db_path)
    logger = get_logger()

    def on_retry(attempt, error, delay):
        logger.warning(f"Stale snapshot, retrying batch (attempt {attempt})", error=str(error), delay=delay)

    @retry_on_stale(max_retries=max_retries, on_retry=on_retry)
    def attempt():
        # Metrics describe the attempt that commits, not every retried one
        logger.reset_metrics()
        session = get_session(db_path)
        try:
            population, snapshot = load_snapshot(session, config)
            result = run_import(rows, population, snapshot, kind=kind, config=config, options=options)
            id_map = {} if dry_run else apply_plan(session, result.plan)
            return result, id_map
        finally:
            session.close()

    return attempt()


def cmd_init(args: argparse.Namespace) -> None:
    init_database(Path(args.db))
    print(f"Initialized {args.db}")


def cmd_import(args: argparse.Namespace) -> None:
    config = EngineConfig.from_env()
    if args.threshold is not None:
        config = config.with_overrides(match_threshold=args.threshold)
    options = ImportOptions(
        merge_duplicates=not args.no_merge,
        create_missing_companies=not args.no_create_companies,
        replace_parent=args.replace_parent,
    )
    try:
        result, id_map = import_file(
            Path(args.input), Path(args.db), args.kind, config, options, dry_run=args.dry_run
        )
    except RetryError as e:
        raise SystemExit(f"Import abandoned: {e}")

    for outcome in result.outcomes:
        data = outcome.to_dict()
        if outcome.entity_id is not None and outcome.entity_id in id_map:
            data["entity_id"] = id_map[outcome.entity_id]
        print(json.dumps(data, ensure_ascii=False, default=str))
    print(
        f"Created: {result.created} | Merged: {result.merged} | "
        f"Skipped: {result.skipped} | Errors: {result.errors}"
        + (" | dry run, nothing written" if args.dry_run else "")
    )
    get_logger().log_metrics_summary()


def cmd_validate(args: argparse.Namespace) -> None:
    rows = _load_rows(Path(args.input))
    invalid = 0
    for index, row in enumerate(rows):
        if not isinstance(row, dict) or is_blank_row(row):
            continue
        errors = validate_row(args.kind, map_row(args.kind, row))
        if errors:
            invalid += 1
            print(f"Row {index}:")
            for e in errors:
                print(f" - {e}")
    if invalid:
        raise SystemExit(2)
    print("Valid")


def _open_graph(db_path: Path):
    if not db_path.exists():
        raise SystemExit(f"Database not found: {db_path}")
    session = get_session(db_path)
    try:
        population, snapshot = load_snapshot(session)
    finally:
        session.close()
    return population, snapshot


def cmd_hierarchy(args: argparse.Namespace) -> None:
    population, snapshot = _open_graph(Path(args.db))
    names = {e.id: e.display_name for e in population if e.kind == COMPANY}
    if args.company not in names:
        raise SystemExit(f"Unknown company id: {args.company}")
    graph = RelationshipGraph(snapshot)
    print(f"Company: {args.company} {names[args.company]}")
    print("Ancestors:")
    for company_id in graph.ancestors_of(args.company):
        print(f"  {company_id} {names.get(company_id, '')}")
    print("Descendants:")
    for company_id in graph.descendants_of(args.company):
        print(f"  {company_id} {names.get(company_id, '')}")
    print("Contacts:")
    contacts = {e.id: e.display_name for e in population if e.kind == CONTACT}
    for area in graph.contacts_of_company(args.company):
        marker = " (primary)" if area.is_primary_contact_for_company else ""
        print(f"  {area.contact_id} {contacts.get(area.contact_id, '')}{marker}")


def cmd_check(args: argparse.Namespace) -> None:
    _, snapshot = _open_graph(Path(args.db))
    problems = check_invariants(snapshot)
    if problems:
        print("Integrity problems:")
        for p in problems:
            print(f" - {p}")
        raise SystemExit(2)
    print(f"OK: {len(snapshot.areas)} links, {len(snapshot.parents)} hierarchy edges (version {snapshot.version})")


def cmd_export(args: argparse.Namespace) -> None:
    population, snapshot = _open_graph(Path(args.db))
    if args.links:
        rows = export_links(snapshot, population)
    else:
        columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else None
        rows = export_rows(population, args.kind, graph=snapshot, columns=columns)
    json.dump(rows, sys.stdout, indent=2, ensure_ascii=False)
    print()


def main():
    # Load .env if present (CRMLINKS_* overrides)
    load_env()
    parser = argparse.ArgumentParser(prog="crmlinks", description="CRM deduplication and relationship engine")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init", help="Create the SQLite store")
    ini.add_argument("--db", default="data/crm.db", help="Path to SQLite database (default: data/crm.db)")
    ini.set_defaults(func=cmd_init)

    imp = subparsers.add_parser("import", help="Import a JSON list of parsed rows")
    imp.add_argument("--input", required=True, help="Path to JSON rows")
    imp.add_argument("--kind", choices=ENTITY_KINDS, default=CONTACT, help="Entity kind of the rows")
    imp.add_argument("--db", default="data/crm.db", help="Path to SQLite database (default: data/crm.db)")
    imp.add_argument("--threshold", type=float, help="Match confidence threshold (default 0.80)")
    imp.add_argument("--no-merge", action="store_true", help="Skip duplicates instead of merging them")
    imp.add_argument("--no-create-companies", action="store_true", help="Reject rows naming unknown companies")
    imp.add_argument("--replace-parent", action="store_true", help="Allow rows to move a company to a new parent")
    imp.add_argument("--dry-run", action="store_true", help="Compute outcomes without writing")
    imp.set_defaults(func=cmd_import)

    val = subparsers.add_parser("validate", help="Validate rows without matching")
    val.add_argument("--input", required=True, help="Path to JSON rows")
    val.add_argument("--kind", choices=ENTITY_KINDS, default=CONTACT, help="Entity kind of the rows")
    val.set_defaults(func=cmd_validate)

    hie = subparsers.add_parser("hierarchy", help="Show ancestors, descendants and contacts of a company")
    hie.add_argument("--company", required=True, type=int, help="Company id")
    hie.add_argument("--db", default="data/crm.db", help="Path to SQLite database")
    hie.set_defaults(func=cmd_hierarchy)

    chk = subparsers.add_parser("check", help="Check link and hierarchy invariants of the store")
    chk.add_argument("--db", default="data/crm.db", help="Path to SQLite database")
    chk.set_defaults(func=cmd_check)

    exp = subparsers.add_parser("export", help="Print export rows as JSON")
    exp.add_argument("--kind", choices=ENTITY_KINDS, default=CONTACT, help="Entity kind to export")
    exp.add_argument("--columns", help="Comma-separated column subset")
    exp.add_argument("--links", action="store_true", help="Export areas of activity instead of entities")
    exp.add_argument("--db", default="data/crm.db", help="Path to SQLite database")
    exp.set_defaults(func=cmd_export)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
