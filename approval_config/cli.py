"""
Command line entry point: seed approval workflows from a YAML file.

Usage:
    approval-seed-workflows [config.yaml] [--database-url URL]
        [--actor-id UUID] [--create-tables] [--dry-run]

If no file is given, the packaged default set is used
(approval_config/sets/default_workflows.yaml).

Steps:
  1. Loads and validates the YAML file
  2. Creates every workflow that does not exist yet (matched by name)
  3. Commits, or rolls back with --dry-run

The database URL comes from --database-url, then APPROVAL_DATABASE_URL,
then DATABASE_URL.
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

import approval_config
from approval_config.loader import load_workflow_set
from approval_config.seeder import seed_workflow_set
from approval_config.validator import validate_workflow_set
from approval_kernel.db.engine import (
    create_tables,
    database_url_from_env,
    get_session,
    init_engine_from_url,
)

DEFAULT_CONFIG = Path(approval_config.__file__).parent / "sets" / "default_workflows.yaml"
SYSTEM_ACTOR = UUID("00000000-0000-0000-0000-000000000001")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed approval workflows from YAML")
    parser.add_argument("config", nargs="?", type=Path, default=DEFAULT_CONFIG)
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--actor-id", type=UUID, default=SYSTEM_ACTOR)
    parser.add_argument("--create-tables", action="store_true")
    parser.add_argument("--dry-run", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if not args.config.is_file():
        print(f"Error: file not found: {args.config}", file=sys.stderr)
        return 1

    config = load_workflow_set(args.config)
    print(f"Loaded {config.config_id} v{config.version} ({len(config.workflows)} workflows)")
    print(f"  checksum: {config.checksum[:16]}...")

    result = validate_workflow_set(config)
    for w in result.warnings:
        print(f"  WARNING: {w}")
    if not result.is_valid:
        print("VALIDATION FAILED:")
        for err in result.errors:
            print(f"  ERROR: {err}")
        return 1

    init_engine_from_url(args.database_url or database_url_from_env())
    if args.create_tables:
        create_tables()

    session = get_session()
    try:
        report = seed_workflow_set(session, config, args.actor_id)
        if args.dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    for workflow in report.created:
        print(f"  created: {workflow.name} ({len(workflow.stages)} stages)")
    for name in report.skipped:
        print(f"  skipped: {name} (already exists)")
    print("Dry run, nothing committed." if args.dry_run else "Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
