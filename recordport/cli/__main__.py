from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
import yaml
from dotenv import load_dotenv

from recordport.catalog import CatalogError, get_module, module_names
from recordport.config.loader import AppConfig, ConfigError, DatabaseConfig, load_config
from recordport.csvio.parser import ParseError
from recordport.db.memory_store import InMemoryRecordStore
from recordport.db.postgres_store import PostgresRecordStore
from recordport.db.store import RecordStore, StoreError
from recordport.logging.init import log_summary, setup_logging
from recordport.models.field_definition import FieldMapping
from recordport.models.jobs import DuplicateHandling, ImportJob, JobKind, JobStatus
from recordport.services.data_tools import DataToolsService, ImportBlockedError
from recordport.services.export import ExportError
from recordport.services.job_tracker import JobStateError
from recordport.services.mapping import MappingError
from recordport.services.rollback import RollbackError
from recordport.services.template_store import TemplateNotFoundError

"""CLI entrypoint.

Subcommands: validate, import, rollback, export, jobs, templates.

Exit codes:
- 0 success
- 2 partial failure (validation failed, or some rows failed)
- 1 fatal (config/parse/mapping problems, store unavailable, bad job id)

Records go to PostgreSQL when a connection can be made; otherwise the CLI
falls back to an in-memory store (``DISABLE_DB_CONNECT=1`` forces it).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

_MAX_LISTED_ISSUES = 20

_FATAL_ERRORS = (
    ParseError,
    MappingError,
    CatalogError,
    JobStateError,
    TemplateNotFoundError,
    StoreError,
    ExportError,
    OSError,
)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string for psycopg2.

    Priority (``.env`` is loaded with override before this runs):
        1. DATABASE_URL / PGDSN, then ``database.dsn`` from the config file
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, each falling
           back to the matching ``database`` config key
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _open_store(cfg: AppConfig, *, in_memory: bool = False) -> Iterator[tuple[RecordStore, str]]:
    """Yield (store, mode) where mode is "live" or "mock"."""
    logger = setup_logging()
    if in_memory or os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled -> mock mode")
        yield InMemoryRecordStore(), "mock"
        return
    conn = None
    try:
        conn = psycopg2.connect(resolve_dsn(cfg.database))
        store = PostgresRecordStore(conn)
        for name in module_names():
            store.ensure_table(get_module(name))
    except (psycopg2.Error, StoreError) as db_e:
        if conn is not None:
            conn.close()
        if os.getenv("SUPPRESS_DB_WARNING") == "1":
            logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {db_e}")
        else:
            logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")
        yield InMemoryRecordStore(), "mock"
        return
    try:
        yield store, "live"
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


# --- argument parsing ---------------------------------------------------------


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {text!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return value


def _add_file_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("file", help="CSV file")
    p.add_argument("--module", "-m", required=True, help="Target module (customers, products, ...)")
    p.add_argument("--mapping", help="YAML/JSON file with field mappings")
    p.add_argument("--template", help="Template id used to seed mappings and settings")
    p.add_argument("--delimiter", help="Explicit delimiter (detected from the header when omitted)")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="recordport", description="CSV bulk import/export for business records")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", help="Config file (default: config/recordport.yml)")
    p.add_argument("--in-memory", action="store_true", help="Use the in-memory store instead of PostgreSQL")
    sub = p.add_subparsers(dest="command", required=True)

    v = sub.add_parser("validate", help="Validate a CSV file against a mapping")
    _add_file_options(v)
    v.set_defaults(handler=_cmd_validate)

    i = sub.add_parser("import", help="Validate and import a CSV file")
    _add_file_options(i)
    i.add_argument("--duplicates", choices=[d.value for d in DuplicateHandling], help="Duplicate handling policy")
    i.add_argument("--batch-size", type=_positive_int, help="Rows per batch")
    i.set_defaults(handler=_cmd_import)

    r = sub.add_parser("rollback", help="Delete every record inserted by an import job")
    r.add_argument("job_id")
    r.set_defaults(handler=_cmd_rollback)

    e = sub.add_parser("export", help="Export module records as CSV")
    e.add_argument("--module", "-m", required=True)
    e.add_argument("--fields", help="Comma separated field names (default: all)")
    e.add_argument("--delimiter", default=",")
    e.add_argument("--no-headers", action="store_true")
    e.add_argument("--output", "-o", help="Output file (default: stdout)")
    e.add_argument("--background", action="store_true", help="Run as an export job with an artifact file")
    e.set_defaults(handler=_cmd_export)

    j = sub.add_parser("jobs", help="List or inspect jobs")
    j.add_argument("--kind", choices=[k.value for k in JobKind])
    j.add_argument("--module")
    j.add_argument("--status", choices=[s.value for s in JobStatus])
    j.add_argument("--show", metavar="JOB_ID")
    j.add_argument("--cancel", metavar="JOB_ID")
    j.add_argument("--purge-expired", action="store_true", help="Delete expired export artifacts")
    j.set_defaults(handler=_cmd_jobs)

    t = sub.add_parser("templates", help="Manage import templates")
    tsub = t.add_subparsers(dest="template_command", required=True)
    tl = tsub.add_parser("list")
    tl.add_argument("--module")
    tl.add_argument("--search")
    for name in ("show", "delete", "duplicate"):
        tp = tsub.add_parser(name)
        tp.add_argument("template_id")
    te = tsub.add_parser("export")
    te.add_argument("template_id")
    te.add_argument("--output", "-o")
    ti = tsub.add_parser("import")
    ti.add_argument("bundle", help="Template bundle JSON file")
    ti.add_argument("--owner", default="local")
    t.set_defaults(handler=_cmd_templates)
    return p.parse_args(argv)


# --- helpers ------------------------------------------------------------------


def _load_mappings(service: DataToolsService, args: argparse.Namespace, content: bytes) -> list[FieldMapping]:
    logger = setup_logging()
    if args.mapping:
        try:
            data = yaml.safe_load(Path(args.mapping).read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise MappingError(f"invalid mapping file: {e}") from e
        if isinstance(data, dict):
            data = data.get("field_mappings", [])
        if not isinstance(data, list):
            raise MappingError("mapping file must contain a list of mappings")
        try:
            return [FieldMapping.from_dict(m) for m in data]
        except (KeyError, TypeError, ValueError) as e:
            raise MappingError(f"invalid mapping entry: {e}") from e
    mappings = service.suggest_mappings(content, args.module, args.template)
    for m in mappings:
        target = m.db_field or "(unmapped)"
        logger.info(f"mapping: {m.csv_column} -> {target}")
    return mappings


def _log_issues(result: Any) -> None:
    logger = setup_logging()
    for issue in result.issues[:_MAX_LISTED_ISSUES]:
        where = f"Row {issue.row}" if issue.row is not None else "File"
        line = f"{where} ({issue.column}): {issue.message}"
        if issue.is_error:
            logger.error(line)
        else:
            logger.warning(line)
    hidden = len(result.issues) - _MAX_LISTED_ISSUES
    if hidden > 0:
        logger.info(f"... {hidden} more issues not shown")


def _import_exit_code(job: ImportJob) -> int:
    if any(e.is_job_level for e in job.errors):
        return EXIT_FATAL
    if job.rows_failed > 0 or job.status is JobStatus.FAILED:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


# --- commands -----------------------------------------------------------------


def _cmd_validate(service: DataToolsService, args: argparse.Namespace) -> int:
    content = Path(args.file).read_bytes()
    mappings = _load_mappings(service, args, content)
    result = service.validate(content, mappings, args.module, template_id=args.template, delimiter=args.delimiter)
    _log_issues(result)
    log_summary(
        f"kind=validate rows={result.row_count} columns={result.column_count} "
        f"errors={len(result.errors)} warnings={len(result.warnings)} valid={str(result.is_valid).lower()}"
    )
    return EXIT_SUCCESS_ALL if result.is_valid else EXIT_PARTIAL_FAILURE


def _cmd_import(service: DataToolsService, args: argparse.Namespace) -> int:
    logger = setup_logging()
    content = Path(args.file).read_bytes()
    mappings = _load_mappings(service, args, content)
    if args.duplicates:
        policy = DuplicateHandling(args.duplicates)
    elif args.template:
        policy = service.get_template(args.template).duplicate_handling
    else:
        policy = DuplicateHandling.SKIP
    try:
        job = service.run_import(
            content,
            mappings,
            args.module,
            policy,
            args.batch_size,
            file_name=Path(args.file).name,
            template_id=args.template,
            delimiter=args.delimiter,
        )
    except ImportBlockedError as e:
        _log_issues(e.result)
        logger.error(f"import refused: {e}")
        return EXIT_PARTIAL_FAILURE
    for error in job.errors[:_MAX_LISTED_ISSUES]:
        logger.error(error.describe())
    logger.info(f"job={job.id} status={job.status.value} can_rollback={str(job.can_rollback).lower()}")
    return _import_exit_code(job)


def _cmd_rollback(service: DataToolsService, args: argparse.Namespace) -> int:
    logger = setup_logging()
    try:
        job = service.rollback(args.job_id)
    except RollbackError as e:
        if e.job is not None:
            logger.warning(str(e))
            return EXIT_PARTIAL_FAILURE
        logger.error(f"rollback: {e}")
        return EXIT_FATAL
    logger.info(f"job={job.id} rolled back at {job.rolled_back_at.isoformat() if job.rolled_back_at else '-'}")
    return EXIT_SUCCESS_ALL


def _cmd_export(service: DataToolsService, args: argparse.Namespace) -> int:
    logger = setup_logging()
    fields = [f.strip() for f in args.fields.split(",") if f.strip()] if args.fields else None
    include_headers = not args.no_headers
    if args.background:
        job = service.submit_export(args.module, fields, args.delimiter, include_headers)
        job = service.wait(job.id)
        if job.status is not JobStatus.COMPLETED:
            logger.error(f"export job {job.id} {job.status.value}: {getattr(job, 'error', None)}")
            return EXIT_FATAL
        logger.info(f"job={job.id} file={job.file_url} expires_at={job.expires_at.isoformat()}")
        return EXIT_SUCCESS_ALL
    result = service.export(args.module, fields, args.delimiter, include_headers)
    for warning in result.warnings:
        logger.warning(warning)
    if args.output:
        Path(args.output).write_bytes(result.content)
        logger.info(f"exported {result.record_count} {args.module} records to {args.output}")
    else:
        sys.stdout.write(result.content.decode("utf-8"))
        sys.stdout.flush()
    return EXIT_PARTIAL_FAILURE if result.warnings else EXIT_SUCCESS_ALL


def _cmd_jobs(service: DataToolsService, args: argparse.Namespace) -> int:
    logger = setup_logging()
    if args.show:
        print(json.dumps(service.get_job(args.show).to_dict(), indent=2, ensure_ascii=False))
        return EXIT_SUCCESS_ALL
    if args.cancel:
        job = service.cancel_job(args.cancel)
        logger.info(f"job={job.id} status={job.status.value} (cancellation requested)")
        return EXIT_SUCCESS_ALL
    if args.purge_expired:
        purged = service.purge_expired_exports()
        logger.info(f"purged {len(purged)} expired exports")
        return EXIT_SUCCESS_ALL
    jobs = service.list_jobs(
        kind=JobKind(args.kind) if args.kind else None,
        module=args.module,
        status=JobStatus(args.status) if args.status else None,
    )
    for job in jobs:
        rows = f"{job.rows_processed}/{job.total_rows}" if isinstance(job, ImportJob) else str(job.rows_exported)
        print(f"{job.id}  {job.kind.value:<6}  {job.module:<16}  {job.status.value:<11}  rows={rows}  {job.created_at.isoformat()}")
    if not jobs:
        logger.info("no jobs")
    return EXIT_SUCCESS_ALL


def _cmd_templates(service: DataToolsService, args: argparse.Namespace) -> int:
    logger = setup_logging()
    command = args.template_command
    if command == "list":
        for t in service.list_templates(args.module, args.search):
            print(f"{t.id}  {t.module:<16}  used={t.times_used:<4}  {t.name}")
    elif command == "show":
        print(json.dumps(service.get_template(args.template_id).to_dict(), indent=2, ensure_ascii=False, default=str))
    elif command == "delete":
        service.delete_template(args.template_id)
        logger.info(f"template {args.template_id} deleted")
    elif command == "duplicate":
        copy = service.duplicate_template(args.template_id)
        logger.info(f"template {copy.id} created: {copy.name}")
    elif command == "export":
        text = json.dumps(service.export_template(args.template_id), indent=2, ensure_ascii=False, default=str)
        if args.output:
            Path(args.output).write_text(text + "\n", encoding="utf-8")
            logger.info(f"template bundle written to {args.output}")
        else:
            print(text)
    elif command == "import":
        try:
            bundle = json.loads(Path(args.bundle).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise MappingError(f"invalid template bundle: {e}") from e
        template = service.import_template(bundle, owner_id=args.owner)
        logger.info(f"template {template.id} imported: {template.name}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # Only read sys.argv when no list is passed; main([]) must not pick up pytest's arguments
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    with _open_store(cfg, in_memory=args.in_memory) as (store, mode):
        logger.debug(f"mode={mode}")
        with DataToolsService(store, cfg) as service:
            try:
                return args.handler(service, args)
            except _FATAL_ERRORS as e:
                logger.error(f"{args.command}: {e}")
                return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
