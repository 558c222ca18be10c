from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from ..config.loader import DEFAULT_CONFIG_PATH, AppConfig, ConfigError, default_config, load_config
from ..db.clients import find_duplicate_client
from ..db.connection import db_connection, load_env_file
from ..db.locks import check_database
from ..errors import FoodbankError, InputError
from ..ingest.reader import (
    TEMPLATE_FILENAME,
    csv_template,
    import_rows_from_records,
    parse_import_csv,
    read_import_csv,
)
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.import_row import ImportRow
from ..models.validation import ValidationResult
from ..services.exporter import DEFAULT_CREATED_BY, EXPORT_FORMATS, export_backup
from ..services.importer import import_clients
from ..services.restore import load_backup_file, restore_backup
from ..services.summary import (
    render_export_summary,
    render_import_summary,
    render_restore_summary,
    render_validation_summary,
)
from ..services.validator import RowValidator, validate_rows

"""CLI entrypoint: `foodbank [--config PATH] [--debug] <command> ...`.

Exit codes:
    0  everything succeeded
    2  partial failure (some import rows failed, or validation found errors)
    1  fatal: bad input, bad configuration, database unavailable, restore failed
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="foodbank", description="Foodbank client import and backup/restore")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    v = sub.add_parser("validate", help="Validate an import file without importing")
    v.add_argument("file", type=Path, help="CSV file (- for stdin), or JSON {\"clients\": [...]}")
    v.add_argument("--offline", action="store_true", help="Skip the duplicate lookup (no database)")

    t = sub.add_parser("template", help="Write the import CSV template")
    t.add_argument("--out", type=Path, default=None, help=f"Output file (e.g. {TEMPLATE_FILENAME}); stdout if omitted")

    i = sub.add_parser("import", help="Import clients in batches")
    i.add_argument("file", type=Path, help="CSV file (- for stdin), or JSON {\"clients\": [...]}")
    i.add_argument("--created-by", required=True, help="Staff id recorded as creator")
    i.add_argument("--batch-size", type=int, default=None, help="Rows per transaction (default 50, max 100)")
    i.add_argument("--skip-duplicates", action="store_true", help="Skip rows matching an existing client")
    i.add_argument("--only-valid", action="store_true", help="Import the rows that pass validation, drop the rest")

    e = sub.add_parser("export", help="Export a full backup")
    e.add_argument("--format", choices=EXPORT_FORMATS, default="json")
    e.add_argument("--out", type=Path, default=Path("."), help="Output directory")
    e.add_argument("--created-by", default=DEFAULT_CREATED_BY)

    r = sub.add_parser("restore", help="Replace all data with a JSON backup")
    r.add_argument("file", type=Path)

    sub.add_parser("status", help="Check database connectivity")
    return p.parse_args(argv)


def _load_config(path: Path | None) -> AppConfig:
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return default_config()


def _read_rows(path: Path, cfg: AppConfig) -> list[ImportRow]:
    if str(path) == "-":
        return parse_import_csv(sys.stdin.read(), cfg.importing.max_rows)
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise InputError(f"cannot read {path}: {e}") from e
        return import_rows_from_records(data)
    return read_import_csv(path, cfg.importing.max_rows)


def _report_validation(logger, result: ValidationResult) -> None:
    for err in result.errors:
        value = f" (value={err.value!r})" if err.value is not None else ""
        logger.error(f"row {err.row} {err.field}: {err.message}{value}")
    for warn in result.warnings:
        logger.warning(f"row {warn.row} {warn.field}: {warn.message} (existing_id={warn.existing_id})")


def _cmd_validate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    rows = _read_rows(args.file, cfg)
    if args.offline:
        result = validate_rows(rows, rules=cfg.validation, max_rows=cfg.importing.max_rows)
    else:
        with db_connection(cfg) as cur:
            result = validate_rows(
                rows,
                find_duplicate=lambda name, address: find_duplicate_client(cur, name, address),
                rules=cfg.validation,
                max_rows=cfg.importing.max_rows,
            )
    _report_validation(logger, result)
    log_summary(render_validation_summary(result))
    return EXIT_SUCCESS_ALL if result.valid else EXIT_PARTIAL_FAILURE


def _cmd_template(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    text = csv_template()
    if args.out is None:
        sys.stdout.write(text)
        return EXIT_SUCCESS_ALL
    args.out.write_text(text, encoding="utf-8")
    logger.info(f"template written to {args.out}")
    return EXIT_SUCCESS_ALL


def _cmd_import(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    rows = _read_rows(args.file, cfg)
    error_log = ErrorLogBuffer(cfg.logs_dir)
    with db_connection(cfg) as lookup_cur:
        result = validate_rows(
            rows,
            find_duplicate=lambda name, address: find_duplicate_client(lookup_cur, name, address),
            rules=cfg.validation,
            max_rows=cfg.importing.max_rows,
        )
        _report_validation(logger, result)
        if not result.valid:
            if not args.only_valid:
                log_summary(render_validation_summary(result))
                logger.error("validation failed; fix the rows above or pass --only-valid")
                return EXIT_PARTIAL_FAILURE
            checker = RowValidator(cfg.validation)
            kept = [r for r in rows if not checker.row_errors(r)]
            logger.info(f"importing {len(kept)} valid rows, {len(rows) - len(kept)} rows dropped")
            rows = kept
            if not rows:
                log_summary(render_validation_summary(result))
                return EXIT_PARTIAL_FAILURE

        with db_connection(cfg) as cur:
            try:
                imported = import_clients(
                    cur,
                    rows,
                    args.created_by,
                    batch_size=args.batch_size,
                    skip_duplicates=args.skip_duplicates,
                    settings=cfg.importing,
                    lookup_cursor=lookup_cur,
                    error_log=error_log,
                )
            finally:
                log_path = error_log.flush()
    if log_path is not None:
        logger.warning(f"error details written to {log_path}")
    log_summary(render_import_summary(imported))
    if imported.success and result.valid:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


def _cmd_export(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    with db_connection(cfg) as cur:
        filename, payload, backup = export_backup(cur, args.format, args.created_by, cfg.backup)
    args.out.mkdir(parents=True, exist_ok=True)
    target = args.out / filename
    target.write_bytes(payload)
    logger.info(f"backup written to {target}")
    log_summary(render_export_summary(args.format, filename, len(payload), backup.stats()))
    return EXIT_SUCCESS_ALL


def _cmd_restore(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    document = load_backup_file(args.file)
    error_log = ErrorLogBuffer(cfg.logs_dir)
    started = time.perf_counter()
    with db_connection(cfg) as cur:
        try:
            stats = restore_backup(cur, document, settings=cfg.backup, error_log=error_log)
        finally:
            error_log.flush()
    log_summary(render_restore_summary(stats, time.perf_counter() - started))
    return EXIT_SUCCESS_ALL


def _cmd_status(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    try:
        with db_connection(cfg) as cur:
            status = check_database(cur)
    except FoodbankError as e:
        status = {"database": "unavailable", "error": str(e)}
    logger.info(json.dumps(status))
    log_summary(f"status database={status['database']}")
    return EXIT_SUCCESS_ALL if status["database"] == "connected" else EXIT_FATAL


COMMANDS = {
    "validate": _cmd_validate,
    "template": _cmd_template,
    "import": _cmd_import,
    "export": _cmd_export,
    "restore": _cmd_restore,
    "status": _cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # argv=[] must not fall back to sys.argv (pytest's own flags would leak in)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug()

    # .env first so its connection values win over the process environment
    load_env_file(Path(".env"), override=True)
    try:
        cfg = _load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        return COMMANDS[args.command](args, cfg, logger)
    except FoodbankError as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.error(f"{args.command}: interrupted")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
