from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import psycopg2
import yaml
from dotenv import load_dotenv

from workforce_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from workforce_import.db.connection import open_store
from workforce_import.db.store import EmployeeStore
from workforce_import.excel.reader import MalformedWorkbookError, inspect_workbook
from workforce_import.excel.writer import export_records, write_template
from workforce_import.logging.init import log_summary, setup_logging
from workforce_import.models.conflict import (
    BatchDefault,
    ConflictPolicy,
    ConflictRecord,
    PerConflict,
    Resolution,
    ResolutionAction,
)
from workforce_import.services.orchestrator import ProcessingError, mass_delete, new_batch_id, prepare_batch
from workforce_import.services.resolution import ConflictRequiresResolutionError
from workforce_import.services.summary import render_summary_line
from workforce_import.services.validator import ValidationError

"""CLI entrypoint.

    python -m workforce_import.cli import FILE [--conflict-resolution skip|overwrite|ask]
                                               [--resolutions FILE.yml] [--actor NAME]
                                               [--inspect-data]
    python -m workforce_import.cli template OUT.xlsx
    python -m workforce_import.cli export OUT.xlsx
    python -m workforce_import.cli delete ID [ID ...] [--employee-id]

Exit codes: 0 success, 1 fatal (config / workbook / validation), 2 batch applied
with row errors, 3 conflicts need a decision (pending file written).
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2
EXIT_RESOLUTION_REQUIRED = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--debug", action="store_true", help="Enable debug logging")
    common.add_argument(
        "--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config file (default: config/import.yml)"
    )

    p = argparse.ArgumentParser(prog="workforce_import", description="Workforce spreadsheet bulk importer")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", parents=[common], help="Import a workbook")
    imp.add_argument("file", type=Path)
    imp.add_argument(
        "--conflict-resolution",
        choices=[c.value for c in ConflictPolicy],
        default=None,
        help="Batch-wide conflict policy (default: from config)",
    )
    imp.add_argument("--resolutions", type=Path, default=None, help="YAML file with per-conflict decisions")
    imp.add_argument("--actor", default=None, help="Recorded as last_modified_by")
    imp.add_argument("--inspect-data", action="store_true", help="Print header keys & first rows then exit")

    tpl = sub.add_parser("template", parents=[common], help="Write a blank import template")
    tpl.add_argument("output", type=Path)

    exp = sub.add_parser("export", parents=[common], help="Export every stored employee")
    exp.add_argument("output", type=Path)

    dele = sub.add_parser("delete", parents=[common], help="Delete employees")
    dele.add_argument("ids", nargs="+")
    dele.add_argument(
        "--employee-id", action="store_true", help="IDs are Employee IDs instead of internal ids"
    )
    return p


# -- resolutions file --------------------------------------------------------


def _pending_payload(batch_id: str, source: str, pending: Sequence[ConflictRecord]) -> dict[str, Any]:
    return {
        "batch": batch_id,
        "source": source,
        "default": None,
        "conflicts": [
            {
                "conflict_id": c.conflict_id,
                "row": c.row_number,
                "employee_id": c.incoming.external_id,
                "kind": c.kind.value,
                "action": None,
                "differences": [
                    {"field": d.field, "existing": d.existing_value, "incoming": d.incoming_value}
                    for d in c.differences
                ],
            }
            for c in pending
        ],
    }


def _write_pending_file(logs_dir: Path, batch_id: str, source: str, pending: Sequence[ConflictRecord]) -> Path:
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = logs_dir / f"pending-{batch_id}.yml"
    path.write_text(
        yaml.safe_dump(_pending_payload(batch_id, source, pending), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )
    return path


def _load_resolutions(path: Path) -> list[Resolution]:
    """Read decisions (same layout as the pending file; null actions are ignored)."""
    if not path.exists():
        raise ConfigError(f"resolutions file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("resolutions file must be a mapping")

    resolutions: list[Resolution] = []
    try:
        if data.get("default"):
            resolutions.append(BatchDefault(ResolutionAction.parse(data["default"])))
        for entry in data.get("conflicts") or []:
            if entry.get("action"):
                resolutions.append(PerConflict(str(entry["conflict_id"]), ResolutionAction.parse(entry["action"])))
    except (ValueError, KeyError, AttributeError) as e:
        raise ConfigError(f"invalid resolutions file: {e}") from e
    return resolutions


def _prompt_resolutions(pending: Sequence[ConflictRecord]) -> list[Resolution]:
    """Ask on the terminal; 'a' / 'o' apply keep / use-incoming to every remaining conflict."""
    decisions: list[Resolution] = []
    for idx, conflict in enumerate(pending):
        print(
            f"\n[{idx + 1}/{len(pending)}] row {conflict.row_number} "
            f"{conflict.incoming.external_id} (matched by {conflict.kind.value})"
        )
        for d in conflict.differences:
            print(f"  {d.field}: {d.existing_value!r} -> {d.incoming_value!r}")
        while True:
            answer = input("  [k]eep existing / [u]se incoming / keep [a]ll / [o]verwrite all: ").strip().lower()
            if answer in ("k", "u", "a", "o"):
                break
        if answer == "a":
            decisions.append(BatchDefault(ResolutionAction.KEEP_EXISTING))
            break
        if answer == "o":
            decisions.append(BatchDefault(ResolutionAction.USE_INCOMING))
            break
        action = ResolutionAction.KEEP_EXISTING if answer == "k" else ResolutionAction.USE_INCOMING
        decisions.append(PerConflict(conflict.conflict_id, action))
    return decisions


# -- commands ----------------------------------------------------------------


def _cmd_import(args: argparse.Namespace, cfg: ImportConfig, store: EmployeeStore, logger: Any) -> int:
    source: Path = args.file
    if not source.exists():
        logger.error(f"file not found: {source}")
        return EXIT_FATAL

    if args.inspect_data:
        try:
            info = inspect_workbook(source)
        except MalformedWorkbookError as e:
            logger.error(f"workbook: {e}")
            return EXIT_FATAL
        print(f"FILE: {source.name} rows={info['rows']} cols={info['columns']}")
        print("  sample_rows=", json.dumps(info["sample_rows"], ensure_ascii=False, default=str))
        return EXIT_SUCCESS

    policy = ConflictPolicy(args.conflict_resolution or cfg.conflict_resolution.value)
    actor = args.actor or cfg.actor
    logs_dir = Path(cfg.logs_directory)
    try:
        resolutions = _load_resolutions(args.resolutions) if args.resolutions else []
    except ConfigError as e:
        logger.error(f"resolutions: {e}")
        return EXIT_FATAL

    try:
        session = prepare_batch(
            source,
            store,
            source_name=source.name,
            batch_id=new_batch_id(cfg.timezone),
            logs_dir=logs_dir,
        )
    except MalformedWorkbookError as e:
        logger.error(f"workbook: {e}")
        return EXIT_FATAL
    except ValidationError as e:
        logger.error(f"validation failed: {len(e.violations)} problem(s), nothing was imported")
        for v in e.violations:
            logger.error(str(v))
        return EXIT_FATAL

    try:
        try:
            result = session.commit(policy, resolutions, actor)
        except ConflictRequiresResolutionError as e:
            if not sys.stdin.isatty():
                path = _write_pending_file(logs_dir, session.batch_id, source.name, e.pending)
                logger.warning(
                    f"{len(e.pending)} conflict(s) need a decision; edit {path} and re-run with --resolutions {path}"
                )
                return EXIT_RESOLUTION_REQUIRED
            decisions = _prompt_resolutions(e.pending)
            result = session.commit(ConflictPolicy.ASK, [*resolutions, *decisions], actor)
    except ConflictRequiresResolutionError as e:  # pragma: no cover - prompt always decides
        logger.error(f"{len(e.pending)} conflict(s) left undecided")
        return EXIT_RESOLUTION_REQUIRED
    except ValueError as e:
        logger.error(f"resolutions: {e}")
        return EXIT_FATAL

    log_summary(render_summary_line(result)[len("SUMMARY ") :])
    if result.failed_count > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS


def _cmd_template(args: argparse.Namespace, cfg: ImportConfig, store: EmployeeStore, logger: Any) -> int:
    options = store.dropdown_options() or cfg.dropdown_options
    write_template(args.output, options)
    logger.info(f"template written: {args.output}")
    return EXIT_SUCCESS


def _cmd_export(args: argparse.Namespace, cfg: ImportConfig, store: EmployeeStore, logger: Any) -> int:
    count = export_records(args.output, store.snapshot())
    logger.info(f"exported {count} employee(s): {args.output}")
    return EXIT_SUCCESS


def _cmd_delete(args: argparse.Namespace, cfg: ImportConfig, store: EmployeeStore, logger: Any) -> int:
    ids: list[str] = list(args.ids)
    if args.employee_id:
        wanted = {i.strip().lower() for i in ids}
        ids = [e.internal_id for e in store.snapshot() if e.external_id.strip().lower() in wanted]
        if not ids:
            logger.warning("no stored employee matches the given Employee IDs")
            return EXIT_SUCCESS
    try:
        deleted = mass_delete(store, ids)
    except ProcessingError as e:
        logger.error(f"delete: {e}")
        return EXIT_FATAL
    log_summary(f"deleted={deleted} requested={len(ids)}")
    return EXIT_SUCCESS


_COMMANDS = {
    "import": _cmd_import,
    "template": _cmd_template,
    "export": _cmd_export,
    "delete": _cmd_delete,
}


def main(argv: list[str] | None = None) -> int:
    # NOTE: None のときのみ sys.argv を読む (テストで main([...]) を呼ぶため)
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        with open_store(cfg) as (store, mode):
            logger.info(f"command={args.command} store={mode}")
            if mode == "memory" and args.command in ("export", "delete"):
                logger.warning("in-memory store holds no persisted employees")
            return _COMMANDS[args.command](args, cfg, store, logger)
    except psycopg2.Error as e:
        # スキーマ作成・スナップショット読み込み等のストア全体の失敗
        logger.error(f"database: {str(e).strip()}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
