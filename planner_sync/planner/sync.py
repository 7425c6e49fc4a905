"""Pull purchase orders or variants from Inventory Planner into JSON files."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

import requests
from pydantic import BaseModel, ValidationError
from tqdm import tqdm

from planner_sync import config
from planner_sync.config import ConfigurationError, PlannerCredentials
from planner_sync.utils.http import HttpStatusError

from .client import ALL_STATUSES, InventoryPlannerClient, PlannerError
from .models import PurchaseOrder, SyncRecordError, SyncStatus, SyncSummary, Variant, VariantFilter

LOGGER = logging.getLogger(__name__)

RESOURCES: Dict[str, Type[BaseModel]] = {
    "purchase-orders": PurchaseOrder,
    "variants": Variant,
}


def parse_records(
    records: Iterable[Dict[str, Any]], model: Type[BaseModel]
) -> Tuple[List[BaseModel], List[SyncRecordError]]:
    """Validate raw API records, returning the good ones and an error per bad one."""

    parsed: List[BaseModel] = []
    errors: List[SyncRecordError] = []
    for record in records:
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as exc:
            record_id = record.get("id") if isinstance(record, dict) else None
            errors.append(
                SyncRecordError(
                    record_id=str(record_id) if record_id is not None else None,
                    error=str(exc).splitlines()[0],
                )
            )
    return parsed, errors


async def run_sync(
    client: InventoryPlannerClient,
    resource: str,
    *,
    limit: Optional[int] = None,
    max_pages: Optional[int] = None,
    since: Optional[str] = None,
    status: Optional[str] = None,
    variant_filter: VariantFilter = VariantFilter.ALL,
    last_success_at: Optional[datetime] = None,
    progress: bool = True,
) -> Tuple[List[BaseModel], SyncSummary]:
    """Walk every page of *resource* and return parsed records plus a summary.

    *last_success_at* is the previous run's marker; a failed run carries it
    forward so the next incremental sync starts from the same point.
    """

    model = RESOURCES[resource]
    summary = SyncSummary(resource=resource, since=since)
    records: List[BaseModel] = []
    all_errors: List[SyncRecordError] = []

    if resource == "purchase-orders":
        pages = client.iter_purchase_orders(limit=limit, max_pages=max_pages, status=status, updated_since=since)
    else:
        pages = client.iter_variants(limit=limit, max_pages=max_pages, updated_since=since, filter=variant_filter)

    LOGGER.info("[%s] Starting - last sync: %s", resource, since or "never")
    bar = tqdm(desc=f"Syncing {resource}", unit="rec", disable=not progress)
    try:
        async for page in pages:
            if bar.total is None and page.meta.total:
                bar.total = page.meta.total
            parsed, errors = parse_records(page.records, model)
            records.extend(parsed)
            all_errors.extend(errors)
            summary.pages += 1
            bar.update(len(page.records))
    except (HttpStatusError, requests.RequestException, PlannerError) as exc:
        LOGGER.error("[%s] Sync failed: %s", resource, exc)
        summary.status = SyncStatus.ERROR
        summary.error = str(exc)
    finally:
        bar.close()

    summary.count = len(records)
    summary.errors = all_errors[: config.MAX_SUMMARY_ERRORS]
    if summary.status != SyncStatus.ERROR and all_errors:
        summary.status = SyncStatus.PARTIAL_SUCCESS
    summary.last_success_at = last_success_at if summary.status == SyncStatus.ERROR else summary.started_at
    summary.finished_at = datetime.now()
    LOGGER.info("[%s] Finished with status %s: %s records, %s skipped", resource, summary.status, summary.count, len(all_errors))
    return records, summary


def summary_path_for(output_path: Path) -> Path:
    return output_path.with_name(f"{output_path.stem}.summary.json")


def load_last_success(summary_path: Path) -> Optional[datetime]:
    """Return when the newest successful run recorded in *summary_path* started."""

    if not summary_path.exists():
        return None
    try:
        previous = SyncSummary.model_validate(json.loads(summary_path.read_text(encoding="utf-8")))
    except (ValueError, ValidationError) as exc:
        LOGGER.warning("Ignoring unreadable summary %s: %s", summary_path, exc)
        return None
    if previous.last_success_at is not None:
        return previous.last_success_at
    # Summaries written before the marker existed only say whether that run worked.
    if previous.status != SyncStatus.ERROR.value:
        return previous.started_at
    return None


def merge_records(existing: List[Dict[str, Any]], fresh: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Upsert *fresh* into *existing* by ``id``, keeping the existing order."""

    merged: Dict[Any, Dict[str, Any]] = {record.get("id"): record for record in existing}
    for record in fresh:
        merged[record.get("id")] = record
    return list(merged.values())


def _write_json_atomic(path: Path, payload: Any, indent: Optional[int]) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=indent)
    tmp_path.replace(path)


def write_outputs(
    records: List[BaseModel],
    summary: SyncSummary,
    output_path: Path,
    *,
    pretty: bool = False,
    merge: bool = False,
) -> Path:
    """Write the records file and its summary, each replaced atomically.

    A failed run only writes its summary so the last good records stay in
    place. With *merge* the records are upserted into the existing file.
    """

    output_path.parent.mkdir(parents=True, exist_ok=True)
    indent = 2 if pretty else None
    if summary.status != SyncStatus.ERROR:
        payload = [record.model_dump(mode="json") for record in records]
        if merge and output_path.exists():
            payload = merge_records(json.loads(output_path.read_text(encoding="utf-8")), payload)
        _write_json_atomic(output_path, payload, indent)
    else:
        LOGGER.warning("Keeping existing records at %s after failed sync", output_path)
    summary_path = summary_path_for(output_path)
    _write_json_atomic(summary_path, summary.model_dump(mode="json"), indent)
    return summary_path


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pull Inventory Planner records into JSON files")
    parser.add_argument("resource", choices=sorted(RESOURCES), help="Which endpoint to sync")
    parser.add_argument("--limit", type=positive_int, default=config.PAGE_LIMIT, help="Records per page")
    parser.add_argument("--max-pages", type=positive_int, default=None, help="Stop after this many pages")
    parser.add_argument(
        "--since",
        type=str,
        default=None,
        help="Only records updated at or after this ISO timestamp (defaults to the last successful sync)",
    )
    parser.add_argument("--full", action="store_true", help="Ignore the last successful sync and pull everything")
    parser.add_argument(
        "--status",
        type=str,
        default=ALL_STATUSES,
        help="Purchase order status to pull, e.g. open or closed (purchase-orders only; 'all' disables the filter)",
    )
    parser.add_argument(
        "--filter",
        choices=[item.value for item in VariantFilter],
        default=VariantFilter.ALL.value,
        help="Stock filter (variants only)",
    )
    parser.add_argument("--output", type=str, default=None, help="Output JSON path (defaults to data/cache/<resource>.json)")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        credentials = PlannerCredentials.from_env()
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 2

    if args.output:
        output_path = Path(args.output)
    else:
        output_path = config.ensure_data_dirs() / f"{args.resource}.json"

    last_success_at = load_last_success(summary_path_for(output_path))
    since = args.since
    if since is None and not args.full and last_success_at is not None:
        since = last_success_at.isoformat()

    client = InventoryPlannerClient(credentials, page_limit=args.limit)
    records, summary = asyncio.run(
        run_sync(
            client,
            args.resource,
            max_pages=args.max_pages,
            since=since,
            status=args.status,
            variant_filter=VariantFilter(args.filter),
            last_success_at=last_success_at,
            progress=not args.no_progress,
        )
    )
    summary_path = write_outputs(records, summary, output_path, pretty=args.pretty, merge=since is not None)
    LOGGER.info("Wrote %s records to %s (summary: %s)", len(records), output_path, summary_path)
    return 1 if summary.status == SyncStatus.ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
