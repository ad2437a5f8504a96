import argparse
import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def load_env_file(path: str):
    if not path:
        return
    if path.lower().endswith(".json"):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for k, v in data.items():
            os.environ[str(k)] = str(v)
    else:
        # Fallback: simple KEY=VALUE per line
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                k, v = line.split("=", 1)
                os.environ[k.strip()] = v.strip()


def format_execution(execution) -> str:
    from sitesync.core.timeutils import fmt_ts

    parts = [
        execution.job_id,
        execution.status.value,
        f"start={fmt_ts(execution.start_time)}",
        f"end={fmt_ts(execution.end_time)}",
        f"duration_ms={execution.duration_ms if execution.duration_ms is not None else '-'}",
        f"records={execution.records_processed}",
    ]
    if execution.error_message:
        parts.append(f"error={execution.error_message}")
    return "  ".join(parts)


async def _with_runtime(fn, *, http: bool = True):
    from sitesync.core.db import SessionLocal, dispose_db, init_db
    from sitesync.core.http import close_http_clients, init_http_clients

    await init_db()
    if http:
        await init_http_clients()
    try:
        async with SessionLocal() as session:
            return await fn(session)
    finally:
        if http:
            await close_http_clients()
        await dispose_db()


async def cmd_run(args) -> int:
    from sitesync.jobs import site_sync

    if args.detach:
        async def _detached(_session):
            task = site_sync.dispatch()
            print(f"dispatched {task.get_name()}; waiting for it to finish")
            try:
                print(await task)
            except site_sync.SiteSyncError as exc:
                print(str(exc))
                return 1
            return 0

        return await _with_runtime(_detached)

    async def _run(session):
        try:
            print(await site_sync.run(session))
        except site_sync.SiteSyncError as exc:
            print(str(exc))
            return 1
        return 0

    return await _with_runtime(_run)


async def cmd_status(args) -> int:
    from datetime import timedelta

    from sitesync.core.config import settings
    from sitesync.core.timeutils import fmt_ts, utcnow
    from sitesync.jobs import site_sync
    from sitesync.scheduler_runner import next_fire_time, site_sync_trigger

    async def _status(session):
        last = await site_sync.last_execution(session)
        print(f"site_sync_enabled={settings.site_sync_enabled}")
        print(f"next_run={fmt_ts(next_fire_time(site_sync_trigger(), utcnow()))}")
        print(f"last_run={format_execution(last) if last else '-'}")
        counts = await site_sync.status_counts_since(session, utcnow() - timedelta(hours=args.hours))
        print(f"last_{args.hours}h=" + " ".join(f"{k.lower()}={v}" for k, v in counts.items()))
        return 0

    return await _with_runtime(_status, http=False)


async def cmd_recent(args) -> int:
    from datetime import timedelta

    from sitesync.core.timeutils import utcnow
    from sitesync.jobs import site_sync

    async def _recent(session):
        if args.hours:
            executions = await site_sync.executions_since(session, utcnow() - timedelta(hours=args.hours))
        else:
            executions = await site_sync.recent_executions(session, args.limit)
        for execution in executions:
            print(json.dumps(execution.as_dict()) if args.json else format_execution(execution))
        return 0

    return await _with_runtime(_recent, http=False)


async def cmd_clusters(_args) -> int:
    from sitesync.data.providers.site_details import list_active_clusters

    async def _clusters(session):
        names = await list_active_clusters(session)
        for name in names:
            print(name)
        print(f"total={len(names)}")
        return 0

    return await _with_runtime(_clusters, http=False)


async def cmd_details(args) -> int:
    from sitesync.data.mappers import group_site_details
    from sitesync.data.providers.site_details import get_site_details

    async def _details(session):
        groups = group_site_details(await get_site_details(session, args.cluster))
        if not groups:
            print(f"no active number ranges for cluster {args.cluster}")
            return 1
        print(json.dumps([g.as_dict() for g in groups], indent=2, default=str))
        return 0

    return await _with_runtime(_details, http=False)


async def cmd_cancel(args) -> int:
    from sitesync.services import job_executions

    async def _cancel(session):
        execution = await job_executions.get_by_job_id(session, args.job_id)
        if execution is None:
            print(f"unknown job_id {args.job_id}")
            return 1
        try:
            execution.cancel(args.reason)
        except job_executions.JobStateError as exc:
            print(str(exc))
            return 1
        await job_executions.save(session, execution)
        print(format_execution(execution))
        return 0

    return await _with_runtime(_cancel, http=False)


async def cmd_health(_args) -> int:
    from sitesync.core.config import settings
    from sitesync.core.http import close_http_clients
    from sitesync.data.providers import master_service, starfish

    try:
        master_ok = await master_service.is_service_healthy()
        print(f"master_service={'up' if master_ok else 'down'}")
        ok = master_ok
        if settings.detail_source == "starfish":
            starfish_ok = await starfish.is_api_healthy()
            print(f"starfish_api={'up' if starfish_ok else 'down'}")
            ok = ok and starfish_ok
    finally:
        await close_http_clients()
    return 0 if ok else 1


def positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manual control of the site sync job")
    parser.add_argument("--config", help="Path to env-like file or JSON with settings overrides", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run the site sync now")
    p_run.add_argument("--async", dest="detach", action="store_true", help="Dispatch as a background task")
    p_run.set_defaults(handler=cmd_run)

    p_status = sub.add_parser("status", help="Last run, next scheduled run and recent outcome counts")
    p_status.add_argument("--hours", type=positive_int, default=24)
    p_status.set_defaults(handler=cmd_status)

    p_recent = sub.add_parser("recent", help="Most recent runs, newest first")
    p_recent.add_argument("--limit", type=positive_int, default=10)
    p_recent.add_argument("--hours", type=positive_int, default=None, help="All runs started in the last N hours")
    p_recent.add_argument("--json", action="store_true", help="One JSON object per line")
    p_recent.set_defaults(handler=cmd_recent)

    sub.add_parser("clusters", help="List active clusters in the database").set_defaults(handler=cmd_clusters)
    sub.add_parser("health", help="Check upstream services").set_defaults(handler=cmd_health)

    p_details = sub.add_parser("details", help="Number ranges for one cluster, grouped by site and CM")
    p_details.add_argument("cluster")
    p_details.set_defaults(handler=cmd_details)

    p_cancel = sub.add_parser("cancel", help="Mark a RUNNING row left behind by a crashed process as CANCELLED")
    p_cancel.add_argument("job_id")
    p_cancel.add_argument("--reason", default="cancelled by operator")
    p_cancel.set_defaults(handler=cmd_cancel)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.config:
        load_env_file(args.config)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    raise SystemExit(main())
