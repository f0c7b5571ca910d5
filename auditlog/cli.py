from __future__ import annotations
import argparse, asyncio, logging, signal
from sqlalchemy.exc import SQLAlchemyError

from auditlog.config import Settings
from auditlog.db import init_schema, make_engine, ping
from auditlog.retention import RetentionSweeper
from auditlog.scheduler import Scheduler
from auditlog.schemas import RetentionPolicy
from auditlog.store import PartitionStore
from auditlog.writer import BatchWriter

logger = logging.getLogger("auditlog")


def _settings(args) -> Settings:
    return Settings.from_env(
        insert_interval_seconds=getattr(args, "insert_interval_seconds", None),
        insert_amount_of_logs=getattr(args, "batch_size", None),
        cleanup_interval_seconds=getattr(args, "cleanup_interval_seconds", None),
        max_log_age_seconds=getattr(args, "max_log_age_seconds", None),
        retention_policy=getattr(args, "retention_policy", None),
    )


def _setup_logging(s: Settings) -> None:
    logging.basicConfig(level=s.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _connect(s: Settings):
    engine = make_engine(s.postgres_url)
    try:
        ping(engine)
    except SQLAlchemyError as e:
        logger.error("cannot connect to database %s: %s", s.masked_url(), e)
        raise SystemExit(1)
    logger.info("connected to database")
    return engine


def _sweeper(s: Settings, store: PartitionStore) -> RetentionSweeper:
    return RetentionSweeper(store, max_age_seconds=s.max_log_age_seconds, policy=s.retention_policy)


def cmd_run(args):
    s = _settings(args)
    _setup_logging(s)
    logger.info(s.summary())
    engine = _connect(s)

    init_schema(engine, reset=args.reset)
    store = PartitionStore(engine, granularity_seconds=s.partition_granularity_seconds)
    scheduler = Scheduler(
        writer=BatchWriter(engine, store),
        sweeper=_sweeper(s, store),
        insert_interval_seconds=s.insert_interval_seconds,
        batch_size=s.insert_amount_of_logs,
        cleanup_interval_seconds=s.cleanup_interval_seconds,
    )

    async def _main():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)
        logger.info("audit log cleaner started, CTRL+C to stop")
        return await scheduler.run()

    try:
        stats = asyncio.run(_main())
    finally:
        engine.dispose()
    print(stats)


def cmd_init_db(args):
    s = _settings(args)
    _setup_logging(s)
    engine = _connect(s)
    try:
        init_schema(engine, reset=args.reset)
    finally:
        engine.dispose()
    print({"initialized": True, "reset": args.reset})


def cmd_sweep(args):
    s = _settings(args)
    _setup_logging(s)
    engine = _connect(s)
    try:
        store = PartitionStore(engine, granularity_seconds=s.partition_granularity_seconds)
        outcome = _sweeper(s, store).sweep()
    finally:
        engine.dispose()
    print({
        "cutoff": outcome.cutoff.isoformat(),
        "target": outcome.target.identifier if outcome.target else None,
        "dropped": outcome.dropped,
        "not_found": outcome.not_found,
    })


def cmd_partitions(args):
    s = _settings(args)
    _setup_logging(s)
    engine = _connect(s)
    try:
        keys = PartitionStore(engine, granularity_seconds=s.partition_granularity_seconds).list_partitions()
    finally:
        engine.dispose()
    for k in keys:
        print(f"{k.identifier}\t[{k.start.isoformat()}, {k.end.isoformat()})")
    print({"partitions": len(keys)})


def main(argv=None):
    policies = [p.value for p in RetentionPolicy]
    p = argparse.ArgumentParser(prog="auditlog")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run")
    r.add_argument("--insert-interval-seconds", type=float)
    r.add_argument("--batch-size", type=int)
    r.add_argument("--cleanup-interval-seconds", type=float)
    r.add_argument("--max-log-age-seconds", type=int)
    r.add_argument("--retention-policy", choices=policies)
    r.add_argument("--reset", action="store_true", help="drop audit_logs and all partitions first")
    r.set_defaults(fn=cmd_run)

    i = sub.add_parser("init-db")
    i.add_argument("--reset", action="store_true")
    i.set_defaults(fn=cmd_init_db)

    sw = sub.add_parser("sweep")
    sw.add_argument("--max-log-age-seconds", type=int)
    sw.add_argument("--policy", dest="retention_policy", choices=policies)
    sw.set_defaults(fn=cmd_sweep)

    ls = sub.add_parser("partitions")
    ls.set_defaults(fn=cmd_partitions)

    args = p.parse_args(argv)
    args.fn(args)

if __name__ == "__main__":
    main()
