"""CLI entrypoint for the workstream engine."""

import argparse
import json
import logging
import sys
from datetime import date

from workstream_engine import __version__
from workstream_engine.config import Settings
from workstream_engine.filters import FilterValidationError, parse_generate_request
from workstream_engine.models import build_embedding_client, build_llm_client
from workstream_engine.pipeline.manual import AssignmentError, assign_achievement
from workstream_engine.schemas import WorkstreamFilters
from workstream_engine.service import WorkstreamService
from workstream_engine.store import SCHEMA_VERSION, WorkstreamStore
from workstream_engine.streaming import CompleteEvent, ErrorEvent, ProgressEvent


class _JsonLinesSink:
    """Print each event as one JSON line on stdout."""

    def __init__(self) -> None:
        self.failed = False

    def emit(self, event: ProgressEvent | CompleteEvent | ErrorEvent) -> None:
        if event.type == "error":
            self.failed = True
        print(json.dumps(event.model_dump(mode="json", exclude_none=True), ensure_ascii=True), flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workstreams",
        description="Group career achievements into workstreams and keep them current",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to YAML config file (default: configs/default.yaml)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("info", help="Show current configuration")
    sub.add_parser("init-db", help="Create the SQLite database and schema if missing")

    add_user_parser = sub.add_parser("add-user", help="Create or update a user and issue an API token")
    add_user_parser.add_argument("--user-id", required=True)
    add_user_parser.add_argument("--level", default="free", help="free, paid, or demo (default: free)")
    add_user_parser.add_argument("--credits", type=int, default=10)
    add_user_parser.add_argument("--token", default=None, help="Bearer token to register for the user.")

    serve_parser = sub.add_parser("serve", help="Serve the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--log-level", default="info")

    for name, help_text in (
        ("generate", "Run a generation for one user, printing events as JSON lines"),
        ("decide", "Show which strategy a generation would take right now"),
    ):
        command_parser = sub.add_parser(name, help=help_text)
        command_parser.add_argument("--user-id", required=True)
        command_parser.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
        command_parser.add_argument("--end", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
        command_parser.add_argument(
            "--project-id",
            action="append",
            default=None,
            help="Restrict to a project; repeat for several.",
        )

    assign_parser = sub.add_parser("assign", help="Pin an achievement to a workstream by hand")
    assign_parser.add_argument("--user-id", required=True)
    assign_parser.add_argument("--achievement-id", required=True)
    assign_parser.add_argument(
        "--workstream-id",
        default=None,
        help="Target workstream; omit to unpin the achievement.",
    )

    return parser


def _filters_from_args(settings: Settings, args: argparse.Namespace) -> WorkstreamFilters | None:
    payload: dict = {"filters": {}}
    if args.start is not None or args.end is not None:
        payload["filters"]["timeRange"] = {
            "startDate": args.start.isoformat() if args.start else None,
            "endDate": args.end.isoformat() if args.end else None,
        }
    if args.project_id:
        payload["filters"]["projectIds"] = args.project_id
    return parse_generate_request(payload, max_range_months=settings.max_filter_range_months)


def cmd_info(settings: Settings) -> None:
    print(f"workstreams v{__version__}")
    print(f"  Database:         {settings.database_path}")
    print(f"  Schema version:   {SCHEMA_VERSION}")
    print(f"  Embedding provider: {settings.embedding_provider}")
    print(f"  Embedding model:  {settings.embedding_model}")
    print(f"  Embedding dims:   {settings.embedding_dimensions}")
    print(f"  Embed batch size: {settings.embedding_batch_size}")
    print(f"  Naming model:     {settings.openai_model}")
    print(f"  Naming enabled:   {settings.workstream_naming_enabled}")
    print(f"  OpenAI base URL:  {settings.resolved_openai_base_url() or '(default OpenAI)'}")
    print(f"  Client retries:   {settings.client_max_retries}")
    print(f"  Min achievements: {settings.minimum_achievements}")
    print(f"  Recluster growth: {settings.recluster_percentage_threshold:.0%}")
    print(f"  Recluster new:    {settings.recluster_absolute_threshold}")
    print(f"  Recluster days:   {settings.recluster_time_threshold_days}")
    print(f"  Minimum epsilon:  {settings.minimum_epsilon}")
    print(f"  Max filter range: {settings.max_filter_range_months} months")
    print(f"  Credit cost:      {settings.generation_credit_cost}")
    print(f"  Unlimited levels: {', '.join(settings.unlimited_user_levels)}")
    for band in settings.parameter_bands:
        bound = f"< {band.upper_bound}" if band.upper_bound is not None else "rest"
        print(
            f"  Band {bound:>6}:      min_pts={band.min_pts} "
            f"min_cluster_size={band.min_cluster_size} outlier_threshold={band.outlier_threshold}"
        )


def cmd_init_db(settings: Settings) -> None:
    with WorkstreamStore(path=settings.database_path) as store:
        print(f"Database ready at {store.path} (schema v{SCHEMA_VERSION})")


def cmd_add_user(settings: Settings, args: argparse.Namespace) -> None:
    with WorkstreamStore(path=settings.database_path) as store:
        store.create_user(args.user_id, level=args.level, credits=args.credits)
        if args.token:
            store.add_api_token(args.user_id, args.token)
    print(f"User {args.user_id} ({args.level}, {args.credits} credits)")


def cmd_serve(settings: Settings, args: argparse.Namespace) -> None:
    import uvicorn

    from workstream_engine.api import create_app

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=args.log_level)


def cmd_generate(settings: Settings, args: argparse.Namespace) -> None:
    try:
        filters = _filters_from_args(settings, args)
    except FilterValidationError as exc:
        print(f"Invalid filters: {exc}", file=sys.stderr)
        sys.exit(2)

    sink = _JsonLinesSink()
    with WorkstreamStore(path=settings.database_path) as store:
        service = WorkstreamService(
            settings,
            store,
            build_embedding_client(settings),
            build_llm_client(settings),
        )
        service.generate(args.user_id, filters, sink)
    if sink.failed:
        sys.exit(1)


def cmd_decide(settings: Settings, args: argparse.Namespace) -> None:
    try:
        filters = _filters_from_args(settings, args)
    except FilterValidationError as exc:
        print(f"Invalid filters: {exc}", file=sys.stderr)
        sys.exit(2)

    with WorkstreamStore(path=settings.database_path) as store:
        service = WorkstreamService(settings, store, build_embedding_client(settings))
        decision = service.decide(args.user_id, filters)
    print(json.dumps(decision.model_dump(mode="json"), indent=2, ensure_ascii=True))


def cmd_assign(settings: Settings, args: argparse.Namespace) -> None:
    with WorkstreamStore(path=settings.database_path) as store:
        try:
            outcome = assign_achievement(store, args.user_id, args.achievement_id, args.workstream_id)
        except AssignmentError as exc:
            print(f"Assignment failed: {exc}", file=sys.stderr)
            sys.exit(1)
    target = outcome.workstream_id or "(none)"
    previous = outcome.previous_workstream_id or "(none)"
    print(f"Achievement {outcome.achievement_id} -> {target} (was {previous})")
    for workstream_id in outcome.archived:
        print(f"  Archived empty workstream {workstream_id}")


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings.from_yaml(args.config)

    if args.command == "info":
        cmd_info(settings)
    elif args.command == "init-db":
        cmd_init_db(settings)
    elif args.command == "add-user":
        cmd_add_user(settings, args)
    elif args.command == "serve":
        cmd_serve(settings, args)
    elif args.command == "generate":
        cmd_generate(settings, args)
    elif args.command == "decide":
        cmd_decide(settings, args)
    elif args.command == "assign":
        cmd_assign(settings, args)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
