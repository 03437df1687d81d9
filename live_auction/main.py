"""
Main CLI entry point for the live auction runtime.
"""

import argparse
import logging
import sys
from pathlib import Path

from . import config
from .shuffle import STRATEGY_MODES


def setup_logging(verbose: bool = False):
    """
    Configure logging for the application.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Live Auction Runtime',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the operator/observer API on JSON files under data/
  python -m live_auction.main serve

  # Serve against the auction web app
  python -m live_auction.main serve --backend rest --api-url http://localhost:3000

  # Rehearse a full auction with a fixed seed
  python -m live_auction.main dry-run --teams 6 --pool-size 80 --seed 7 --strategy tier-ordered

  # Export the action log of an auction
  python -m live_auction.main export-history my-auction --output my-auction.csv

  # Show the persisted state of an auction
  python -m live_auction.main status my-auction
        """
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose (DEBUG) logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    # serve
    serve = subparsers.add_parser('serve', help='Run the auction API server')
    _add_backend_arguments(serve)
    serve.add_argument('--host', type=str, default=config.API_HOST, help=f'Bind address (default: {config.API_HOST})')
    serve.add_argument('--port', type=int, default=config.API_PORT, help=f'Port (default: {config.API_PORT})')

    # dry-run
    dry_run = subparsers.add_parser('dry-run', help='Simulate a complete auction with a fixed seed')
    dry_run.add_argument('--teams', type=int, default=config.DRY_RUN_NUM_TEAMS,
                         help=f'Number of teams (default: {config.DRY_RUN_NUM_TEAMS})')
    dry_run.add_argument('--pool-size', type=int, default=config.DRY_RUN_POOL_SIZE,
                         help=f'Number of players (default: {config.DRY_RUN_POOL_SIZE})')
    dry_run.add_argument('--seed', type=int, default=config.DRY_RUN_SEED,
                         help=f'Random seed (default: {config.DRY_RUN_SEED})')
    dry_run.add_argument('--strategy', choices=STRATEGY_MODES, default=config.DEFAULT_SHUFFLE_STRATEGY,
                         help='Shuffle strategy')
    dry_run.add_argument('--output', type=str, default=None,
                         help='Write the final team summary to this CSV file')

    # export-history
    export = subparsers.add_parser('export-history', help='Export the action log of an auction to CSV')
    export.add_argument('session_id', help='Auction id')
    export.add_argument('--output', type=str, default=None,
                        help='Output CSV path (default: <session_id>_history.csv)')
    export.add_argument('--log-dir', type=str, default=config.ACTION_LOG_DIR,
                        help=f'Action log directory (default: {config.ACTION_LOG_DIR})')

    # status
    status = subparsers.add_parser('status', help='Show the persisted state of an auction')
    status.add_argument('session_id', help='Auction id')
    _add_backend_arguments(status)

    return parser.parse_args(argv)


def _add_backend_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--backend',
        choices=['file', 'rest'],
        default='file',
        help='Where auction configuration and state live (default: file)'
    )
    parser.add_argument('--data-dir', type=str, default=None,
                        help=f'Data directory for the file backend (default: {config.DATA_DIR})')
    parser.add_argument('--api-url', type=str, default=config.API_BASE_URL,
                        help='Auction web API root for the rest backend')
    parser.add_argument('--api-key', type=str, default=None,
                        help='API key for the rest backend (or set LIVE_AUCTION_API_KEY)')


def data_dirs(data_dir=None):
    """Sessions, auction config and action log directories under data_dir."""
    if data_dir is None:
        return Path(config.SESSIONS_DIR), Path(config.CONFIG_DIR), Path(config.ACTION_LOG_DIR)
    root = Path(data_dir)
    return root / 'sessions', root / 'auctions', root / 'action_logs'


def build_backend(args):
    """
    Create the configuration source and persistence adapter for args.backend.

    Returns:
        (config_source, persistence) tuple
    """
    if args.backend == 'rest':
        from .session.rest_client import AuctionApiClient

        client = AuctionApiClient(args.api_url, api_key=args.api_key or config.API_KEY)
        return client, client

    from .session.file_store import JsonConfigSource, JsonFileStore

    sessions_dir, config_dir, _ = data_dirs(args.data_dir)
    store = JsonFileStore(sessions_dir)
    return JsonConfigSource(config_dir, store=store), store


def run_serve(args):
    """Run the API server."""
    import uvicorn
    from .session.adapters import LocalBroadcaster
    from .session.api_server import create_app
    from .session.engine import EngineRegistry

    logger = logging.getLogger(__name__)

    config_source, persistence = build_backend(args)
    _, _, action_log_dir = data_dirs(args.data_dir)
    registry = EngineRegistry(config_source, persistence, LocalBroadcaster(), action_log_dir=action_log_dir)

    logger.info(f"Serving live auction API on {args.host}:{args.port} (backend: {args.backend})")
    uvicorn.run(create_app(registry), host=args.host, port=args.port)


def run_dry_run_command(args):
    """Run a seeded simulation and print its summary."""
    from .session.simulation import format_summary, run_dry_run

    summary = run_dry_run(
        num_teams=args.teams,
        pool_size=args.pool_size,
        seed=args.seed,
        strategy=args.strategy,
    )
    print(format_summary(summary))

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        summary['teams'].to_csv(output_path, index=False)
        logging.getLogger(__name__).info(f"Wrote team summary to {output_path}")


def run_export_history(args):
    """Export one auction's action log to CSV."""
    from .session.action_log import ActionLog, create_log_filepath

    logger = logging.getLogger(__name__)

    log_path = create_log_filepath(Path(args.log_dir), args.session_id)
    if not log_path.exists():
        logger.error(f"No action log for {args.session_id} at {log_path}")
        sys.exit(1)

    output = Path(args.output) if args.output else Path(f"{args.session_id}_history.csv")
    rows = ActionLog(log_path).export_to_csv(output)
    print(f"Exported {rows} actions to {output}")


def run_status(args):
    """Print the state a server would bootstrap for an auction."""
    from .session.adapters import ConfigNotFoundError
    from .session.bootstrap import bootstrap_session
    from .session.state_machine import AuctionStateMachine

    logger = logging.getLogger(__name__)

    config_source, persistence = build_backend(args)
    try:
        auction_config = config_source.fetch(args.session_id)
    except ConfigNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    result = bootstrap_session(auction_config, persistence)
    session = result.session
    machine = AuctionStateMachine(session, auction_config.items)

    print(f"Auction: {session.name} ({session.session_id})")
    print(f"Status: {auction_config.auction_status}  Phase: {session.phase.value}  ({result.reason})")
    print(f"Cursor: {session.cursor}/{len(session.queue)}  Current: {session.current_item() or '-'}")
    print(f"Sold: {len(session.sold)}  Unsold: {len(session.unsold)}  Deferred: {len(session.deferred)}")
    print()
    print(machine.team_summary().to_string(index=False))


def main(argv=None):
    """Main execution function with command branching."""
    args = parse_arguments(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        if args.command == 'serve':
            run_serve(args)
        elif args.command == 'dry-run':
            run_dry_run_command(args)
        elif args.command == 'export-history':
            run_export_history(args)
        elif args.command == 'status':
            run_status(args)
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
    except Exception as e:
        logger.exception(f"Error during {args.command}: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
