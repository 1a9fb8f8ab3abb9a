"""Main application entry point for Traceur."""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import TraceurConfig
from .engine.base import PerfettoProtocolError
from .engine.perfetto import PerfettoEngine, OUTPUT_EXTENSION
from .models.session import SessionRequest
from .process.output_pub import ProcessLogSink
from .process.runner import ProcessRunner
from .services.trace_service import TraceService
from .storage.file_manager import FileManager

logger = logging.getLogger(__name__)


class Server:
    """Wires configuration, process port, engine and service together."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = TraceurConfig(config_path)
        # Set up logging (override config with command line if specified)
        level = log_level or self.config.get('logging.level', 'INFO')
        setup_logging(self.config, level)

        # Kept as an attribute: pubsub only holds weak references to listeners.
        self.log_sink = ProcessLogSink()
        self.log_sink.subscribe()

        self.runner = ProcessRunner()
        self.file_manager = FileManager(
            self.config.get_trace_directory(),
            board=self.config.get('device.board', 'unknown'),
            build_id=self.config.get('device.build_id', 'unknown'),
            extension=OUTPUT_EXTENSION,
        )
        self.engine = PerfettoEngine(
            self.runner,
            self.file_manager,
            binary=self.config.get('perfetto.binary', 'perfetto'),
            session_tag=self.config.get('perfetto.session_tag', 'traceur'),
        )
        self.service = TraceService(
            self.engine,
            self.file_manager,
            min_keep_count=self.config.get('storage.min_keep_count', 3),
            min_keep_age_s=self.config.get('storage.min_keep_age_days', 28) * 24 * 60 * 60,
        )
        logger.info(f"Trace engine: {self.service.current_engine_name()}")

    def build_request(self, args: argparse.Namespace) -> SessionRequest:
        """Session request from config defaults overridden by command line flags."""
        fields = self.config.get_session_defaults()
        if args.tags:
            fields['tags'] = [tag for tag in args.tags.split(',') if tag]
        for name in ('buffer_size_kb', 'max_long_trace_size_mb', 'max_long_trace_duration_minutes'):
            value = getattr(args, name)
            if value is not None:
                fields[name] = value
        if args.long_trace:
            fields['long_trace'] = True
        if args.no_apps:
            fields['apps'] = False
        if args.no_bugreport:
            fields['attach_to_bugreport'] = False
        return SessionRequest(**fields)

    def cleanup(self) -> None:
        self.log_sink.unsubscribe()


def setup_logging(config: TraceurConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'traceur.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # Set up handlers
    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("Traceur starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def print_categories(categories, console: Console) -> None:
    table = Table(title="Trace categories")
    table.add_column("Category", style="bold")
    table.add_column("Description")
    for name, description in categories.items():
        table.add_row(name, description)
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Traceur - record system traces with Perfetto",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="Traceur v0.1.0"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Start a trace")
    start.add_argument("--tags", type=str, help="Comma separated categories (default: from config)")
    start.add_argument("--buffer-size-kb", dest="buffer_size_kb", type=int, help="Per-CPU buffer size in KB")
    start.add_argument("--long-trace", action="store_true", help="Write to file periodically")
    start.add_argument("--max-size-mb", dest="max_long_trace_size_mb", type=int,
                       help="Long trace size limit in MB, 0 for unlimited")
    start.add_argument("--max-duration-minutes", dest="max_long_trace_duration_minutes", type=int,
                       help="Long trace duration limit in minutes, 0 for unlimited")
    start.add_argument("--no-apps", action="store_true", help="Do not trace debuggable apps")
    start.add_argument("--no-bugreport", action="store_true",
                       help="Do not let bug reports attach the in-progress trace")

    sample = commands.add_parser("stack-sample", help="Start CPU stack sampling")
    sample.add_argument("--no-bugreport", action="store_true",
                        help="Do not let bug reports attach the in-progress recording")

    commands.add_parser("stop", help="Stop the recording and save it")
    commands.add_parser("stop-no-save", help="Stop the recording without saving it")
    commands.add_parser("status", help="Show whether a recording is active")
    commands.add_parser("categories", help="List available trace categories")
    commands.add_parser("clear", help="Delete all saved recordings")
    return parser


def run_command(server: Server, args: argparse.Namespace, console: Console) -> int:
    """Execute one CLI command. Returns the process exit status."""
    service = server.service

    if args.command == "start":
        request = server.build_request(args)
        if not service.start_tracing(request):
            console.print("[red]Failed to start trace[/red]")
            return 1
        console.print("Trace started")
    elif args.command == "stack-sample":
        if not service.start_stack_sampling(not args.no_bugreport):
            console.print("[red]Failed to start stack sampling[/red]")
            return 1
        console.print("Stack sampling started")
    elif args.command == "stop":
        saved = service.stop_tracing()
        service.wait_for_retention()
        if saved is None:
            console.print("[yellow]No recording was saved[/yellow]")
            return 1
        console.print(f"Saved {saved}")
    elif args.command == "stop-no-save":
        service.stop_tracing_without_saving()
        console.print("Recording stopped")
    elif args.command == "status":
        active = service.is_tracing_on()
        console.print("Recording" if active else "Idle")
    elif args.command == "categories":
        print_categories(service.list_categories(), console)
    elif args.command == "clear":
        deleted = service.clear_saved_traces()
        console.print(f"Deleted {deleted} recordings")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for Traceur."""
    args = build_parser().parse_args(argv)
    console = Console()

    try:
        server = Server(args.config, args.log_level)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(2)

    try:
        exit_code = run_command(server, args, console)
    except ValidationError as e:
        console.print(f"[red]Invalid request: {escape(str(e))}[/red]")
        exit_code = 2
    except PerfettoProtocolError as e:
        logger.error(f"Perfetto protocol error: {e}")
        console.print(f"[red]Perfetto error: {escape(str(e))}[/red]")
        exit_code = 3
    finally:
        server.cleanup()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
