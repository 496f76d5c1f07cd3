"""Command-line interface for APS Backup."""

import argparse
import atexit
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import Config
from .exceptions import BackupCancelled, BackupError

if TYPE_CHECKING:
    from .client import DataManagementClient

logger = logging.getLogger(__name__)


def setup_logging(log_file: Path) -> None:
    """Configure logging to file only (no console output)."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.DEBUG)

    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    # urllib3 logs every pooled connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)


def resolve_token(config: Config, client: "DataManagementClient") -> str:
    """Return an access token, refreshing once when only a refresh token is configured."""
    if config.has_access_token():
        return config.access_token
    if config.has_refresh_token_auth():
        logger.info("Refreshing access token")
        return client.refresh_access_token(config.refresh_token).get("access_token", "")
    return ""


def connect(config: Config) -> tuple["DataManagementClient", str] | None:
    """Validate config, build the client and obtain a token. None on failure."""
    from .client import DataManagementClient
    from .display import print_error, print_info, print_success, print_warning

    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        print_info("Run 'aps-backup auth' to set up authentication.")
        return None

    client = DataManagementClient(config)
    try:
        token = resolve_token(config, client)
    except BackupError as e:
        print_error(f"Token refresh failed: {e}")
        return None

    # The profile is informational; the token may lack the profile scope
    try:
        profile = client.get_user_profile(token)
        print_success(f"Connected: {profile.get('name', '?')} ({profile.get('email', 'no email')})")
    except BackupError as e:
        logger.warning("Could not read user profile: %s", e)
        print_warning("Connected (user profile unavailable)")
    return client, token


def run_backup(args: argparse.Namespace, config: Config) -> int:
    """Stream a full or scoped backup into ``args.output``."""
    from .display import (
        Colors,
        ProgressLine,
        print_banner,
        print_error,
        print_header,
        print_info,
        print_summary,
        print_warning,
    )
    from .models import BackupStats
    from .pipeline import BackupPipeline

    if bool(args.hub) != bool(args.project):
        print_error("--hub and --project must be given together")
        return 2

    print_banner()
    print_header("Configuration")
    print()

    log_file = Path.cwd() / "aps_backup.log"
    setup_logging(log_file)
    logger.info("=" * 50)
    logger.info("Backup started")
    print_info(f"Log file: {log_file}")

    connected = connect(config)
    if connected is None:
        return 1
    client, token = connected

    output = Path(args.output)
    stats = BackupStats()
    pipeline = BackupPipeline(client, config)

    print_header("Resolving scope")
    print()
    try:
        if args.hub:
            archive = pipeline.produce_scoped_backup(token, args.hub, args.project, stats)
            print_info(f"Scope: project {args.project} in hub {args.hub}")
        else:
            archive = pipeline.produce_full_backup(token, stats)
            print_info("Scope: every accessible hub")
    except BackupError as e:
        print_error(str(e))
        logger.error("Backup aborted before writing: %s", e)
        return 1

    interrupted = False

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal interrupted
        if not interrupted:
            interrupted = True
            archive.builder.stop_event.set()
            print(Colors.SHOW_CURSOR, end="")
            print(f"\n\n  {Colors.YELLOW}⚠{Colors.RESET} Gracefully stopping... please wait.")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    atexit.register(lambda: print(Colors.SHOW_CURSOR, end="", flush=True))

    print_header("Archiving")
    print()
    progress = ProgressLine(stats)
    print(Colors.HIDE_CURSOR, end="", flush=True)
    progress.start()

    failed = False
    try:
        with archive, open(output, "wb") as f:
            for chunk in archive:
                f.write(chunk)
    except BackupCancelled:
        interrupted = True
    except (BackupError, OSError) as e:
        failed = True
        print_error(f"Backup failed: {e}")
        logger.error("Backup failed: %s", e)
    finally:
        progress.stop()
        print(Colors.SHOW_CURSOR, end="", flush=True)

    if failed or interrupted:
        # A truncated ZIP is not a backup
        with contextlib.suppress(OSError):
            output.unlink()
        if interrupted:
            print_summary(stats, str(output), interrupted=True)
            print_warning(f"Removed incomplete archive {output}")
        return 1

    print_summary(stats, str(output))
    logger.info("Backup completed: %s", stats.to_dict())
    return 1 if stats.items_failed > 0 else 0


def run_list(args: argparse.Namespace, config: Config) -> int:
    """Print one level of the tree, or the versions of a single item."""
    from .display import print_error, print_header, print_nodes, print_versions

    connected = connect(config)
    if connected is None:
        return 1
    client, token = connected

    try:
        if args.item:
            if not args.project:
                print_error("--item needs --project")
                return 2
            item = client.get_item(args.project, args.item, token)
            print_header(f"Versions of {item.name}")
            print_versions(client.list_item_versions(args.project, args.item, token))
            return 0
        if args.project:
            if not args.hub and not args.folder:
                print_error("--project needs --hub (top level) or --folder")
                return 2
            print_header(f"Contents of {args.folder or args.project}")
            nodes = client.list_children(args.hub, args.project, args.folder, token)
        elif args.hub:
            print_header(f"Projects in {args.hub}")
            nodes = client.list_projects(args.hub, token)
        else:
            print_header("Hubs")
            nodes = client.list_hubs(token)
    except BackupError as e:
        print_error(str(e))
        return 1

    print_nodes(nodes)
    return 0


def run_auth(config: Config) -> int:
    """
    Run the three-legged OAuth flow and store the tokens in ``.env``.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    from .client import DataManagementClient
    from .display import Colors, ask_yes_no, print_error, print_header, print_info, print_success

    print()
    print_header("APS OAuth Setup")
    print()

    if not (config.client_id and config.client_secret and config.callback_url):
        print_error("APS_CLIENT_ID, APS_CLIENT_SECRET and APS_CALLBACK_URL are required.")
        print_info("Create an app at https://aps.autodesk.com/myapps and add them to .env")
        return 1

    client = DataManagementClient(config)

    print(f"  {Colors.BOLD}1.{Colors.RESET} Open this URL in your browser:")
    print()
    print(f"     {Colors.CYAN}{client.authorization_url()}{Colors.RESET}")
    print()
    print(f"  {Colors.BOLD}2.{Colors.RESET} Sign in and allow access")
    print(f"  {Colors.BOLD}3.{Colors.RESET} Copy the 'code' parameter from the callback URL")
    print()

    try:
        code = input(f"  {Colors.CYAN}?{Colors.RESET} Enter the authorization code: ").strip()
    except (EOFError, KeyboardInterrupt):
        code = ""
    if not code:
        print_error("Authorization code is required.")
        return 1

    try:
        tokens = client.exchange_code(code)
    except BackupError as e:
        print_error(f"Failed to complete OAuth flow: {e}")
        return 1

    values = {
        "APS_ACCESS_TOKEN": tokens.get("access_token", ""),
        "APS_REFRESH_TOKEN": tokens.get("refresh_token", ""),
    }
    if not values["APS_ACCESS_TOKEN"]:
        print_error("No access token received.")
        return 1

    print_success("Authentication successful!")
    print()

    env_path = Path.cwd() / ".env"
    if ask_yes_no(f"Save tokens to {env_path}?", True):
        _update_env_file(env_path, values)
        print_success(f"Updated {env_path}")
    else:
        for key, value in values.items():
            print(f"  {Colors.BOLD}{key}{Colors.RESET}=\"{value}\"")
    return 0


def _update_env_file(env_path: Path, values: dict[str, str]) -> None:
    """Update or create .env file, replacing existing keys in place."""
    lines: list[str] = []
    keys_found: set[str] = set()

    if env_path.exists():
        for line in env_path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            for key, value in values.items():
                if stripped.startswith(f"{key}=") or stripped.startswith(f"{key} ="):
                    lines.append(f'{key}="{value}"')
                    keys_found.add(key)
                    break
            else:
                lines.append(line)

    missing = [key for key in values if key not in keys_found]
    if missing:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append("# APS OAuth tokens")
        for key in missing:
            lines.append(f'{key}="{values[key]}"')

    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aps-backup",
        description="Back up Autodesk Platform Services hubs and projects into a ZIP archive",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("auth", help="Obtain access and refresh tokens via OAuth")

    backup = subparsers.add_parser("backup", help="Run backup (default if no command specified)")
    backup.add_argument("-o", "--output", default="backup.zip", help="Archive path (default: backup.zip)")
    backup.add_argument("--hub", help="Hub id for a single-project backup")
    backup.add_argument("--project", help="Project id for a single-project backup")

    ls = subparsers.add_parser("ls", help="List hubs, projects or folder contents")
    ls.add_argument("--hub", help="List projects of this hub")
    ls.add_argument("--project", help="List top-level contents of this project")
    ls.add_argument("--folder", help="List contents of this folder (with --project)")
    ls.add_argument("--item", help="List versions of this item (with --project)")

    return parser


def cli_main(argv: list[str] | None = None) -> int:
    """CLI entry point with argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env()

    if args.command == "auth":
        return run_auth(config)
    if args.command == "ls":
        return run_list(args, config)
    if args.command is None:
        args = parser.parse_args(["backup"])
    return run_backup(args, config)


if __name__ == "__main__":
    sys.exit(cli_main())
