"""Terminal display and UI components for APS Backup."""

import sys
from datetime import datetime
from threading import Event, Thread
from typing import TYPE_CHECKING

from .utils import get_terminal_width, human_size, human_time, is_tty, select_latest_version

if TYPE_CHECKING:
    from .models import BackupStats, ContainerNode, Version


class Colors:
    """ANSI color codes for terminal output."""

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"

    _disabled = False

    @classmethod
    def disable(cls) -> None:
        """Disable all color codes (for non-TTY output)."""
        if cls._disabled:
            return
        cls._disabled = True
        for attr in dir(cls):
            if not attr.startswith("_") and attr.isupper():
                setattr(cls, attr, "")

    @classmethod
    def init(cls) -> None:
        if not is_tty():
            cls.disable()


Colors.init()


def print_banner() -> None:
    """Print the application banner."""
    C = Colors.CYAN
    B = Colors.BOLD
    D = Colors.DIM
    R = Colors.RESET

    print()
    print(f"{C}╔══════════════════════════════════════════════════════════════════════╗{R}")
    print(f"{C}║{R}{B}                             APS BACKUP                               {R}{C}║{R}")
    print(f"{C}╠══════════════════════════════════════════════════════════════════════╣{R}")
    print(f"{C}║{R} {D}Hubs → Projects → Folders → Items, streamed into a single ZIP{R}        {C}║{R}")
    print(f"{C}╚══════════════════════════════════════════════════════════════════════╝{R}")
    print()


def print_header(text: str) -> None:
    """Print a section header."""
    width = min(get_terminal_width() - 4, 76)
    line_len = max(0, width - len(text) - 5)
    print(f"\n{Colors.MAGENTA}{Colors.BOLD}{'─' * 3} {text} {'─' * line_len}{Colors.RESET}")


def print_success(text: str) -> None:
    print(f"  {Colors.GREEN}✓{Colors.RESET} {text}")


def print_error(text: str) -> None:
    print(f"  {Colors.RED}✗{Colors.RESET} {text}")


def print_warning(text: str) -> None:
    print(f"  {Colors.YELLOW}⚠{Colors.RESET} {text}")


def print_info(text: str) -> None:
    print(f"  {Colors.CYAN}ℹ{Colors.RESET} {text}")


def ask_yes_no(question: str, default: bool = True) -> bool:
    """Ask a yes/no question. Returns boolean."""
    hint = "[Y/n]" if default else "[y/N]"

    while True:
        try:
            ans = input(f"  {Colors.CYAN}?{Colors.RESET} {question} {Colors.DIM}{hint}{Colors.RESET}: ")
            ans = ans.strip().lower()
        except EOFError:
            return default
        except KeyboardInterrupt:
            print()
            return default

        if not ans:
            return default
        if ans in ("y", "yes"):
            return True
        if ans in ("n", "no"):
            return False

        print_warning("Please enter 'y' or 'n'.")


def print_nodes(nodes: list["ContainerNode"]) -> None:
    """Print one level of the tree, folders first marked with a slash."""
    if not nodes:
        print_info("(empty)")
        return
    for node in nodes:
        marker = f"{Colors.BLUE}/{Colors.RESET}" if node.is_folder else " "
        print(f"    {Colors.DIM}{node.type.value:<9}{Colors.RESET} {node.name}{marker}  {Colors.DIM}{node.id}{Colors.RESET}")


def print_versions(versions: list["Version"]) -> None:
    """Print an item's versions, marking the one a backup would archive."""
    if not versions:
        print_info("(no versions)")
        return
    latest = select_latest_version(versions)
    for version in versions:
        marker = f"{Colors.GREEN}*{Colors.RESET}" if version is latest else " "
        number = "?" if version.version_number is None else version.version_number
        print(
            f"  {marker} v{number:<4} {version.name}  "
            f"{Colors.DIM}{version.last_modified or '-'}  {version.id}{Colors.RESET}"
        )


def print_summary(stats: "BackupStats", output: str, interrupted: bool = False) -> None:
    """Print the backup summary."""
    print("\n")

    if interrupted:
        print_header(f"{Colors.YELLOW}BACKUP INTERRUPTED{Colors.RESET}")
    else:
        print_header(f"{Colors.GREEN}BACKUP COMPLETE{Colors.RESET}")

    print()
    print(f"  {Colors.BOLD}Archive{Colors.RESET}")
    print(f"    File:         {output}")
    print(f"    Completed:    {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"    Duration:     {human_time(stats.elapsed_seconds)}")
    print()

    print(f"  {Colors.BOLD}Items{Colors.RESET}")
    print(f"    {Colors.GREEN}Archived:{Colors.RESET}     {stats.items_archived:,} ({human_size(stats.bytes_archived)})")
    if stats.items_failed > 0:
        print(f"    {Colors.RED}Failed:{Colors.RESET}       {stats.items_failed:,}")
    if stats.folders_skipped > 0:
        print(f"    {Colors.YELLOW}Folders skipped:{Colors.RESET} {stats.folders_skipped:,}")
    if stats.hubs_skipped > 0:
        print(f"    {Colors.MAGENTA}Hubs skipped:{Colors.RESET} {stats.hubs_skipped:,}")
    if stats.duplicate_entries > 0:
        print(f"    {Colors.YELLOW}Duplicate names:{Colors.RESET} {stats.duplicate_entries:,}")
    print()

    print(f"  {'─' * 60}")
    failures = stats.items_failed + stats.folders_skipped
    if interrupted:
        print(f"  {Colors.YELLOW}⚠{Colors.RESET} Interrupted. The archive is incomplete.")
    elif failures == 0:
        print(f"  {Colors.GREEN}✓{Colors.RESET} {Colors.BOLD}All done!{Colors.RESET} Everything backed up.")
    else:
        print(f"  {Colors.YELLOW}⚠{Colors.RESET} Completed with {failures} skipped node(s). Check log.")
    print(f"  {'─' * 60}")
    print()


class ProgressLine:
    """Single in-place status line refreshed from a background thread."""

    REFRESH_INTERVAL = 0.5

    def __init__(self, stats: "BackupStats"):
        self.stats = stats
        self.stop_event = Event()
        self.thread: Thread | None = None

    def start(self) -> None:
        self.stop_event.clear()
        self.thread = Thread(target=self._run, daemon=True)
        self.thread.start()

    def stop(self) -> None:
        self.stop_event.set()
        if self.thread:
            self.thread.join(timeout=1)
        self._render()
        if is_tty():
            sys.stdout.write("\n")
            sys.stdout.flush()

    def _run(self) -> None:
        while not self.stop_event.is_set():
            if is_tty():
                self._render()
            self.stop_event.wait(self.REFRESH_INTERVAL)

    def _render(self) -> None:
        stats = self.stats
        line = (
            f"  {Colors.CYAN}⠿{Colors.RESET} "
            f"{Colors.GREEN}{stats.items_archived:,}{Colors.RESET} archived "
            f"({human_size(stats.bytes_archived)}) | "
            f"{stats.items_failed:,} failed | "
            f"{human_time(stats.elapsed_seconds)}"
        )
        sys.stdout.write(f"\r\033[K{line}" if is_tty() else f"{line}\n")
        sys.stdout.flush()
