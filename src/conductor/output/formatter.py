"""Output formatting using Rich for terminal output."""

import difflib
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

from conductor.orchestration.models import ExecutionState, ExecutionStatus
from conductor.orchestration.stuck_detector import StuckDetection
from conductor.patching import PatchResult

CONDUCTOR_THEME = Theme(
    {
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "worker": "cyan",
        "metadata": "dim",
    }
)

STATUS_STYLES = {
    ExecutionStatus.COMPLETED: "success",
    ExecutionStatus.AWAITING_APPROVAL: "warning",
    ExecutionStatus.FAILED: "error",
    ExecutionStatus.IN_PROGRESS: "info",
    ExecutionStatus.PENDING: "metadata",
}


class OutputFormatter:
    """Handles all output formatting for conductor."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(theme=CONDUCTOR_THEME, force_terminal=color, no_color=not color)
        self.verbose = verbose

    def print_error(self, message: str, source: str | None = None) -> None:
        prefix = escape(f"[{source}] ") if source else ""
        self.console.print(f"[error]{prefix}Error: {escape(message)}[/error]", markup=True, highlight=False)

    def print_success(self, message: str) -> None:
        self.console.print(f"[success]{message}[/success]")

    def print_info(self, message: str) -> None:
        self.console.print(f"[info]{message}[/info]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[warning]{message}[/warning]")

    def print_patch_result(self, file_name: str, original: str, result: PatchResult, dry_run: bool) -> None:
        """Print a unified diff for one patched file."""
        diff = "".join(
            difflib.unified_diff(
                original.splitlines(keepends=True),
                result.content.splitlines(keepends=True),
                fromfile=f"a/{file_name}",
                tofile=f"b/{file_name}",
            )
        )
        self.console.print(Syntax(diff or "(no textual change)", "diff", theme="ansi_dark"))

        action = "Would replace" if dry_run else "Replaced"
        self.console.print(
            f"[success]{action} {result.match_count} occurrence(s) using {result.strategy_used}[/success]"
        )

    def print_detection(self, detection: StuckDetection, line_number: int | None = None) -> None:
        """Print a stuck detector verdict."""
        if not detection.is_stuck:
            self.print_success("No loop detected")
            return

        where = f" at line {line_number}" if line_number is not None else ""
        style = "error" if detection.pattern.is_fatal else "warning"
        self.console.print(Panel(
            f"{detection.details}\nLoop starts at call #{detection.loop_start_index}",
            title=f"[{style}]{detection.pattern.value}{where}[/{style}]",
            border_style=style,
        ))

    def print_execution(self, state: ExecutionState) -> None:
        """Print the outcome of an execution."""
        style = STATUS_STYLES[state.status]
        self.console.print(f"Execution {state.execution_id}: [{style}]{state.status.value}[/{style}]")
        if state.termination_reason:
            self.console.print(f"[{style}]{state.termination_reason}[/{style}]")

        changes = state.all_changes()
        if changes:
            table = Table(title="Proposed Changes")
            table.add_column("Worker", style="worker")
            table.add_column("File")
            table.add_column("Confidence", justify="right")
            table.add_column("Reasoning")
            for change in changes:
                table.add_row(change.worker_id or "", change.file_name, f"{change.confidence:.2f}", change.reasoning)
            self.console.print(table)

        for error in state.file_errors:
            self.print_warning(f"{error.file_name}: {error.kind.value}: {error.message}")
        for detection in state.stuck_detections:
            self.print_warning(f"{detection['worker_id']}: {detection['pattern']}: {detection['details']}")
        if state.review_result and state.review_result.summary:
            self.console.print(Panel(state.review_result.summary, title="Review", border_style="info"))

        if self.verbose:
            for message in state.messages:
                self._print_metadata(
                    {"from": message.sender, "to": message.recipient, "kind": message.kind}
                )

    def _print_metadata(self, metadata: dict[str, Any]) -> None:
        """Print metadata in a dimmed style."""
        parts = [f"{k}={v}" for k, v in metadata.items()]
        self.console.print(f"[metadata]({', '.join(parts)})[/metadata]")


# Global formatter instance
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Get or create the global formatter instance."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter


def configure_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Replace the global formatter, e.g. once CLI flags are known."""
    global _formatter
    _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter
