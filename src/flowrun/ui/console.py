"""Console output formatting utilities for flowrun."""

from __future__ import annotations

import sys
from typing import Dict, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-node progress lines
        """
        self.debug = debug
        self.quiet = quiet

    def _progress(self, line: str) -> None:
        if not self.quiet:
            print(line)

    def print_run_started(
        self,
        workflow: str,
        node_count: int,
        file_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Workflow: {workflow}")
        print(f"Nodes: {node_count}")
        print(f"Files: {file_count}")
        print()

    def print_node_submitted(self, node_id: int, queue: str, command: str) -> None:
        self._progress(f"SUBMIT [{node_id}] ({queue}) {command}")

    def print_node_deferred(self, node_id: int, reason: str) -> None:
        self.print_debug(f"node {node_id} deferred: {reason}")

    def print_node_complete(self, node_id: int) -> None:
        self._progress(f"COMPLETE [{node_id}]")

    def print_node_failed(
        self,
        node_id: int,
        reason: str,
        exit_code: Optional[int] = None,
        attempt: Optional[int] = None,
        will_retry: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            node_id: Failed node
            reason: Failure reason/error message
            exit_code: Optional exit code
            attempt: Attempt number that failed
            will_retry: If True, the node goes back to waiting
        """
        suffix = " (retrying)" if will_retry else ""
        print(f"NODE FAILED [{node_id}]{suffix}")
        if attempt is not None:
            print(f"Attempt: {attempt}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_node_aborted(self, node_id: int, cancelled: bool) -> None:
        how = "cancelled" if cancelled else "abandoned"
        print(f"NODE ABORTED [{node_id}] ({how})")

    def print_file_deleted(self, path: str) -> None:
        self._progress(f"DELETED {path}")

    def print_file_delete_failed(self, path: str, reason: str) -> None:
        print(f"WARNING: could not delete {path}: {reason}", file=sys.stderr)

    def print_results(self, status: str, nodes: Dict[int, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print(f"RESULT: {status.upper()}")
        print("=" * 40)
        for node_id, state in sorted(nodes.items()):
            print(f"  [{node_id}] {state.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_worker_started(
        self,
        worker_id: str,
        redis_url: str,
        queue: str,
    ) -> None:
        """Print worker start information."""
        print("\nWORKER STARTED")
        print(f"Worker ID: {worker_id}")
        print(f"Redis: {redis_url}")
        print(f"Queue: {queue}")
        print()

    def print_job_claimed(self, job_id: str, node_id: int) -> None:
        print("\nJOB CLAIMED")
        print(f"Job: {job_id}")
        print(f"Node: {node_id}")

    def print_execution_complete(
        self,
        status: str,
        duration: Optional[float] = None,
    ) -> None:
        """Print execution completion message."""
        print("\nEXECUTION COMPLETE")
        print(f"Status: {status}")
        if duration is not None:
            print(f"Duration: {duration:.1f}s")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_warning(self, message: str) -> None:
        print(f"WARNING: {message}", file=sys.stderr)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
