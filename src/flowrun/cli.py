# cli.py
from __future__ import annotations

import importlib
import socket
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import click

from . import __version__
from .bundle import bundle_workflow
from .config import GC_MODES, QUEUES, EngineConfig
from .dsl import load_workflow
from .engine import clean_workflow, run_workflow
from .errors import FlowError
from .hooks import Hook, HookRegistry
from .ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "flowrun_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None, prog: str) -> Path:
    """
    Resolve the workflow file from the argument or the current directory.

    Raises:
        SystemExit: If no single workflow file can be found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion=f"Run \"{prog} --help\" for help with options.",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            f"No workflow specified and \"./{DEFAULT_WORKFLOW}\" could not be found.",
            suggestion=f"Run \"{prog} --help\" for help with options.",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
        )
        sys.exit(1)

    return workflow_files[0]


def load_hook(spec: str) -> Hook:
    """Instantiate a hook from 'package.module:ClassName'."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter(f"expected module:Class, got {spec!r}", param_hint="--hook")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import {module_name}: {e}", param_hint="--hook") from e
    cls = getattr(module, attr, None)
    if cls is None:
        raise click.BadParameter(f"{module_name} has no attribute {attr}", param_hint="--hook")
    hook = cls()
    if not isinstance(hook, Hook):
        raise click.BadParameter(f"{spec} is not a flowrun Hook", param_hint="--hook")
    return hook


def parse_hook_args(pairs: tuple[str, ...]) -> dict:
    out = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--hook-arg")
        out[key] = value
    return out


def default_journal(config: EngineConfig, workflow_path: Path) -> str:
    return str(Path(config.workdir) / ".flowrun" / f"{workflow_path.stem}.db")


def _prog(ctx: click.Context) -> str:
    return ctx.find_root().info_name or "flowrun"


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print failures and the final result")
@click.version_option(__version__, prog_name="flowrun")
@click.pass_context
def cli(ctx, debug, quiet):
    """flowrun: file-driven workflow engine."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("workflow", required=False)
@click.option("--retries", type=int, default=None, help="Retries per node after its first failure")
@click.option("--local-jobs", type=int, default=None, help="Concurrent local jobs (default: cpu count - 1)")
@click.option("--redis-url", default=None, help="Enable the remote queue backend")
@click.option("--queue-name", default=None, help="Redis list used by the remote queue")
@click.option("--default-queue", type=click.Choice(QUEUES), default=None, help="Queue for nodes without one")
@click.option("--gc", type=click.Choice(GC_MODES), default=None, help="Garbage collection of intermediate files")
@click.option("--journal", default=None, help="Run-state database (default: .flowrun/<workflow>.db)")
@click.option("--no-journal", is_flag=True, default=False, help="Do not persist run state")
@click.option("--resume", is_flag=True, default=False, help="Skip nodes completed by a previous run")
@click.option("--poll-interval", type=float, default=None, help="Seconds to wait for completions per loop")
@click.option("--stall-timeout", type=float, default=None, help="Seconds to wait before giving up on stuck nodes")
@click.option("--workdir", default=None, help="Directory commands run in and files live in")
@click.option("--hook", "hook_specs", multiple=True, help="Register a hook (module:Class); order matters")
@click.option("--hook-arg", "hook_args", multiple=True, help="KEY=VALUE passed to every hook's create()")
@click.pass_context
def run(
    ctx,
    workflow,
    retries,
    local_jobs,
    redis_url,
    queue_name,
    default_queue,
    gc,
    journal,
    no_journal,
    resume,
    poll_interval,
    stall_timeout,
    workdir,
    hook_specs,
    hook_args,
):
    """Run a workflow."""
    console = get_console()
    prog = _prog(ctx)
    workflow_path = discover_workflow(workflow, prog)

    try:
        config = EngineConfig.from_env().override(
            retry_limit=retries,
            max_local_jobs=local_jobs,
            redis_url=redis_url,
            queue_name=queue_name,
            default_queue=default_queue,
            gc=gc,
            poll_interval=poll_interval,
            stall_timeout=stall_timeout,
            workdir=workdir,
            journal_path=journal,
            hook_args=parse_hook_args(hook_args) or None,
        )
        if no_journal:
            config = replace(config, journal_path=None)
        elif not config.journal_path:
            config = replace(config, journal_path=default_journal(config, workflow_path))
        if resume and not config.journal_path:
            raise click.UsageError("--resume needs a journal")

        hooks = HookRegistry(load_hook(spec) for spec in hook_specs)

        def load():
            dag = load_workflow(workflow_path)
            console.print_run_started(
                workflow=workflow_path.name,
                node_count=len(dag.nodes),
                file_count=len(dag.files),
            )
            return dag

        summary = run_workflow(
            load,
            config=config,
            hooks=hooks,
            resume=resume,
            install_signals=True,
        )

        console.print_results(summary.status, summary.nodes)
        if summary.reason:
            console.print_info(summary.reason)
        if summary.status == "abort":
            sys.exit(130 if (summary.reason or "").startswith("signal") else 1)
        sys.exit(summary.exit_code)

    except (click.UsageError, click.BadParameter):
        raise
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except FlowError as e:
        console.print_error(e.kind, e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.argument("workflow", required=False)
@click.option("--workdir", default=None, help="Directory the workflow's files live in")
@click.option("--journal", default=None, help="Run-state database to remove")
@click.option("--hook", "hook_specs", multiple=True, help="Register a hook (module:Class); order matters")
@click.pass_context
def clean(ctx, workflow, workdir, journal, hook_specs):
    """Delete every file the workflow produces."""
    console = get_console()
    workflow_path = discover_workflow(workflow, _prog(ctx))

    try:
        config = EngineConfig.from_env().override(workdir=workdir, journal_path=journal)
        if not config.journal_path:
            config = replace(config, journal_path=default_journal(config, workflow_path))
        hooks = HookRegistry(load_hook(spec) for spec in hook_specs)
        removed = clean_workflow(lambda: load_workflow(workflow_path), config=config, hooks=hooks)
        console.print_info(f"Removed {len(removed)} file(s).")
    except (click.UsageError, click.BadParameter):
        raise
    except FlowError as e:
        console.print_error(e.kind, e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.argument("workflow", required=False)
@click.option("-b", "--bundle-dir", default=None, help="Create portable bundle of workflow in <directory>")
@click.option("-i", "--analyze-exec", "mode", flag_value="analysis", help="Show the pre-execution analysis of the workflow")
@click.option("-I", "--show-input", "mode", flag_value="inputs", help="Show input files")
@click.option("-O", "--show-output", "mode", flag_value="outputs", help="Show output files")
@click.option("-k", "--syntax-check", is_flag=True, default=False, help="Syntax check")
@click.pass_context
def analyze(ctx, workflow, bundle_dir, mode, syntax_check):
    """Inspect a workflow without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow, _prog(ctx))

    try:
        dag = load_workflow(workflow_path)
    except FlowError as e:
        console.print_error(
            "Failed to load workflow",
            f"couldn't load {workflow_path}",
            details=[str(e)],
        )
        sys.exit(1)

    if syntax_check:
        click.echo(f"{workflow_path}: Syntax OK.")
        return

    if bundle_dir:
        pairs = bundle_workflow(
            dag,
            bundle_dir,
            workflow_name=workflow_path.name,
            source_root=workflow_path.parent,
        )
        for original, bundled in pairs:
            click.echo(f"{original}\t{bundled}")
        return

    if mode == "inputs":
        for f in dag.input_files():
            click.echo(f.path)
    elif mode == "outputs":
        for f in dag.output_files():
            click.echo(f.path)
    elif mode == "analysis":
        for key, value in dag.summary().items():
            click.echo(f"{key}\t{value}")


@cli.command()
@click.option("--redis-url", required=True, help="Redis URL (e.g., redis://localhost:6379/0)")
@click.option("--worker-id", default=None, help="Unique worker identifier (defaults to hostname)")
@click.option("--queue-name", default=None, help="Redis list to consume")
@click.option("--poll-interval", default=5, type=int, help="Seconds to block waiting for a job")
@click.option("--workdir", default=None, help="Root for task working directories")
@click.pass_context
def worker(ctx, redis_url, worker_id, queue_name, poll_interval, workdir):
    """Run a worker for the remote queue backend."""
    from .worker import run_worker

    console = get_console()
    config = EngineConfig.from_env()

    if not worker_id:
        worker_id = socket.gethostname()

    try:
        run_worker(redis_url, worker_id, queue_name or config.queue_name, poll_interval, workdir)
    except KeyboardInterrupt:
        console.print_info("\nWorker stopped by user")
        sys.exit(0)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point; usage errors exit with status 1."""
    try:
        cli.main(args=argv, prog_name="flowrun", standalone_mode=False)
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(1)


if __name__ == "__main__":
    main()
