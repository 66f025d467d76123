from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import ReductionKind, load_settings
from .errors import ReducerError, UsageError
from .reduce import run_reduction
from .resume import has_marker, iter_steps, latest_any_step, latest_successful_step

app = typer.Typer(help="Shader test-case reducer")
console = Console()

FRAGMENT_SHADER_ARGUMENT = typer.Argument(..., help="Path of fragment shader to be reduced.")
REDUCTION_KIND_ARGUMENT = typer.Argument(
    ...,
    help="One of: " + ", ".join(kind.value for kind in ReductionKind),
)
REFERENCE_IMAGE_OPTION = typer.Option(
    None, "--reference-image", help="Path to reference image for comparisons."
)
THRESHOLD_OPTION = typer.Option(None, "--threshold", help="Threshold for histogram differencing.")
TIMEOUT_OPTION = typer.Option(None, "--timeout", help="Seconds allowed for one render.")
MAX_STEPS_OPTION = typer.Option(None, "--max-steps", help="Maximum number of reduction steps.")
RETRY_LIMIT_OPTION = typer.Option(
    None, "--retry-limit", help="Retries of a server job before giving up on it."
)
VERBOSE_OPTION = typer.Option(False, "--verbose")
SKIP_RENDER_OPTION = typer.Option(
    False, "--skip-render", help="Compile only; useful when reducing compile or link errors."
)
SEED_OPTION = typer.Option(None, "--seed")
ERROR_STRING_OPTION = typer.Option(
    None, "--error-string", help="String checked for containment in tool error messages."
)
SERVER_OPTION = typer.Option(None, "--server", help="Server URL to which image jobs are sent.")
TOKEN_OPTION = typer.Option(None, "--token", help="Client token, used with --server.")
OUTPUT_OPTION = typer.Option(Path("."), "--output", help="Working directory.")
REDUCE_EVERYWHERE_OPTION = typer.Option(False, "--reduce-everywhere")
STOP_ON_ERROR_OPTION = typer.Option(False, "--stop-on-error")
SWIFTSHADER_OPTION = typer.Option(False, "--swiftshader")
CONTINUE_OPTION = typer.Option(False, "--continue-previous-reduction")
NO_KEEP_REJECTED_OPTION = typer.Option(
    False, "--no-keep-rejected", help="Do not write artifacts for rejected steps."
)
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
WORK_DIR_OPTION = typer.Option(..., "--work-dir", exists=True, file_okay=False)
BASE_NAME_OPTION = typer.Option(..., "--base-name")


@app.callback()
def main() -> None:
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _flags(**values: bool) -> Dict[str, Any]:
    return {key: True for key, value in values.items() if value}


@app.command("reduce")
def reduce_cmd(
    fragment_shader: Path = FRAGMENT_SHADER_ARGUMENT,
    reduction_kind: str = REDUCTION_KIND_ARGUMENT,
    reference_image: Optional[Path] = REFERENCE_IMAGE_OPTION,
    threshold: Optional[float] = THRESHOLD_OPTION,
    timeout: Optional[int] = TIMEOUT_OPTION,
    max_steps: Optional[int] = MAX_STEPS_OPTION,
    retry_limit: Optional[int] = RETRY_LIMIT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    skip_render: bool = SKIP_RENDER_OPTION,
    seed: Optional[int] = SEED_OPTION,
    error_string: Optional[str] = ERROR_STRING_OPTION,
    server: Optional[str] = SERVER_OPTION,
    token: Optional[str] = TOKEN_OPTION,
    output: Path = OUTPUT_OPTION,
    reduce_everywhere: bool = REDUCE_EVERYWHERE_OPTION,
    stop_on_error: bool = STOP_ON_ERROR_OPTION,
    swiftshader: bool = SWIFTSHADER_OPTION,
    continue_previous_reduction: bool = CONTINUE_OPTION,
    no_keep_rejected: bool = NO_KEEP_REJECTED_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    _configure_logging(verbose)
    try:
        settings = load_settings(
            config,
            reduction_kind=ReductionKind.parse(reduction_kind),
            reference_image=reference_image,
            threshold=threshold,
            timeout=timeout,
            max_steps=max_steps,
            retry_limit=retry_limit,
            seed=seed,
            error_string=error_string,
            server=server,
            token=token,
            **_flags(
                verbose=verbose,
                skip_render=skip_render,
                reduce_everywhere=reduce_everywhere,
                stop_on_error=stop_on_error,
                swiftshader=swiftshader,
                continue_previous_reduction=continue_previous_reduction,
            ),
        )
        if no_keep_rejected:
            settings = settings.model_copy(update={"keep_rejected": False})
        result = run_reduction(fragment_shader, settings, output)
    except UsageError as exc:
        console.print(f"[red]usage error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    except ReducerError as exc:
        console.print(f"[red]reduction failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    table = Table(title="Reduction Summary")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("reason", result.reason.value)
    table.add_row("first_step", str(result.first_step))
    table.add_row("steps_taken", str(result.steps_taken))
    table.add_row("seed", str(settings.seed))
    table.add_row("final", result.final_artifact.path)
    console.print(table)


@app.command("status")
def status_cmd(work_dir: Path = WORK_DIR_OPTION, base_name: str = BASE_NAME_OPTION) -> None:
    steps = list(iter_steps(work_dir, base_name))
    counts: Dict[str, int] = {}
    for _, outcome, _ in steps:
        counts[outcome.value] = counts.get(outcome.value, 0) + 1
    console.print(
        {
            "in_progress": has_marker(work_dir),
            "latest_success": latest_successful_step(work_dir, base_name),
            "latest_any": latest_any_step(work_dir, base_name),
            "counts": counts,
        }
    )
