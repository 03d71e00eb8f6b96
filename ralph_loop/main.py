import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from ralph_loop import __version__
from ralph_loop.agent.autonomous_loop import LoopController, LoopPhase
from ralph_loop.agent.runner import AgentRunner
from ralph_loop.autonomous.circuit_breaker import CircuitBreaker
from ralph_loop.autonomous.status import LoopStatus, StatusDisplay, StatusStore
from ralph_loop.config.config import MAX_TIMEOUT_MINUTES, MIN_TIMEOUT_MINUTES, LoopConfig
from ralph_loop.config.loader import load_config
from ralph_loop.ui.console import get_console
from ralph_loop.utils.exceptions import RalphError, StateFileError
from ralph_loop.utils.log_setup import setup_logging
from ralph_loop.utils.paths import read_json

logger = logging.getLogger(__name__)

console = get_console()

_RESULT_STATUS = {
    LoopPhase.COMPLETED: LoopStatus.COMPLETED,
    LoopPhase.STOPPED: LoopStatus.STOPPED,
    LoopPhase.CIRCUIT_OPEN: LoopStatus.CIRCUIT_OPEN,
}


def _load_breaker(config: LoopConfig) -> CircuitBreaker:
    return CircuitBreaker.load(
        config.path(config.circuit_state_file),
        no_progress_threshold=config.no_progress_threshold,
        error_threshold=config.error_threshold,
    )


def show_status(config: LoopConfig, display: StatusDisplay) -> None:
    """Print the status file and the breaker file without running the loop."""
    status_path = config.path(config.status_file)
    display.show_status(StatusStore(status_path).read(), status_path)

    breaker_state = read_json(config.path(config.circuit_state_file))
    if breaker_state is not None:
        display.show_circuit_breaker(breaker_state)


def run_loop(config: LoopConfig, display: StatusDisplay) -> int:
    log_file = setup_logging(config.path(config.log_dir), verbose=config.verbose)

    errors = config.validate_for_run()
    if errors:
        for error in errors:
            console.print(f"[error]Error: {error}[/error]")
        return 1

    runner = AgentRunner(
        command=config.full_agent_command(),
        timeout_seconds=config.timeout_seconds,
        log_dir=config.path(config.log_dir),
        prompt_flag=config.prompt_flag,
        cwd=config.cwd,
    )
    runner.check_available()

    console.print("\n[bold]Ralph autonomous loop[/bold]")
    console.print(f"  Prompt: {config.prompt_file}")
    console.print(f"  Timeout: {config.timeout_minutes}m per iteration")
    console.print(f"  Log: {log_file}\n")

    controller = LoopController(config, runner=runner)
    result = controller.run()

    display.show_completion(_RESULT_STATUS[result.phase], result.message)
    console.print(f"  Loops run: {result.loops_run}")
    return 0


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--cwd",
    "-c",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Project directory (default: current directory)",
)
@click.option(
    "--prompt",
    "-p",
    "prompt_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Prompt file (default: .kiro/PROMPT.md)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show detailed progress updates",
)
@click.option(
    "--timeout",
    "-t",
    type=click.IntRange(MIN_TIMEOUT_MINUTES, MAX_TIMEOUT_MINUTES),
    help="Execution timeout per iteration in minutes (1-120, default: 15)",
)
@click.option(
    "--agent",
    "-a",
    "agent_name",
    help="Use a specific agent profile",
)
@click.option(
    "--trust-all-tools/--no-trust-all-tools",
    default=None,
    help="Trust all agent tools without confirmation",
)
@click.option(
    "--status",
    "-s",
    "show_status_flag",
    is_flag=True,
    help="Show current status and exit",
)
@click.option(
    "--circuit-status",
    is_flag=True,
    help="Show circuit breaker status and exit",
)
@click.option(
    "--reset-circuit",
    is_flag=True,
    help="Reset the circuit breaker to CLOSED and exit",
)
@click.option(
    "--half-open-circuit",
    is_flag=True,
    help="Put the circuit breaker in HALF_OPEN monitoring and exit",
)
@click.version_option(__version__, "--version", prog_name="ralph")
@click.pass_context
def cli(
    ctx: click.Context,
    cwd: Path | None,
    prompt_file: Path | None,
    verbose: bool,
    timeout: int | None,
    agent_name: str | None,
    trust_all_tools: bool | None,
    show_status_flag: bool,
    circuit_status: bool,
    reset_circuit: bool,
    half_open_circuit: bool,
):
    """Ralph - autonomous development loop for a non-interactive coding agent.

    Examples:
        ralph                        # Start autonomous loop
        ralph --timeout 30           # 30-minute timeout per loop
        ralph -a my-agent            # Use a specific agent
        ralph --status               # Show loop and breaker status
        ralph --reset-circuit        # Close the circuit breaker
    """
    load_dotenv()

    try:
        config = load_config(
            cwd=cwd,
            prompt_file=prompt_file,
            timeout_minutes=timeout,
            verbose=True if verbose else None,
            agent_name=agent_name,
            trust_all_tools=trust_all_tools,
        )
    except RalphError as e:
        console.print(f"[error]Configuration Error: {e.message}[/error]")
        ctx.exit(1)

    display = StatusDisplay(console)

    try:
        if show_status_flag:
            show_status(config, display)
            ctx.exit(0)

        if circuit_status:
            display.show_circuit_breaker(_load_breaker(config).to_dict())
            ctx.exit(0)

        if reset_circuit:
            _load_breaker(config).reset("Manual reset")
            console.print("[success]Circuit breaker reset to CLOSED[/success]")
            ctx.exit(0)

        if half_open_circuit:
            _load_breaker(config).half_open("Manual half-open")
            console.print("[warning]Circuit breaker set to HALF_OPEN[/warning]")
            ctx.exit(0)

        ctx.exit(run_loop(config, display))
    except StateFileError as e:
        console.print(f"[error]{e.message}[/error]")
        ctx.exit(1)
    except RalphError as e:
        console.print(f"[error]Error: {e.message}[/error]")
        logger.error(f"Startup failed: {e.to_dict()}")
        ctx.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
