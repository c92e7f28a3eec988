"""
toolwire: protocol core for a terminal AI coding assistant.

Commands: toolwire chat | compile | decode | config
"""

import importlib
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from . import __version__
from .agent import Agent
from .compiler import AstRenderer, ResponseCompiler, count_kinds
from .config import CONFIG_DIR, Config, ModelPreset
from .context_manager import ContextManager
from .decoding import get_parser
from .errors import ConfigError
from .llm import LLMAdapter
from .logger import fault_counts, setup_logger
from .rendering import (
    ACCENT, DIM, SUCCESS, TEXT, render_blocks, render_diagnostics, render_stats,
    render_tool_call, set_use_unicode,
)
from .tools import ToolRegistry

console = Console()
BANNER = (
    f"[bold {ACCENT}]toolwire[/bold {ACCENT}] "
    f"[dim]v{__version__} · AI coding assistant[/dim]"
)

SLASH_COMMANDS = {
    "/stats": "Show conversation statistics",
    "/compact": "Fold older messages into the summary",
    "/reset": "Clear the conversation",
    "/quit": "Exit",
}


def load_tools(registry: ToolRegistry, module_name: Optional[str]) -> ToolRegistry:
    """Import ``module_name`` and let its ``register_tools`` fill the registry."""
    if not module_name:
        return registry
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.ClickException(f"Cannot import tools module '{module_name}': {e}")
    register = getattr(module, "register_tools", None)
    if not callable(register):
        raise click.ClickException(f"'{module_name}' has no register_tools(registry)")
    register(registry)
    return registry


def build_agent(config: Config, registry: ToolRegistry,
                out: Optional[Console] = None) -> Agent:
    preset = config.get_active_preset()
    llm = LLMAdapter(**preset.get_llm_kwargs())
    compiler = ResponseCompiler(
        tool_specs=registry.tool_specs() or None,
        known_tools=registry.names() or None,
        shell_tool_name=config.shell_tool_name,
        shell_blocks_as_tools=config.shell_blocks_as_tools,
    )
    return Agent(
        llm=llm,
        registry=registry,
        context=ContextManager(**config.context_kwargs()),
        compiler=compiler,
        console=out or console,
        max_iterations=config.max_iterations,
        stream=config.stream,
        show_tool_calls=config.show_tool_calls,
        reasoning_display=config.reasoning_display,
    )


def handle_command(command: str, agent: Agent, out: Console) -> Optional[str]:
    """Run a slash command. Returns ``"quit"`` to end the session."""
    name = command.split()[0].lower()
    if name in ("/quit", "/exit"):
        return "quit"
    if name == "/stats":
        stats = agent.get_stats()
        render_stats(out, agent.context.get_stats(), {
            "Hallucinated turns": stats["hallucinated_turns"],
            "Total tokens": f"{stats['total_tokens']:,}",
            "Context used": stats["context_used"],
            "Model": stats["model"],
            "Faults logged": ", ".join(f"{kind} {count}" for kind, count
                                       in sorted(fault_counts().items())) or "none",
        })
    elif name == "/compact":
        folded = agent.compact_conversation()
        if folded:
            out.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Compacted {folded} messages")
        else:
            out.print(f"  [{DIM}]Nothing to compact[/{DIM}]")
    elif name == "/reset":
        agent.reset()
        out.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Conversation cleared")
    else:
        out.print(f"  [{DIM}]Unknown command {name}. Available:[/{DIM}]")
        for cmd, desc in SLASH_COMMANDS.items():
            out.print(f"    [bold {TEXT}]{cmd}[/bold {TEXT}] [{DIM}]{desc}[/{DIM}]")
    return None


def _read_input(path: Optional[str]) -> str:
    if path and path != "-":
        return Path(path).read_text(encoding="utf-8")
    return sys.stdin.read()


@click.group(invoke_without_command=True)
@click.option("--ascii", "ascii_icons", is_flag=True,
              help="ASCII icons instead of Unicode symbols")
@click.pass_context
def cli(ctx, ascii_icons):
    """toolwire: AI coding assistant for your terminal."""
    set_use_unicode(not ascii_icons and "utf" in (console.encoding or "").lower())
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.option("--model", "-m", default=None, help="Model preset name or model id")
@click.option("--api-key", "-k", default=None, help="API key override")
@click.option("--api-base", "-b", default=None, help="API base override")
@click.option("--project-dir", "-d", default=".", help="Project directory")
@click.option("--tools", "tools_module", default=None,
              help="Module exposing register_tools(registry)")
@click.option("--no-stream", is_flag=True, help="Disable streaming output")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def chat(model, api_key, api_base, project_dir, tools_module, no_stream, verbose):
    """Start an interactive session."""
    console.print(BANNER)
    config = Config.load(project_dir)

    if model:
        if model in config.models:
            config.active_model = model
        else:
            config.models["_cli"] = ModelPreset(
                name="_cli",
                provider="openai",
                model=model,
                api_base=api_base,
                api_key=api_key or "not-needed",
            )
            config.active_model = "_cli"
    if no_stream:
        config.stream = False
    if verbose:
        config.verbose = True

    setup_logger(verbose=config.verbose)

    preset = config.get_active_preset()
    if api_key:
        preset.api_key = api_key
    if api_base:
        preset.api_base = api_base

    project_root = Path(config.project_root).resolve()
    if not project_root.is_dir():
        console.print(f"[red]Error: '{project_dir}' is not a valid directory.[/red]")
        sys.exit(1)

    registry = load_tools(ToolRegistry(), tools_module)
    agent = build_agent(config, registry)

    console.print(f"  [{DIM}]model[/{DIM}] [bold {TEXT}]{preset.model}[/bold {TEXT}]  "
                  f"[{DIM}]tools[/{DIM}] {len(registry)}  "
                  f"[{DIM}]type /quit to exit[/{DIM}]")

    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    session = PromptSession(history=FileHistory(str(CONFIG_DIR / "history.txt")))

    while True:
        try:
            user_input = session.prompt("> ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye![/dim]")
            break

        if not user_input:
            continue

        if user_input.startswith("/"):
            if handle_command(user_input, agent, console) == "quit":
                break
            continue

        try:
            agent.chat(user_input)
        except KeyboardInterrupt:
            console.print("\n[yellow]  Interrupted.[/yellow]")
        except Exception as error:
            console.print(f"\n[red]  Error: {error}[/red]")
            if config.verbose:
                import traceback

                console.print(f"[dim]{traceback.format_exc()}[/dim]")


@cli.command("compile")
@click.argument("file", required=False)
@click.option("--no-shell-tools", is_flag=True, help="Keep shell fences as code")
def compile_cmd(file, no_shell_tools):
    """Compile a saved model turn and show blocks and diagnostics."""
    config = Config.load()
    setup_logger(verbose=config.verbose, log_file=False)
    compiler = ResponseCompiler(
        shell_tool_name=config.shell_tool_name,
        shell_blocks_as_tools=config.shell_blocks_as_tools and not no_shell_tools,
    )
    result = compiler.compile(_read_input(file))
    render_blocks(console, AstRenderer().render(result.ast))
    console.print()
    render_diagnostics(console, result.diagnostics)
    calls = result.tool_calls()
    nodes = ", ".join(f"{count} {kind}" for kind, count in count_kinds(result.ast).items())
    console.print(f"\n  [{DIM}]{len(calls)} tool call(s); nodes: {nodes or 'none'}"
                  f"{', degraded' if result.degraded else ''}[/{DIM}]")


@cli.command()
@click.argument("file", required=False)
@click.option("--chunk-size", "-c", default=16, show_default=True, type=click.IntRange(min=1),
              help="Characters per streamed delta")
@click.option("--model", "-m", default=None, help="Model id used to pick the parser")
def decode(file, chunk_size, model):
    """Replay a saved turn through the streaming parser."""
    config = Config.load()
    setup_logger(verbose=config.verbose, log_file=False)
    parser = get_parser(model or config.get_active_preset().model)
    text = _read_input(file)

    visible_parts = []
    calls = []
    for start in range(0, len(text), chunk_size):
        found, visible = parser.feed(text[start:start + chunk_size])
        visible_parts.append(visible)
        calls.extend(found)
    found, visible = parser.finish()
    visible_parts.append(visible)
    calls.extend(found)

    console.print("".join(visible_parts), markup=False, highlight=False)
    reasoning = parser.drain_reasoning()
    if reasoning:
        console.print(f"\n  [{DIM}]reasoning: {len(reasoning)} chars[/{DIM}]")
    for index, call in enumerate(calls, 1):
        render_tool_call(console, call.tool_id, call.parameters, index, len(calls))
    console.print(f"\n  [{DIM}]parser={parser.name} stats={parser.accumulator.get_stats()}[/{DIM}]")


@cli.command("config")
@click.option("--project-dir", "-d", default=".", help="Project directory")
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE",
              help="Change a setting and save the config file")
def config_cmd(project_dir, assignments):
    """Show or change configuration."""
    cfg = Config.load(project_dir)
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got '{assignment}'", param_hint="--set")
        try:
            cfg.set_value(key.strip(), value.strip())
        except ConfigError as e:
            raise click.ClickException(str(e))
    if assignments:
        cfg.save()
        console.print(f"  [{SUCCESS}]✓[/{SUCCESS}] Saved {cfg.source}")

    for key, value in cfg.summary().items():
        console.print(f"  [{DIM}]{key:<14}[/{DIM}] {value}")
    modified = cfg.get_config_diff()["modified"]
    if modified:
        console.print(f"\n  [{ACCENT}]Changed from defaults[/{ACCENT}]")
        for key, entry in modified.items():
            console.print(f"  [{DIM}]{key:<30}[/{DIM}] {entry['current']}")


if __name__ == "__main__":
    cli()
