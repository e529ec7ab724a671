#!/usr/bin/env python3
"""
ARCANE — terminal chat and coding agent

  arcane                  — chat in the current directory
  arcane --agent          — start in agent mode (file and shell tools)
  arcane --setkey KEY     — save your Mistral API key
  arcane --workspace DIR  — use a specific directory
"""

import logging, os, shutil, sys, threading, time
from pathlib import Path
from typing import Optional

import click
import requests
from rich.console  import Console
from rich.panel    import Panel
from rich.text     import Text
from rich.table    import Table
from rich.rule     import Rule
from rich.markdown import Markdown
from rich.logging  import RichHandler
from rich          import box
from prompt_toolkit                import PromptSession
from prompt_toolkit.history        import InMemoryHistory
from prompt_toolkit.styles         import Style as PTStyle
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.auto_suggest   import AutoSuggestFromHistory
from prompt_toolkit.completion     import Completer, Completion

from arcane          import __version__
from arcane.config   import ArcaneConfig, AgentSettings, MODELS
from arcane.client   import MistralCompletionClient, fetch_model_catalog
from arcane.core     import Mode, Orchestrator, Session, TurnResult
from arcane.events   import EventChannel, ToolStarted, ToolFinished
from arcane.mentions import expand_mentions, file_suggestions

logger = logging.getLogger(__name__)

# ── Console & palette ──────────────────────────────────────────────────────────
console = Console(highlight=False)
HISTORY = InMemoryHistory()

CYAN   = "#00f5ff"
VIOLET = "#7c3aed"
GREEN  = "#00ff9f"
YELLOW = "#ffe600"
RED    = "#ff4444"
WHITE  = "#e8eaf6"
DIM    = "#3d4a5c"

def W(): return shutil.get_terminal_size().columns
def section_rule(t): console.print(Rule(title=f"[{DIM}]{t}[/]", style=DIM))
def ok(m):    console.print(f"  [{GREEN}]✔[/]  [{WHITE}]{m}[/]")
def warn(m):  console.print(f"  [{YELLOW}]⚠[/]  [{WHITE}]{m}[/]")
def err(m):   console.print(f"  [{RED}]✖[/]  [{RED}]{m}[/]")
def info(m):  console.print(f"  [{CYAN}]⬡[/]  [{DIM}]{m}[/]")

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "mistralai")

def setup_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(name)s: %(message)s", datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=debug, rich_tracebacks=debug)],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ── Shell state ────────────────────────────────────────────────────────────────

cfg: Optional[ArcaneConfig] = None
session: Optional[Session] = None
channel: Optional[EventChannel] = None


def _make_client() -> MistralCompletionClient:
    return MistralCompletionClient(
        api_key=cfg.api_key(),
        server_url=cfg.get("server_url", ""),
        temperature=float(cfg.get("temperature")),
        max_tokens=int(cfg.get("max_tokens")),
    )


def _refresh_settings(model: str = None):
    session.use_settings(AgentSettings.from_config(cfg, model=model or session.orchestrator.settings.model))


def start_session(model: str = None, mode: str = None):
    global session, channel
    channel = EventChannel(maxsize=int(cfg.get("event_queue_size")))
    orchestrator = Orchestrator(
        client=_make_client(),
        settings=AgentSettings.from_config(cfg, model=model),
        channel=channel,
        workdir=os.getcwd(),
    )
    session = Session(orchestrator, mode=mode or cfg.get("mode", "chat"))
    logger.debug("Session started model=%s mode=%s", orchestrator.settings.model, session.mode.value)


# ── Turn rendering ─────────────────────────────────────────────────────────────

TOOL_ICONS = {
    "read":"📖","write":"✏","edit":"🔧","ls":"📁",
    "glob":"🔍","grep":"🔎","bash":"⚙",
}

def render_event(event, status=None):
    if isinstance(event, ToolStarted):
        if status is not None:
            status.update(f"[{DIM}]running[/] [{WHITE}]{event.name}[/]")
    elif isinstance(event, ToolFinished):
        icon  = TOOL_ICONS.get(event.name, "⬡")
        color = RED if event.result.startswith("error") else VIOLET
        console.print(f"  [{color}]{icon}[/]  [{WHITE}]{event.summary}[/]")
        if status is not None:
            status.update(f"[{DIM}]thinking…[/]")


def _pump(worker: threading.Thread, status):
    while worker.is_alive() or len(channel):
        event = channel.get(timeout=0.1)
        if event is not None:
            render_event(event, status)


def render_result(result: TurnResult, elapsed_ms: int):
    if not result.ok:
        if result.cancelled: warn("Turn cancelled, history unchanged.")
        else: err(result.error)
        console.print(); return

    console.print()
    if result.text.strip():
        console.print(Markdown(result.text, code_theme="monokai"))
    else:
        info("(no answer)")
    if cfg.get("show_token_count", True):
        settings = session.orchestrator.settings
        budget = (settings.agent_compaction if session.mode is Mode.AGENT
                  else settings.chat_compaction).token_budget
        tc = len(result.tool_records)
        tc_str = f"  [{DIM}]· {tc} tool call{'s' if tc != 1 else ''}[/]" if tc else ""
        console.print(Text.from_markup(
            f"  [{DIM}]{result.prompt_tokens} in"
            f"  ·  {result.completion_tokens} out"
            f"  ·  ctx ~{result.context_tokens:,}/{budget:,}"
            f"  ·  {elapsed_ms}ms"
            f"  ·  {settings.model}[/]{tc_str}"
        ))
    console.print()


def run_turn(text: str) -> Optional[TurnResult]:
    message, attached = expand_mentions(text)
    for f in attached:
        console.print(f"  [{CYAN}]@[/]  [{WHITE}]{f}[/]  [{DIM}]attached[/]")

    cancel = threading.Event()
    outcome = {}

    def _work():
        try:
            outcome["result"] = session.send(message, cancel=cancel)
        except Exception as exc:
            logger.exception("Turn crashed")
            outcome["error"] = str(exc)

    worker = threading.Thread(target=_work, name="arcane-turn", daemon=True)
    t0 = time.time()
    console.print()
    with console.status(f"[{DIM}]thinking…[/]", spinner="dots") as status:
        worker.start()
        try:
            _pump(worker, status)
        except KeyboardInterrupt:
            cancel.set()
            status.update(f"[{YELLOW}]cancelling…[/]")
            while True:
                try:
                    _pump(worker, status); break
                except KeyboardInterrupt:
                    continue

    if "error" in outcome:
        err(outcome["error"]); console.print(); return None
    result = outcome["result"]
    render_result(result, int((time.time() - t0) * 1000))
    return result


# ── Commands ───────────────────────────────────────────────────────────────────

def cmd_mode(mode: Optional[Mode] = None):
    if mode is None: session.toggle_mode()
    else: session.mode = mode
    agent = session.orchestrator.agents[session.mode.value]
    detail = f"{len(agent.tools)} tools enabled" if agent.tools else "no tools"
    ok(f"[bold {agent.color}]{session.mode.value.upper()} MODE[/]  "
       f"[{DIM}]{agent.role} · {detail}[/]")
    console.print()


def cmd_reset(clear_screen: bool = False):
    session.reset()
    if clear_screen: console.clear()
    ok("Conversation cleared"); console.print()


def cmd_model(args):
    cur = session.orchestrator.settings.model
    if not args:
        info(f"Active: [bold {CYAN}]{cur}[/]  ·  change: [bold {WHITE}]/model <id>[/]"); console.print()
        return
    model = args[0]
    known = set(MODELS) | set(cfg.get("model_context") or {})
    if model not in known:
        warn(f"{model} is not in the catalog; using the default context budget")
    cfg.set("model", model)
    _refresh_settings(model)
    ok(f"[{DIM}]model[/]  [{DIM}]{cur}[/]  [{CYAN}]→[/]  [bold {WHITE}]{model}[/]"); console.print()


def cmd_models(args):
    if args and args[0] == "refresh":
        try:
            windows = fetch_model_catalog(cfg.api_key(), cfg.get("server_url", ""))
        except (requests.RequestException, RuntimeError) as e:
            err(f"Could not fetch models: {e}"); console.print(); return
        cfg.remember_context_windows(windows)
        _refresh_settings()
        ok(f"Learned context windows for {len(windows)} model(s)")

    console.print(); section_rule("MODELS"); console.print()
    cur = session.orchestrator.settings.model
    t = Table(box=box.SIMPLE_HEAD, border_style=DIM, header_style=f"bold {CYAN}",
              show_edge=False, padding=(0,2))
    t.add_column("", width=3); t.add_column("MODEL", style=f"bold {CYAN}", min_width=24)
    t.add_column("CTX", style=WHITE, justify="right", min_width=8); t.add_column("INFO", style=DIM)
    ids = list(MODELS) + sorted(set(cfg.get("model_context") or {}) - set(MODELS))
    for mid in ids:
        m = cfg.model_info(mid); active = mid == cur
        ctx = m.get("context_window")
        t.add_row(
            f"[bold {GREEN}]▶[/]" if active else "",
            f"[bold {GREEN}]{mid}[/]" if active else mid,
            f"{ctx:,}" if ctx else "?", m.get("description", ""),
        )
    console.print(t)
    info(f"Active: [bold {CYAN}]{cur}[/]  ·  [bold {WHITE}]/models refresh[/] asks the provider"); console.print()


def cmd_tokens():
    s = session; settings = s.orchestrator.settings
    budget = (settings.agent_compaction if s.mode is Mode.AGENT else settings.chat_compaction).token_budget
    console.print()
    console.print(Panel(
        f"  [{DIM}]prompt      [/][bold {CYAN}]{s.prompt_tokens:,}[/]\n"
        f"  [{DIM}]completion  [/][bold {CYAN}]{s.completion_tokens:,}[/]\n"
        f"  [{DIM}]context     [/][bold {CYAN}]~{s.context_tokens:,}[/] [{DIM}]/ {budget:,}[/]\n"
        f"  [{DIM}]messages    [/][bold {CYAN}]{len(s.history)}[/]  [{DIM}]({s.turns} turns)[/]",
        title=f"[bold {CYAN}]⬡  TOKENS[/]",
        border_style=CYAN, box=box.ROUNDED, padding=(0,2), width=min(48,W()-4),
    ))
    console.print()


def cmd_config():
    console.print()
    data = cfg.all(); api = data.pop("api_key","")
    masked = (api[:6]+"••••"+api[-4:]) if len(api)>10 else f"[{RED}]not set[/]"
    lines = [f"  [{DIM}]{'api_key':<26}[/] [bold {CYAN}]{masked}[/]"]
    groups = {
        "model":   ["model","server_url","temperature","max_tokens"],
        "agent":   ["mode","max_iterations","bash_timeout"],
        "context": ["context_tokens","trailing_keep_agent","trailing_keep_chat",
                    "tool_result_truncate_size","chars_per_token"],
        "ui":      ["show_token_count","event_queue_size"],
    }
    for group, keys in groups.items():
        lines.append(f"\n  [{DIM}]── {group} ──[/]")
        for k in keys:
            if k in data:
                lines.append(f"  [{DIM}]{k:<26}[/] [bold {CYAN}]{data[k]}[/]")
    console.print(Panel(
        "\n".join(lines), title=f"[bold {CYAN}]⬡  CONFIG v{__version__}[/]",
        subtitle=f"[{DIM}]{cfg.path()}[/]",
        border_style=CYAN, box=box.ROUNDED, padding=(0,2), width=min(82,W()-4),
    ))
    console.print()


CLIENT_KEYS = {"api_key", "server_url", "temperature", "max_tokens"}

def cmd_setconfig(key: str, val: str):
    old = cfg.get(key,"<unset>")
    try: cfg.set(key, val)
    except ValueError as e: err(str(e)); return
    ok(f"[{DIM}]{key}[/]  [{DIM}]{old}[/]  [{CYAN}]→[/]  [bold {WHITE}]{cfg.get(key)}[/]")
    if key in CLIENT_KEYS:
        try:
            session.orchestrator.client = _make_client(); ok("Client refreshed")
        except RuntimeError as e:
            err(str(e))
    _refresh_settings(cfg.get("model") if key == "model" else None)
    console.print()


def cmd_help():
    console.print()
    t = Table(box=box.SIMPLE_HEAD, border_style=DIM, header_style=f"bold {CYAN}",
              show_edge=False, padding=(0,2), min_width=70)
    t.add_column("COMMAND", style=f"bold {CYAN}", min_width=24)
    t.add_column("DESCRIPTION", style=WHITE)
    rows = [
        ("── MODE ──",""),
        ("/agent",             "Agent mode: the model may read, edit and run things"),
        ("/chat",              "Chat mode: plain conversation, no tools"),
        ("/mode",              "Toggle between chat and agent"),
        ("── SESSION ──",""),
        ("/clear",             "Clear the screen and the conversation"),
        ("/reset",             "Clear the conversation"),
        ("/tokens",            "Token usage and context estimate"),
        ("── MODELS ──",""),
        ("/model [id]",        "Show or switch the model"),
        ("/models [refresh]",  "List models; refresh asks the provider for context sizes"),
        ("── CONFIG ──",""),
        ("/config",            "View all settings"),
        ("/setconfig <k> <v>", "Change a setting (e.g. /setconfig max_iterations 20)"),
        ("── SHELL ──",""),
        ("/help",              "This table"),
        ("/exit",              "Quit"),
    ]
    for cmd, desc in rows:
        if cmd.startswith("──"): t.add_row(f"[{DIM}]{cmd}[/]","")
        else: t.add_row(cmd, desc)
    console.print(t)
    console.print()
    console.print(Text.from_markup(
        f"  [bold {CYAN}]@file[/] [{DIM}]attaches a file to your message:[/] "
        f"[bold {WHITE}]'explain @main.py'[/]  [{DIM}]or[/] [bold {WHITE}]@\"my notes.txt\"[/]\n"
        f"  [{DIM}]Ctrl+C while a turn runs cancels it.[/]"
    ))
    console.print()


# ── Prompt + dispatch ──────────────────────────────────────────────────────────

class MentionCompleter(Completer):
    """Offers workspace paths for the word being typed after ``@``."""

    def get_completions(self, document, complete_event):
        word = document.get_word_before_cursor(WORD=True)
        if not word.startswith("@") or word.startswith('@"'):
            return
        partial = word[1:]
        for path in file_suggestions(partial):
            text = f'"{path}"' if " " in path else path
            yield Completion(text, start_position=-len(partial), display=path)


def arcane_prompt() -> HTML:
    ws = Path.cwd().name or str(Path.cwd())
    tag = "agent" if session.mode is Mode.AGENT else "chat"
    return HTML(
        f'<ansibrightcyan><b>❯ arcane</b></ansibrightcyan>'
        f'<ansigray> [{ws} · {tag}] </ansigray>'
        f'<ansibrightcyan><b>❯ </b></ansibrightcyan>'
    )

ALIASES = {"/q":"/exit","/quit":"/exit","/h":"/help","/?":"/help","/cfg":"/config"}

def dispatch(raw: str) -> Optional[str]:
    parts = raw.strip().split()
    if not parts: return None
    if not parts[0].startswith("/"):
        run_turn(raw.strip()); return None

    cmd  = ALIASES.get(parts[0].lower(), parts[0].lower())
    args = parts[1:]

    if cmd == "/help":        cmd_help()
    elif cmd == "/agent":     cmd_mode(Mode.AGENT)
    elif cmd == "/chat":      cmd_mode(Mode.CHAT)
    elif cmd == "/mode":      cmd_mode()
    elif cmd == "/clear":     cmd_reset(clear_screen=True)
    elif cmd == "/reset":     cmd_reset()
    elif cmd == "/model":     cmd_model(args)
    elif cmd == "/models":    cmd_models(args)
    elif cmd == "/tokens":    cmd_tokens()
    elif cmd == "/config":    cmd_config()
    elif cmd == "/setconfig":
        if len(args) >= 2: cmd_setconfig(args[0], " ".join(args[1:]))
        else: err("Usage: /setconfig <key> <value>")
    elif cmd == "/exit": return "EXIT"
    else:
        err(f"Unknown: [{WHITE}]{cmd}[/]")
        info("Type [bold]/help[/]")
    return None


def shell_loop():
    console.print()
    console.print(Panel(
        f"[bold {CYAN}]◉  ARCANE[/]  [{DIM}]v{__version__}[/]\n"
        f"[{DIM}]dir:[/]   [bold {WHITE}]{os.getcwd()}[/]\n"
        f"[{DIM}]model:[/] [bold {CYAN}]{session.orchestrator.settings.model}[/]"
        f"   [{DIM}]mode:[/] [bold {CYAN}]{session.mode.value}[/]\n\n"
        f"[{CYAN}]/agent[/][{DIM}] tools  [/][{CYAN}]/chat[/][{DIM}] talk  [/]"
        f"[{CYAN}]/help[/][{DIM}] commands  [/][{CYAN}]/exit[/][{DIM}] quit[/]",
        border_style=CYAN, box=box.DOUBLE_EDGE, padding=(0,4), width=min(72,W()-4),
    ))
    console.print()

    prompt = PromptSession(
        history=HISTORY, auto_suggest=AutoSuggestFromHistory(),
        completer=MentionCompleter(), complete_while_typing=True,
        style=PTStyle.from_dict({"":"#e8eaf6"}),
    )
    while True:
        try: raw = prompt.prompt(arcane_prompt)
        except KeyboardInterrupt: continue
        except EOFError:
            console.print(); ok("Goodbye."); break

        if dispatch(raw or "") == "EXIT":
            console.print(); ok("Goodbye."); break


# ── Entry point ────────────────────────────────────────────────────────────────

@click.command(context_settings={"help_option_names":["--help"]})
@click.option("--version", is_flag=True,  help="Show version.")
@click.option("--setkey",  default=None,  metavar="KEY", help="Save Mistral API key and exit.")
@click.option("--model",   default=None,  metavar="ID",  help="Model to use for this session.")
@click.option("--agent",   is_flag=True,  default=False, help="Start in agent mode.")
@click.option("--workspace", default=None, metavar="PATH", help="Use a specific directory (default: current dir).")
@click.option("--debug",   is_flag=True,  default=False, help="Verbose logging.")
def main(version, setkey, model, agent, workspace, debug):
    """ARCANE — chat with a model, or let it work on your files.

    \b
    Run from any directory:
      cd ~/myproject && arcane
      arcane --agent           start with tools enabled
      arcane --setkey KEY      save your Mistral API key

    \b
    Mention files with @:
      ❯ what does @src/app.py do?
    """
    global cfg
    if version:
        console.print(f"[bold {CYAN}]ARCANE v{__version__}[/]"); return

    setup_logging(debug)
    cfg = ArcaneConfig()
    if setkey:
        cfg.set("api_key", setkey)
        console.print(f"  [{GREEN}]✔[/]  Key saved → {cfg.path()}")
        console.print(f"  [{CYAN}]⬡[/]  Run [bold]arcane[/] to start"); return

    if workspace:
        target = Path(workspace).expanduser().resolve()
        if not target.is_dir():
            err(f"Directory not found: {workspace}"); sys.exit(1)
        os.chdir(target)

    try:
        start_session(model=model, mode="agent" if agent else None)
    except RuntimeError as e:
        err(str(e)); sys.exit(1)
    shell_loop()


if __name__ == "__main__":
    main()
