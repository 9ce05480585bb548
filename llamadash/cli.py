#!/usr/bin/env python3
"""
llamadash CLI — drive a llama-dashboard server from the terminal.

Every command has a short name and standard aliases:

    COMMAND     ALIASES             WHAT IT DOES
    -------     -------             ----------------------------------
    chat        talk, repl          Interactive streaming chat
    models      ls, list            List models and their status
    load        up                  Load a model into memory
    unload      down                Unload a model
    scan        rescan              Rescan model directories
    fav         favorite, star      Toggle a model's favorite flag
    ping        status, health      Check a server is up
    tap         log, tail           Watch the transcript wiretap
    console     tui                 Launch the interactive TUI
    banner      tone                Print the banner
"""

import argparse
import asyncio
import copy
import signal
import sys
from contextlib import contextmanager

from llamadash import __version__

BANNER = r"""
    ╔══════════════════════════════════════════════╗
    ║                                              ║
    ║   ╦  ╦  ╔═╗╔╦╗╔═╗  ╔╦╗╔═╗╔═╗╦ ╦              ║
    ║   ║  ║  ╠═╣║║║╠═╣   ║║╠═╣╚═╗╠═╣              ║
    ║   ╩═╝╩═╝╩ ╩╩ ╩╩ ╩  ═╩╝╩ ╩╚═╝╩ ╩              ║
    ║                                              ║
    ║   Stream the tokens. Mind the models. v""" + __version__ + r"""  ║
    ║                                              ║
    ╚══════════════════════════════════════════════╝
"""

STATUS_ICONS = {
    "loaded": "●",
    "loading": "◐",
    "unloaded": "○",
    "error": "✗",
}


def _load_cfg(args) -> dict:
    from llamadash.config import get_config, load_config, setup_logging

    cfg = copy.deepcopy(load_config(args.config) if getattr(args, "config", None) else get_config())
    if getattr(args, "url", None):
        cfg["server"]["url"] = args.url
    if getattr(args, "verbose", False):
        cfg["logging"]["level"] = "DEBUG"
    setup_logging(cfg)
    return cfg


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def _print_models(models) -> None:
    if not models:
        print("  No models found.")
        return
    print(f"  {'':2}{'Model':<40} {'Arch':<10} {'Quant':<8} {'Size':>10}")
    print("  " + "─" * 72)
    for m in models:
        icon = STATUS_ICONS.get(m.status.value, "?")
        star = "★" if m.favorite else " "
        name = m.display_name
        if len(name) > 38:
            name = name[:36] + ".."
        print(
            f"  {icon}{star}{name:<40} {(m.architecture or '-'):<10} "
            f"{(m.quantization or '-'):<8} {_human_size(m.size):>10}"
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_models(args):
    """List models known to the server."""
    from llamadash.api import ApiClient
    from llamadash.registry import ModelRegistry

    cfg = _load_cfg(args)

    async def run():
        async with ApiClient.from_config(cfg) as api:
            registry = ModelRegistry(api)
            await registry.fetch_all()
            return registry

    registry = asyncio.run(run())
    if registry.error:
        print(f"  ✗  Cannot list models from {cfg['server']['url']}: {registry.error}")
        return 1

    if args.loaded:
        models = registry.loaded_models
    elif args.favorites:
        models = registry.favorite_models
    else:
        models = registry.available_models
    _print_models(models)
    return 0


def _registry_action(args, action):
    """Fetch the registry, then run one mutation against it."""
    from llamadash.api import ApiClient
    from llamadash.errors import LlamaDashError
    from llamadash.registry import ModelRegistry

    cfg = _load_cfg(args)

    async def run():
        async with ApiClient.from_config(cfg) as api:
            registry = ModelRegistry(api)
            await registry.fetch_all()
            if registry.error:
                raise LlamaDashError(registry.error)
            return await action(registry)

    try:
        return asyncio.run(run())
    except LlamaDashError as e:
        print(f"  ✗  {e}")
        return 1


def cmd_load(args):
    """Load a model."""
    async def action(registry):
        print(f"  ◐  Loading {args.model}...")
        entry = await registry.load(args.model, ctx_size=args.ctx_size, n_gpu_layers=args.gpu_layers)
        print(f"  ●  {entry.display_name} loaded")
        return 0
    return _registry_action(args, action)


def cmd_unload(args):
    """Unload a model."""
    async def action(registry):
        entry = await registry.unload(args.model)
        print(f"  ○  {entry.display_name} unloaded")
        return 0
    return _registry_action(args, action)


def cmd_scan(args):
    """Rescan model directories on the server."""
    async def action(registry):
        models = await registry.rescan()
        print(f"  ✓  {len(models)} models after rescan")
        return 0
    return _registry_action(args, action)


def cmd_fav(args):
    """Toggle a model's favorite flag."""
    async def action(registry):
        persisted = await registry.toggle_favorite(args.model)
        entry = registry.get(args.model)
        if not persisted:
            print(f"  ✗  Server refused; {entry.display_name} unchanged")
            return 1
        print(f"  {'★' if entry.favorite else '☆'}  {entry.display_name}")
        return 0
    return _registry_action(args, action)


def cmd_ping(args):
    """Ping a llama-dashboard server."""
    from llamadash.api import ApiClient
    from llamadash.errors import LlamaDashError

    cfg = _load_cfg(args)
    url = cfg["server"]["url"]

    async def run():
        async with ApiClient.from_config(cfg) as api:
            if not await api.health():
                return None
            try:
                return await api.system_info()
            except LlamaDashError:
                return {}

    info = asyncio.run(run())
    if info is None:
        print(f"  ✗  Dead line — nothing healthy at {url}")
        return 1
    print(f"  ☎  {url} is UP")
    if info:
        print(f"  ├─ Version:   {info.get('version', '?')}")
        print(f"  ├─ Loaded:    {info.get('models_loaded', 0)}")
        print(f"  └─ Available: {info.get('models_available', 0)}")
    return 0


@contextmanager
def _ctrl_c_stops(controller):
    """While a reply streams, Ctrl-C stops the reply instead of the session."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    except (NotImplementedError, RuntimeError):
        # no signal support here (Windows, or not the main thread)
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _chat_loop(cfg: dict, model: str | None, system_prompt: str | None) -> int:
    from llamadash.api import ApiClient
    from llamadash.chat import ConversationController
    from llamadash.registry import ModelRegistry
    from llamadash.types import GenerationOptions
    from llamadash.wiretap import WireLog

    wire = None
    if cfg.get("wiretap", {}).get("enabled"):
        wire = WireLog(cfg["wiretap"]["path"])

    async with ApiClient.from_config(cfg) as api:
        if not model:
            registry = ModelRegistry(api)
            await registry.fetch_all()
            loaded = registry.loaded_models
            if not loaded:
                print("  ✗  No loaded model. Load one first: llamadash load <model>")
                return 1
            model = loaded[0].id

        controller = ConversationController(api, GenerationOptions.from_config(cfg), wire=wire)

        def on_event(event, data):
            if event == "chunk":
                print(data, end="", flush=True)

        controller.subscribe(on_event)
        controller.create(model, system_prompt)

        print(f"  Chatting with {model}. Ctrl-C stops a reply (at the prompt it hangs up), '/new' starts over, 'exit' quits.\n")
        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "  you> ")
                except EOFError:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.lower() in ("exit", "quit", "/exit", "/quit"):
                    break
                if line == "/new":
                    controller.create(model, system_prompt)
                    print("  [new conversation]\n")
                    continue

                print("  bot> ", end="", flush=True)
                with _ctrl_c_stops(controller):
                    reply = await controller.send(line)
                if reply is None:
                    print("  [stopped]")
                elif reply.content.startswith("Error: "):
                    print(f"\n  ✗  {reply.content}")
                print("\n")
        finally:
            if wire:
                wire.close()
    print("  [line disconnected]")
    return 0


def cmd_chat(args):
    """Interactive streaming chat."""
    cfg = _load_cfg(args)
    system_prompt = " ".join(args.system) if args.system else None
    try:
        return asyncio.run(_chat_loop(cfg, args.model, system_prompt))
    except KeyboardInterrupt:
        print("\n  [line disconnected]")
        return 0


def cmd_tap(args):
    """Watch the transcript wiretap."""
    from llamadash.wiretap import live_tap

    cfg = _load_cfg(args)
    live_tap(
        log_path=args.log or cfg["wiretap"]["path"],
        follow=not args.no_follow,
        last_n=args.last,
        role_filter=args.role,
        raw=args.raw,
    )
    return 0


def cmd_console(args):
    """Launch the TUI console."""
    from llamadash.tui.app import LlamaDashApp

    cfg = _load_cfg(args)
    LlamaDashApp(cfg).run()
    return 0


def cmd_banner(args):
    """Print the banner."""
    print(BANNER)
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llamadash",
        description="llamadash — streaming chat and model management for llama-dashboard.",
        epilog="Run 'llamadash <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-V", action="version", version=f"llamadash {__version__}")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--url", "-u", default=None, help="Override server URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_chat(p):
        p.add_argument("--model", "-m", default=None, help="Model id (default: first loaded model)")
        p.add_argument("--system", "-s", nargs="+", default=None, help="System prompt")

    _add_command(sub, ["chat", "talk", "repl"], "Interactive streaming chat", cmd_chat, setup_chat)

    def setup_models(p):
        group = p.add_mutually_exclusive_group()
        group.add_argument("--loaded", action="store_true", help="Only loaded models")
        group.add_argument("--favorites", action="store_true", help="Only favorites")

    _add_command(sub, ["models", "ls", "list"], "List models and their status", cmd_models, setup_models)

    def setup_load(p):
        p.add_argument("model", help="Model id")
        p.add_argument("--ctx-size", type=int, default=None, help="Context size")
        p.add_argument("--gpu-layers", type=int, default=None, help="Layers to offload (-1 = all)")

    _add_command(sub, ["load", "up"], "Load a model into memory", cmd_load, setup_load)

    def setup_model_arg(p):
        p.add_argument("model", help="Model id")

    _add_command(sub, ["unload", "down"], "Unload a model", cmd_unload, setup_model_arg)
    _add_command(sub, ["scan", "rescan"], "Rescan model directories", cmd_scan)
    _add_command(sub, ["fav", "favorite", "star"], "Toggle a model's favorite flag", cmd_fav, setup_model_arg)
    _add_command(sub, ["ping", "status", "health"], "Check a server is up", cmd_ping)

    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries before following")
        p.add_argument("--role", "-r", choices=["user", "assistant"], default=None, help="Filter by role")
        p.add_argument("--no-follow", action="store_true", help="Don't follow, just show last entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "log", "tail"], "Watch the transcript wiretap", cmd_tap, setup_tap)
    _add_command(sub, ["console", "tui"], "Launch the interactive TUI", cmd_console)
    _add_command(sub, ["banner", "tone"], "Print the banner", cmd_banner)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_banner(args)
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
