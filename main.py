"""
main.py — MindLens application entry point.

Parses CLI args, loads configuration, and either serves the web bridge or
runs a scripted headless session.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
import traceback
from typing import Optional

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
  __  __ _           _ _
 |  \/  (_)_ __   __| | |    ___ _ __  ___
 | |\/| | | '_ \ / _` | |   / _ \ '_ \/ __|
 | |  | | | | | | (_| | |__|  __/ | | \__ \
 |_|  |_|_|_| |_|\__,_|_____\___|_| |_|___/

         MindLens  v1.0
   Dwell & scan AAC phrase selection
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mindlens",
        description="MindLens — dwell and switch-scanning phrase selection",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to a mindlens.yaml (default: MINDLENS_CONFIG or config/mindlens.yaml)",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default=None,
        help="Minimum log level for stderr output (default: logging.level from config)",
    )
    p.add_argument(
        "--web",
        action="store_true",
        help="Serve the FastAPI web bridge",
    )
    p.add_argument(
        "--host",
        default=None,
        help="Bind address for the web bridge (default: web.host from config)",
    )
    p.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the web bridge (default: web.port from config)",
    )
    p.add_argument(
        "--demo",
        action="store_true",
        help="Run a scripted headless session and print its events",
    )
    return p


# ──────────────────────────────────────────────────────────────
# Headless demo
# ──────────────────────────────────────────────────────────────

def _print_event(event) -> None:
    print(f"[EVENT] {event.kind:<20} {event.to_dict()['payload']}")


async def _run_demo(config) -> int:
    """
    Scripted session: detections → start → confirm a slot keyword →
    wait for phrases → confirm the highlighted phrase.
    """
    from mindlens.core.session import SessionOrchestrator
    from mindlens.llm.phrases import build_phrase_generator
    from mindlens.output.speech import TTSEngine

    speech = TTSEngine(config.speech)
    session = SessionOrchestrator(
        config,
        build_phrase_generator(config.phrases),
        speech,
        on_event=_print_event,
    )
    try:
        session.update_detections(["cup", "book"])
        session.start()
        print("[INFO] Options:", ", ".join(i.label for i in session.selectable_set))

        keyword = next(
            (i for i in session.selectable_set if i.is_dynamic and not i.is_placeholder),
            session.selectable_set[0],
        )
        session.confirm(keyword)
        await session.join()

        print("[INFO] Phrases:", " | ".join(i.label for i in session.selectable_set))
        if session.selectable_set:
            await asyncio.sleep(config.selection.scan_interval_ms / 1000.0)
            session.confirm()
        # give the speech worker a moment before shutdown
        await asyncio.sleep(0.5)
    finally:
        session.close()
        speech.shutdown()
    return 0


# ──────────────────────────────────────────────────────────────
# Web entry point
# ──────────────────────────────────────────────────────────────

def _run_web(config) -> int:
    """Serve the web bridge in the main thread until interrupted."""
    from mindlens.ui.web_app import start_web_server

    print(f"[INFO] Web bridge → http://{config.web.host}:{config.web.port}/state")
    print("       Press Ctrl-C to stop.")
    start_web_server(config)
    return 0


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    print(_BANNER)

    parser = _build_parser()
    args = parser.parse_args(argv)

    from mindlens.core.config import ConfigurationError, load_config
    from mindlens.core.logger import configure_logger

    # 1. Configuration
    try:
        config = load_config(args.config)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    web = config.web
    if args.host is not None or args.port is not None:
        web = dataclasses.replace(
            web,
            host=args.host if args.host is not None else web.host,
            port=args.port if args.port is not None else web.port,
        )
        config = dataclasses.replace(config, web=web)

    # 2. stdlib logging level
    level_name = args.log_level or config.logging.level
    level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING,
                 "WARNING": logging.WARNING, "ERROR": logging.ERROR}
    logging.basicConfig(level=level_map.get(level_name.upper(), logging.INFO))

    # 3. Session log
    log = configure_logger(config.logging.session_log_dir, config.logging.log_sessions)
    log.info("main", "args_parsed", {
        "config": args.config,
        "web": args.web,
        "demo": args.demo,
        "log_level": level_name,
        "provider": config.phrases.provider,
    })

    # 4. Launch
    exit_code = 0
    try:
        if args.web:
            exit_code = _run_web(config)
        elif args.demo:
            print("[INFO] Running scripted demo session")
            exit_code = asyncio.run(_run_demo(config))
        else:
            parser.print_help()
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:                              # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.error("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        log.flush()

    print(f"[INFO] MindLens exited with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
