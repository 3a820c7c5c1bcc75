from __future__ import annotations

import argparse
import asyncio
import os
import sys
from contextlib import suppress
from pathlib import Path

from omegaconf import DictConfig

from transcoder_rotator import TranscoderRotator
from transcoder_rotator.config import load_rotator_config
from transcoder_rotator.log import configure_logging
from transcoder_rotator.provider import (
    ProviderBackend,
    create_provider,
    load_provider_config,
    static_provider_config,
)


def _print_fired_up_banner(log_prefix: str) -> None:
    banner = r"""
  ____       _        _
 |  _ \ ___ | |_ __ _| |_ ___  _ __
 | |_) / _ \| __/ _` | __/ _ \| '__|
 |  _ < (_) | || (_| | || (_) | |
 |_| \_\___/ \__\__,_|\__\___/|_|

"""
    use_color = sys.stdout.isatty() and "NO_COLOR" not in os.environ
    if not use_color:
        print(f"{log_prefix} {banner}", flush=True)
        return

    colors = [
        "\033[38;5;208m",  # orange
        "\033[38;5;214m",  # amber
        "\033[38;5;220m",  # gold
    ]
    reset = "\033[0m"
    colored_lines = []
    for idx, line in enumerate(banner.splitlines()):
        if line.strip():
            color = colors[idx % len(colors)]
            colored_lines.append(f"{color}{line}{reset}")
        else:
            colored_lines.append(line)
    print(f"{log_prefix} " + "\n".join(colored_lines), flush=True)


def _tls_files(cert_dir: str | None) -> tuple[str | None, str | None]:
    if cert_dir is None:
        return None, None
    keyfile = Path(cert_dir) / "privkey.pem"
    certfile = Path(cert_dir) / "fullchain.pem"
    for path in (keyfile, certfile):
        if not path.is_file():
            raise FileNotFoundError(f"TLS file not found: {path}")
    return str(keyfile), str(certfile)


def _run_rotator_server(
    args: argparse.Namespace,
    rotator: TranscoderRotator,
    log_prefix: str = "[transcoder-rotator]",
) -> None:
    try:
        import uvicorn  # type: ignore[import-not-found]
    except ImportError as exc:
        raise RuntimeError(
            "uvicorn is required to run the rotator. Install with: pip install uvicorn"
        ) from exc

    keyfile, certfile = _tls_files(args.cert_dir)
    scheme = "https" if keyfile else "http"
    print(
        f"{log_prefix} starting rotator on {scheme}://{args.host}:{args.port}",
        flush=True,
    )
    config = uvicorn.Config(
        app=rotator.app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        ssl_keyfile=keyfile,
        ssl_certfile=certfile,
    )
    server = uvicorn.Server(config)

    async def _serve_with_banner() -> None:
        banner_printed = False

        async def _wait_and_print_banner() -> None:
            nonlocal banner_printed
            while not server.started and not server.should_exit:
                await asyncio.sleep(0.1)
            if server.started and not banner_printed:
                banner_printed = True
                _print_fired_up_banner(log_prefix)

        watcher = asyncio.create_task(_wait_and_print_banner())
        try:
            await server.serve()
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher

    asyncio.run(_serve_with_banner())


def _add_rotator_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--host", type=str, default="0.0.0.0", help="Rotator bind address."
    )
    parser.add_argument("--port", type=int, default=2222, help="Rotator port.")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config with 'rotator' and 'provider' sections (see examples/rotator.yaml).",
    )
    parser.add_argument(
        "--cert-dir",
        type=str,
        default=None,
        help="Directory holding privkey.pem and fullchain.pem; enables TLS.",
    )
    parser.add_argument(
        "--static-instances",
        nargs="*",
        default=None,
        help="Serve a fixed roster of worker agent addresses instead of a cloud provider.",
    )
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Seconds between control loop ticks (overrides config).",
    )
    parser.add_argument(
        "--minimum-instances",
        type=int,
        default=None,
        help="Minimum fleet size (overrides config).",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Write combined.log and error.log into this directory.",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging."
    )
    parser.add_argument(
        "--log-level", type=str, default="info", help="Uvicorn log level."
    )


def build_rotator_config(args: argparse.Namespace) -> DictConfig:
    config = load_rotator_config(args.config)
    if args.tick_interval is not None:
        config.tick_interval = args.tick_interval
    if args.minimum_instances is not None:
        config.minimum_instances = args.minimum_instances
    return config


def build_provider(args: argparse.Namespace) -> ProviderBackend:
    if args.static_instances:
        return create_provider(static_provider_config(args.static_instances))
    if args.config is None:
        raise RuntimeError(
            "a provider is required: pass --config with a 'provider' section "
            "or --static-instances"
        )
    return create_provider(load_provider_config(args.config))


def _handle_rotator(args: argparse.Namespace) -> int:
    log_prefix = "[transcoder-rotator]"
    configure_logging(
        "debug" if args.verbose else args.log_level, log_dir=args.log_dir
    )

    config = build_rotator_config(args)
    provider = build_provider(args)
    rotator = TranscoderRotator(config, provider, verbose=args.verbose)
    _run_rotator_server(args, rotator=rotator, log_prefix=log_prefix)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcoder-rotator",
        description="Transcoder fleet rotator CLI.",
    )
    _add_rotator_args(parser)
    parser.set_defaults(handler=_handle_rotator)
    return parser


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = args.handler
    return handler(args)


def main(argv: list[str] | None = None) -> int:
    try:
        return run_cli(argv)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        print(f"[transcoder-rotator] error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
