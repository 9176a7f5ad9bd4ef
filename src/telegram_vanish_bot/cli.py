import argparse
import asyncio
import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from telegram import Bot

from telegram_vanish_bot.app_container import build_retention_container, build_store
from telegram_vanish_bot.domain.errors import StoreError
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore
from .config import (
    DEFAULT_CONFIG_DIR,
    TOKEN_KEY,
    Config,
    get_env_path,
    get_env_value,
    load_config,
    load_env_file,
    load_sweep_settings,
    resolve_state_db_path,
)
from .telegram_bot import build_application
from .util import redact

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every Bot API request at INFO, which includes the token in the URL.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _print_config(config_dir: Path) -> None:
    env_file = load_env_file(get_env_path(config_dir))
    token = get_env_value(TOKEN_KEY, env_file)
    sweep = load_sweep_settings(env_file)

    print(f"Config dir: {config_dir}")
    print(f"Env file: {get_env_path(config_dir)}")
    print(f"State db: {resolve_state_db_path(config_dir, env_file)}")
    print(f"Token present: {'yes' if token else 'no'}")
    print(f"Sweep interval: {sweep.interval_sec}s")
    print(f"Page size: {sweep.page_size}")
    print(f"Delete spacing: {sweep.delete_spacing_ms}ms")
    print(f"Rate limit pause: {sweep.rate_limit_pause_sec}s")
    print(f"Bulk delete window: {sweep.bulk_delete_max_age_sec}s")
    print(f"Max parallel channels: {sweep.max_parallel_channels}")
    print(f"Sweep lease: {sweep.lease_sec}s")


def _open_store(config: Config) -> SqlitePolicyStore:
    try:
        return build_store(config.state_db_path)
    except StoreError as exc:
        logger.critical("cannot open policy store at %s: %s", config.state_db_path, exc)
        print(f"Failed to open policy store: {exc}", file=sys.stderr)
        sys.exit(1)


async def _sweep_once(config: Config, store: SqlitePolicyStore) -> dict:
    async with Bot(config.token) as bot:
        container = build_retention_container(bot=bot, store=store, settings=config.sweep)
        summary = await container.scheduler.tick()
    return summary.as_dict() if summary is not None else {"skipped": True}


def _run_control_center(config: Config, store: SqlitePolicyStore, host: str, port: int, log_level: str) -> None:
    from telegram_vanish_bot.control_center.app import create_app
    import uvicorn

    bot = Bot(config.token)
    container = build_retention_container(bot=bot, store=store, settings=config.sweep)

    @asynccontextmanager
    async def _lifespan(_app):
        async with bot:
            yield

    app = create_app(container.service, lifespan=_lifespan)
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


def main() -> None:
    parser = argparse.ArgumentParser(description="Telegram message retention bot")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory to store .env config and state.db (default: ~/.config/telegram-vanish-bot)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--sweep-once", action="store_true", help="Run a single sweep and print the summary")
    parser.add_argument(
        "--control-center",
        action="store_true",
        help="Run local Control Center API instead of Telegram polling mode",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Control Center bind host")
    parser.add_argument("--port", type=int, default=8765, help="Control Center bind port")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))

    args = parser.parse_args()
    config_dir = Path(args.config_dir).expanduser().resolve()

    _configure_logging(args.log_level)

    if args.print_config:
        _print_config(config_dir)
        return

    config = load_config(config_dir)
    store = _open_store(config)

    if args.sweep_once:
        try:
            result = asyncio.run(_sweep_once(config, store))
        except Exception as exc:
            print(f"Sweep failed: {redact(str(exc))}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(result, indent=2, sort_keys=True))
        return

    if args.control_center:
        _run_control_center(config, store, args.host, args.port, args.log_level)
        return

    app = build_application(config.token, store, settings=config.sweep)
    app.run_polling(close_loop=False)


if __name__ == "__main__":
    main()
