import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

TOKEN_KEY = "TELEGRAM_BOT_TOKEN"
STATE_DB_KEY = "STATE_DB_PATH"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "telegram-vanish-bot"


@dataclass(frozen=True)
class SweepSettings:
    interval_sec: int = 60
    page_size: int = 100
    delete_spacing_ms: int = 200
    rate_limit_pause_sec: int = 5
    bulk_delete_max_age_sec: int = 48 * 3600
    max_parallel_channels: int = 1
    lease_sec: int = 900


@dataclass
class Config:
    token: str
    config_dir: Path
    env_path: Path
    state_db_path: Path
    sweep: SweepSettings


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except OSError as exc:
        print(f"Failed to read .env: {exc}", file=sys.stderr)
    return data


def write_env_file(path: Path, data: Dict[str, str]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [f"{k}={v}" for k, v in data.items()]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        print(f"Failed to write .env: {exc}", file=sys.stderr)


def get_env_value(key: str, env_file: Mapping[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def read_int(
    key: str,
    env_file: Mapping[str, str],
    default: int,
    minimum: int = 1,
    maximum: Optional[int] = None,
) -> int:
    raw = (get_env_value(key, env_file) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def load_sweep_settings(env_file: Optional[Mapping[str, str]] = None) -> SweepSettings:
    env = env_file or {}
    defaults = SweepSettings()
    return SweepSettings(
        interval_sec=read_int("SWEEP_INTERVAL_SEC", env, defaults.interval_sec, minimum=5),
        page_size=read_int("SWEEP_PAGE_SIZE", env, defaults.page_size, minimum=1, maximum=100),
        delete_spacing_ms=read_int("DELETE_SPACING_MS", env, defaults.delete_spacing_ms, minimum=0),
        rate_limit_pause_sec=read_int("RATE_LIMIT_PAUSE_SEC", env, defaults.rate_limit_pause_sec, minimum=0),
        bulk_delete_max_age_sec=read_int(
            "BULK_DELETE_MAX_AGE_SEC",
            env,
            defaults.bulk_delete_max_age_sec,
            minimum=60,
        ),
        max_parallel_channels=read_int(
            "SWEEP_MAX_PARALLEL_CHANNELS",
            env,
            defaults.max_parallel_channels,
            minimum=1,
            maximum=16,
        ),
        lease_sec=read_int("SWEEP_LEASE_SEC", env, defaults.lease_sec, minimum=60),
    )


def resolve_state_db_path(config_dir: Path, env_file: Mapping[str, str]) -> Path:
    raw = (get_env_value(STATE_DB_KEY, env_file) or "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return config_dir / "state.db"


def ensure_onboarding(config_dir: Path) -> Dict[str, str]:
    env_path = get_env_path(config_dir)
    env_file = load_env_file(env_path)
    token = get_env_value(TOKEN_KEY, env_file)
    if not token:
        token = input("Enter Telegram Bot Token: ").strip()
        env_file[TOKEN_KEY] = token
        write_env_file(env_path, env_file)
    return env_file


def load_config(config_dir: Path, interactive: bool = True) -> Config:
    env_file = ensure_onboarding(config_dir) if interactive else load_env_file(get_env_path(config_dir))
    token = get_env_value(TOKEN_KEY, env_file) or ""
    if interactive and not token:
        print("Missing TELEGRAM_BOT_TOKEN.", file=sys.stderr)
        sys.exit(1)
    return Config(
        token=token,
        config_dir=config_dir,
        env_path=get_env_path(config_dir),
        state_db_path=resolve_state_db_path(config_dir, env_file),
        sweep=load_sweep_settings(env_file),
    )
