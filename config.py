import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in {"1", "true", "True", "yes", "YES", "y"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


@dataclass
class Config:
    master_pin: str
    nx584_client: str
    users_path: Path
    gammu_path: str
    sms_check_interval: float
    idle_sleep_ms: int
    siren_debounce_seconds: float
    serial_baud: int
    send_sms: bool
    log_level: str
    log_dir: Path
    inputs: List[str] = field(default_factory=list)


DEFAULT_MASTER_PIN = "9999"
DEFAULT_NX584_CLIENT = "../pynx584/nx584_client"
DEFAULT_USERS_PATH = "/usr/local/etc/nx584-sms.conf"

# Positional "key=value" arguments accepted alongside the input sources.
CLI_OVERRIDES = {
    "master": "master_pin",
    "nx584_client": "nx584_client",
    "conf": "users_path",
}


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    return Config(
        master_pin=os.getenv("NX584_MASTER_PIN", DEFAULT_MASTER_PIN),
        nx584_client=os.getenv("NX584_CLIENT", DEFAULT_NX584_CLIENT),
        users_path=Path(os.getenv("USERS_FILE", DEFAULT_USERS_PATH)),
        gammu_path=os.getenv("GAMMU_PATH", "gammu"),
        sms_check_interval=_get_env_float("SMS_CHECK_INTERVAL", 1.0),
        idle_sleep_ms=_get_env_int("IDLE_SLEEP_MS", 10),
        siren_debounce_seconds=_get_env_float("SIREN_DEBOUNCE_SECONDS", 10.0),
        serial_baud=_get_env_int("SERIAL_BAUD", 115200),
        send_sms=_get_env_bool("SEND_SMS", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
    )


def apply_cli_overrides(config: Config, argv: List[str]) -> Tuple[Config, List[str]]:
    """Pull ``master=``, ``nx584_client=`` and ``conf=`` out of ``argv``.

    Whatever is left is treated as input sources and stored on the config.
    """
    inputs: List[str] = []
    for arg in argv:
        key, sep, value = arg.partition("=")
        attr = CLI_OVERRIDES.get(key)
        if sep and attr and value:
            setattr(config, attr, Path(value) if attr == "users_path" else value)
            continue
        inputs.append(arg)
    config.inputs = inputs
    return config, inputs


def setup_logging(log_level: str = "INFO", log_dir: Path = Path("logs")) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)

    log_path = log_dir / "nx584-sms.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
