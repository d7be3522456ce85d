import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

# Resolve configs/ beside the project root so scripts and tests agree
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(current_dir)
CONFIG_FILE_PATH = os.getenv(
    "DERBY_CONFIG_PATH", os.path.join(project_root, "configs", "game_balance.json")
)


def load_config(path=CONFIG_FILE_PATH):
    """
    Loads the main game balance config file.
    Returns an empty dict when the file is missing so in-code defaults apply.
    """
    try:
        with open(path, "r") as f:
            config = json.load(f)
        return config
    except FileNotFoundError:
        print(f"Warning: Could not find config file at {path}; using defaults.")
        return {}
    except json.JSONDecodeError as e:
        print(f"FATAL ERROR: Could not parse config file {path}: {e}")
        raise


# Load the config ONCE when the module is first imported
BALANCE_CONFIG = load_config()


def get_config(key_path, default=None):
    """
    Safely gets a value from the loaded config using a 'dot.path'.
    Example: get_config('racing.min_bet')
    """
    if not BALANCE_CONFIG:
        return default

    value = BALANCE_CONFIG
    try:
        for key in key_path.split('.'):
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def _env_override(name, value, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return value
    try:
        return cast(raw)
    except ValueError:
        print(f"Warning: ignoring invalid {name}={raw!r}")
        return value


@dataclass(frozen=True)
class RaceSettings:
    """Racing knobs, resolved once from the balance file and DERBY_* env vars."""

    horses: int = 5
    min_bet: int = 100
    max_bet: int = 10000
    countdown_ms: int = 5000
    race_ms: int = 9000
    state_ttl_seconds: int = 600
    win_multiplier: float = 2.0
    starting_points: int = 10000

    @classmethod
    def load(cls) -> "RaceSettings":
        defaults = cls()
        values = {}
        for field_name, cast in (
            ("horses", int),
            ("min_bet", int),
            ("max_bet", int),
            ("countdown_ms", int),
            ("race_ms", int),
            ("state_ttl_seconds", int),
            ("win_multiplier", float),
            ("starting_points", int),
        ):
            configured = cast(get_config(f"racing.{field_name}", getattr(defaults, field_name)))
            values[field_name] = _env_override(f"DERBY_{field_name.upper()}", configured, cast)
        return cls(**values)
