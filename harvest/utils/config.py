import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
from harvest.utils.exceptions import ConfigError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.json"

def get_default_config() -> Dict[str, Any]:
    """Returns default configuration settings."""
    return {
        "development": True,  # Enable debug logging
        "server": {
            "host": "127.0.0.1",
            "port": 8765
        },
        "heartbeat": {
            "ttl_seconds": 600,
            "interval_seconds": 10
        },
        "storage": {
            "backend": "disk",  # disk | postgres | memory
            "staging_dir": str(Path.home() / ".code-harvest" / "staging")
        },
        "database": {
            "host": "localhost",
            "database": "code_harvest",
            "user": os.getenv("USER", "postgres"),
            "password": ""  # Empty for peer authentication
        },
        "log_file": None
    }

def load_env_vars(env_path: Optional[Path] = None):
    """Load environment variables from .env file if it exists."""
    env_path = env_path or Path.cwd() / '.env'
    if not env_path.exists():
        logger.debug(f"No .env file found at {env_path}")
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                os.environ.setdefault(key.strip(), value.strip())

def replace_env_vars(config: Dict) -> Dict:
    """Recursively replace environment variables in config values."""
    result = {}
    missing_vars = []

    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = replace_env_vars(value)
        elif isinstance(value, str):
            # Handle ${VAR} syntax
            if value.startswith('${') and value.endswith('}'):
                env_var = value[2:-1]
                if env_var not in os.environ:
                    missing_vars.append(env_var)
                else:
                    result[key] = os.environ[env_var]
            # Handle $VAR syntax
            elif value.startswith('$') and len(value) > 1:
                env_var = value[1:]
                if env_var not in os.environ:
                    missing_vars.append(env_var)
                else:
                    result[key] = os.environ[env_var]
            else:
                result[key] = value
        else:
            result[key] = value

    if missing_vars:
        error_msg = "\nMissing required environment variables:\n"
        for var in missing_vars:
            error_msg += f"- {var}\n"
        error_msg += "\nPlease set these in your .env file."
        raise ConfigError(error_msg)

    return result

def merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in any keys missing from `config` with their default values."""
    merged = dict(defaults)
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(defaults.get(key), dict):
            merged[key] = merge_defaults(value, defaults[key])
        else:
            merged[key] = value
    return merged

def ensure_config_exists(config_path: Path = DEFAULT_CONFIG_PATH) -> Path:
    """Create default config if it doesn't exist. Returns config path."""
    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}")
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w') as f:
            json.dump(get_default_config(), f, indent=2)

        logger.info(f"Created default config at {config_path}")

    return config_path

def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Loads configuration from a JSON file and replaces environment variables."""
    config_path = Path(config_path)
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found at {config_path}")
    except json.JSONDecodeError:
        raise ConfigError(f"Error decoding json at file: {config_path}")

    return merge_defaults(replace_env_vars(config), get_default_config())

def load_or_create_config(config_path: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load the config, writing the defaults first on a fresh install."""
    try:
        ensure_config_exists(config_path)
        load_env_vars()
        return load_config(config_path)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Error loading configuration: {str(e)}")

def get_config(config: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Get a config value by dotted key, e.g. `heartbeat.ttl_seconds`."""
    value: Any = config
    for part in key.split('.'):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value
