import copy
import os
import yaml

DEFAULT_CONFIG = {
    "logging_level": "INFO",
    "log_dir": "~/.hito",
    "config_filename": ".hito.json",
    "scanner": {
        "min_file_size": 15360,  # bytes; 15 KB floor keeps icons out of the grid
        "image_extensions": ["jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "ico"],
        "ignore_patterns": ["._*"],
    },
    "view": {
        "sort_option": "name",
        "sort_direction": "ascending",
    },
    "hotkeys": {
        # Seeded into a directory's config file the first time it is opened.
        "defaults": [
            {"key": "J", "modifiers": [], "action": "previous_image"},
            {"key": "K", "modifiers": [], "action": "next_image"},
        ],
        "auto_assign_keys": ["1", "2", "3", "4", "5", "6", "7", "8", "9", "0"],
    },
}

def _default_config_path() -> str:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return os.path.join(xdg_config_home, "hito", "config.yaml")


def _deep_merge(base: dict, override: dict) -> dict:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigManager:
    """Application settings stored as YAML, layered over DEFAULT_CONFIG."""

    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or _default_config_path()
        self.config = self.load_config()

    def load_config(self):
        try:
            with open(self.config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            self.save_config(DEFAULT_CONFIG)
            return _deep_merge(DEFAULT_CONFIG, {})
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config at {self.config_path}") from exc
        if not isinstance(user_config, dict):
            raise ValueError(f"Config at {self.config_path} must be a mapping")
        return _deep_merge(DEFAULT_CONFIG, user_config)

    def save_config(self, config):
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def get(self, key, default=None):
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    def set(self, key, value):
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value
        self.save_config(self.config)

    @property
    def logging_level(self):
        return self.get("logging_level", "INFO")

    @property
    def config_filename(self) -> str:
        return self.get("config_filename", ".hito.json")
