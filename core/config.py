"""
core/config.py - YAML 配置加载

config.yaml 中的字符串值可以引用环境变量：${NAME} 或 ${NAME:-default}，
读取时解析。点号路径读取：cfg.get("usage.daily_limit", 10)。
"""
import os
import re
from typing import Any, Dict

import yaml

VERSION = "1.0.0"
API_BASE = "/api"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class Config:
    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.reload()

    def reload(self) -> Dict[str, Any]:
        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self.config = data if isinstance(data, dict) else {}
        else:
            self.config = {}
        return self.config

    def replace_env_vars(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self.replace_env_vars(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.replace_env_vars(v) for v in value]
        if not isinstance(value, str):
            return value

        def _sub(match):
            name, default = match.group(1), match.group(2)
            return os.environ.get(name, default if default is not None else "")

        return _ENV_PATTERN.sub(_sub, value)

    def get(self, key: str, default: Any = None) -> Any:
        current: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        value = self.replace_env_vars(current)
        if value is None or value == "":
            return default
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")


DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml")

cfg = Config(os.getenv("CONFIG_FILE") or DEFAULT_CONFIG_FILE)
