# Agenda: configuration
# Defaults, overridden by agenda.yaml, overridden by environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

CONFIG_PATH = Path(__file__).parent.parent / "agenda.yaml"

# Environment variable → field, applied in order. The VITE_ names are
# accepted for deployments that share a .env with the web client; the
# plain names come later and win.
ENV_OVERRIDES = [
    ("VITE_SUPABASE_URL", "supabase_url"),
    ("SUPABASE_URL", "supabase_url"),
    ("VITE_SUPABASE_ANON_KEY", "supabase_anon_key"),
    ("SUPABASE_ANON_KEY", "supabase_anon_key"),
    ("AGENDA_DB", "db_path"),
    ("AGENDA_API_SECRET", "api_secret"),
]


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


@dataclass
class Config:
    """Runtime configuration for the planner service."""

    # Hosted backend (both empty = local-only mode)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Local storage area
    db_path: str = "~/.local/share/agenda/agenda.db"

    # Behavior: remote loading
    load_timeout: float = 8.0          # seconds before falling back
    request_timeout: float = 10.0      # per HTTP call
    fallback_to_local: bool = True     # False = surface the load error instead

    # Mutating API routes require X-API-Key when set
    api_secret: str = ""

    @property
    def backend_configured(self) -> bool:
        return bool(self.supabase_url.strip() and self.supabase_anon_key.strip())

    def resolve_paths(self):
        """Expand ~ in the storage path."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ: Optional[dict] = None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES:
            value = env.get(var)
            if value is not None and value.strip():
                setattr(self, attr, value.strip())

    def validate(self):
        if self.load_timeout <= 0:
            raise ConfigError(f"load_timeout must be > 0, got: {self.load_timeout}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be > 0, got: {self.request_timeout}")

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[dict] = None) -> "Config":
        """Load config from YAML file, falling back to defaults, then apply env."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
            cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        cfg.validate()
        return cfg
