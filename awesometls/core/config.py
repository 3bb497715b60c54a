from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .storage import APP_NAME


class CASettings(BaseModel):
    config_dir: Optional[str] = None
    app_name: str = Field(default=APP_NAME, min_length=1)
    cert_file: str = Field(default="ca.der", min_length=1)
    key_file: str = Field(default="caKey.der", min_length=1)
    verify_key_match: bool = True
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")

    @staticmethod
    def load_from_yaml(path: str) -> "CASettings":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return CASettings(**data)
