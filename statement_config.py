"""JSON configuration for the CLI runner and the web service.

Every section is optional; a minimal file is ``{}``::

    {
      "parser": {"difference_tolerance": "0.01", "exclusion_patterns": ["INTEREST CHARGES"]},
      "runner": {"output_format": "csv", "start_date": "2025-01-01"},
      "server": {"host": "127.0.0.1", "port": 8000},
      "database": {"sqlite_path": "web/data/app.db"},
      "storage": {"upload_dir": "web/data/uploads"},
      "users": [{"username": "admin", "token": "...", "role": "admin"}]
    }
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ctfs_statement_parser import StatementError
from transaction_filter import ParserOptions


class ConfigError(StatementError):
    pass


class RunnerOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    input_paths: List[Path] = Field(default_factory=list)
    # Inclusive start, exclusive end; matched against a YYYY-MM-DD file name prefix.
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    write_extracted_text: bool = False
    output_format: Literal["json", "csv"] = "json"
    output_path: Optional[Path] = None

    @model_validator(mode="after")
    def _check_range(self) -> "RunnerOptions":
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class ServerOptions(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseOptions(BaseModel):
    sqlite_path: Path = Path("web/data/app.db")


class StorageOptions(BaseModel):
    upload_dir: Path = Path("web/data/uploads")


class UserEntry(BaseModel):
    username: str = "unknown"
    token: str = ""
    role: Literal["admin", "user"] = "user"

    @field_validator("role", mode="before")
    @classmethod
    def _lower_role(cls, v):
        return str(v).strip().lower() if v is not None else "user"


class AppConfig(BaseModel):
    parser: ParserOptions = Field(default_factory=ParserOptions)
    runner: RunnerOptions = Field(default_factory=RunnerOptions)
    server: ServerOptions = Field(default_factory=ServerOptions)
    database: DatabaseOptions = Field(default_factory=DatabaseOptions)
    storage: StorageOptions = Field(default_factory=StorageOptions)
    users: List[UserEntry] = Field(default_factory=list)


def load_config(path: Optional[Path]) -> AppConfig:
    if path is None:
        return AppConfig()
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc
