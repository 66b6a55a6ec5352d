from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from .errors import ConfigError

"""
config.py - the two JSON files the launchers read.

server-config.json:
    {"port": 9000, "logFile": "server.log", "maxClients": 10}

hosts.json:
    {"hosts": [{"alias": "local", "host": "127.0.0.1", "port": 9000}]}

Both load through pydantic so range checks live next to the field
definitions. Any problem comes back as ConfigError with a readable message.
"""

PathLike = Union[str, Path]


def _read(path: PathLike) -> str:
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Config file not found at '{p}'")
    return p.read_text(encoding="utf-8")


def _explain(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(x) for x in err.get("loc", ()))
        parts.append(f"{where}: {err.get('msg')}" if where else str(err.get("msg")))
    return "; ".join(parts)


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


class ServerConfig(BaseModel):
    """Listen port, log file path, and the concurrent client ceiling."""

    model_config = ConfigDict(populate_by_name=True)

    port: StrictInt = Field(ge=1025, le=65535)
    log_file: str = Field(alias="logFile")
    max_clients: StrictInt = Field(alias="maxClients", gt=0)

    @field_validator("log_file")
    @classmethod
    def _log_file_not_blank(cls, value: str) -> str:
        return _not_blank(value)

    @classmethod
    def load(cls, path: PathLike) -> "ServerConfig":
        raw = _read(path)
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ConfigError(f"Config file is invalid: {_explain(exc)}") from exc


class HostEntry(BaseModel):
    alias: str
    host: str
    port: StrictInt = Field(ge=1, le=65535)

    @field_validator("alias", "host")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        return _not_blank(value)


class HostsConfig(BaseModel):
    """Alias -> (host, port) table for the client launcher."""

    hosts: List[HostEntry] = Field(default_factory=list)

    def find_by_alias(self, alias: str) -> Optional[HostEntry]:
        """Case-insensitive; first match wins."""
        wanted = alias.lower()
        for entry in self.hosts:
            if entry.alias.lower() == wanted:
                return entry
        return None

    @classmethod
    def load(cls, path: PathLike) -> "HostsConfig":
        raw = _read(path)
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ConfigError(f"Invalid hosts config: {_explain(exc)}") from exc
