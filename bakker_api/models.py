from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .cron import validate_cron
from .utils import is_valid_config_name


class DatabaseEntry(BaseModel):
    db_host: str
    db_port: str = "3306"
    db_name: str
    db_user: str
    ignored_tables: List[str] = Field(default_factory=list)
    structure_only_tables: List[str] = Field(default_factory=list)

    @field_validator("db_port", mode="before")
    @classmethod
    def port_as_string(cls, value):
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("db_port")
    @classmethod
    def port_is_numeric(cls, value: str) -> str:
        if not value.isdigit() or not 0 < int(value) < 65536:
            raise ValueError(f"Invalid port: '{value}'")
        return value


class Schedule(BaseModel):
    database: str
    cron: str

    @field_validator("cron")
    @classmethod
    def cron_is_valid(cls, value: str) -> str:
        error = validate_cron(value)
        if error:
            raise ValueError(error)
        return value


class BackupConfig(BaseModel):
    retention: int = Field(default=5, ge=1)
    databases: Dict[str, DatabaseEntry] = Field(default_factory=dict)
    schedules: List[Schedule] = Field(default_factory=list)

    @field_validator("databases")
    @classmethod
    def names_are_safe(cls, value: Dict[str, DatabaseEntry]) -> Dict[str, DatabaseEntry]:
        for name in value:
            if not is_valid_config_name(name):
                raise ValueError(
                    f"Invalid database name '{name}': use letters, digits, '_', '.' or '-'"
                )
        return value

    @model_validator(mode="after")
    def schedules_reference_known_databases(self):
        for schedule in self.schedules:
            if schedule.database not in self.databases:
                raise ValueError(f"Schedule references unknown database: '{schedule.database}'")
        return self


@dataclass
class BackupArtifact:
    filename: str
    database: str
    timestamp: datetime
    size: int
    id: Optional[int] = None


@dataclass
class StatusRecord:
    database: str
    pid: int
    started: str
    running: bool = True

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "database": self.database,
            "pid": self.pid,
            "started": self.started,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusRecord":
        return cls(
            database=str(data["database"]),
            pid=int(data["pid"]),
            started=str(data.get("started", "")),
            running=bool(data.get("running", True)),
        )
