from pydantic import BaseModel, Field
from typing import List, Optional


class AuthRequired(BaseModel):
    required: bool
    decryptionFailed: bool


class PasswordSet(BaseModel):
    password: str = Field(min_length=1)


class PasswordValue(BaseModel):
    password: str


class PasswordStatus(BaseModel):
    configs: List[str]
    enabled: bool
    decryptionFailed: bool


class TriggerRequest(BaseModel):
    database: str = Field(min_length=1)


class TriggerResponse(BaseModel):
    success: bool
    message: str
    pid: int


class JobStatus(BaseModel):
    database: str
    pid: int
    started: str


class StatusResponse(BaseModel):
    running: bool
    jobs: List[JobStatus]


class BackupInfo(BaseModel):
    id: int
    filename: str
    database: str
    date: str
    size: int
    sizeMB: str


class ConfigWriteResponse(BaseModel):
    success: bool
    crontabUpdated: bool


class CronDescription(BaseModel):
    valid: bool
    error: Optional[str] = None
    description: Optional[str] = None
