from pydantic import BaseModel, Field, validator

from lrtools.core.config import settings


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1, description="要执行的命令行")
    timeout: int = Field(default_factory=lambda: settings.command_timeout, gt=0, description="超时时间(秒)")

    @validator('command')
    def validate_command(cls, v):
        if not v.strip():
            raise ValueError('命令不能为空')
        return v


class CommandResult(BaseModel):
    command: str
    success: bool
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0
