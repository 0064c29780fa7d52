from pydantic import BaseModel, Field, validator
from typing import Optional

from lrtools.core.config import settings


class ArchiveRequest(BaseModel):
    file_path: str = Field(..., min_length=1, description="待打包的文件")
    password: str = Field(default_factory=lambda: settings.archive_password, description="压缩包密码")
    output_path: Optional[str] = Field(None, description="输出路径, 默认为 <file_path>.zip")

    @validator('password')
    def validate_password(cls, v):
        if not v:
            raise ValueError('密码不能为空')
        return v


class ArchiveResult(BaseModel):
    success: bool
    source_path: str
    archive_path: Optional[str] = None
    archive_size: Optional[int] = None
    error: Optional[str] = None
