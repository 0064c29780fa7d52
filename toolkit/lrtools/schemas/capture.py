from pydantic import BaseModel, Field, validator
from typing import Optional

ALLOWED_DURATIONS = (60, 300, 900)

OUTCOME_OK = "ok"
OUTCOME_FATAL = "fatal"
OUTCOME_DEGRADED = "degraded"


class CaptureRequest(BaseModel):
    target_ip: Optional[str] = Field(None, description="按IP过滤, 原样传给pktmon")
    target_port: Optional[int] = Field(None, ge=1, le=65535, description="按端口过滤")
    duration_seconds: int = Field(60, description="抓包时长(秒): 60, 300, 900")

    @validator('target_ip')
    def validate_target_ip(cls, v):
        # 空字符串视为未指定
        if v is None or not v.strip():
            return None
        return v

    @validator('duration_seconds')
    def validate_duration_seconds(cls, v):
        if v not in ALLOWED_DURATIONS:
            raise ValueError(f'抓包时长必须是 {", ".join(str(d) for d in ALLOWED_DURATIONS)} 之一')
        return v

    class Config:
        frozen = True


class CaptureResult(BaseModel):
    success: bool
    outcome: str
    pcap_path: Optional[str] = None
    etl_path: Optional[str] = None
    duration_seconds: int
    filtered_ip: Optional[str] = None
    filtered_port: Optional[int] = None
    filter_count: int = 0
    etl_size: Optional[int] = None
    pcap_size: Optional[int] = None
    cancelled: bool = False
    error: Optional[str] = None

    class Config:
        frozen = True


class CaptureTaskResponse(BaseModel):
    task_id: str
    status: str
    request: CaptureRequest
    started_at: float
    finished_at: Optional[float] = None
    result: Optional[CaptureResult] = None
