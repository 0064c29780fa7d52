import logging

from fastapi import FastAPI

from lrtools.api import capture, archive, command
from lrtools.core.config import settings
from lrtools.utils.capture_tasks import CaptureTaskManager

logging.basicConfig(level=settings.log_level)

# 定义 OpenAPI 信息
openapi_info = {
    "title": "LR-Toolkit 应急响应工具",
    "description": """
    ## LR-Toolkit 应急响应工具 API

    在 Microsoft Defender Live Response 会话中使用的辅助工具：

    - **网络抓包**: 基于 pktmon 的限时抓包，自动转换为 pcap
    - **加密打包**: 使用 7-Zip 为取证文件加密打包
    - **命令执行**: 执行命令并返回输出
    """,
    "version": "1.0.0",
}

app = FastAPI(
    **openapi_info,
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# pktmon状态是整机共享的, 抓包任务注册表在应用内唯一
app.state.capture_tasks = CaptureTaskManager()

# 注册路由
app.include_router(capture.router, prefix="/api/capture", tags=["网络抓包"])
app.include_router(archive.router, prefix="/api/archive", tags=["加密打包"])
app.include_router(command.router, prefix="/api/command", tags=["命令执行"])

@app.get("/", tags=["根路径"])
async def root():
    """系统根路径，返回系统信息"""
    return {
        "message": f"{settings.app_name} API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc"
    }

@app.get("/health", tags=["健康检查"])
async def health_check():
    """健康检查接口"""
    return {"status": "healthy", "active_capture": app.state.capture_tasks.active_task_id}
