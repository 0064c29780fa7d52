from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # pktmon配置
    pktmon_path: str = "pktmon"
    pktmon_timeout: int = 60

    # 抓包配置 - 空字符串表示当前工作目录
    output_dir: str = ""
    progress_interval_cap: int = 10

    # 7-Zip配置
    sevenzip_download_url: str = "https://www.7-zip.org/a/7za920.zip"
    sevenzip_path: Optional[str] = None
    download_timeout: int = 60
    archive_password: str = "infected"

    # 命令执行配置
    command_timeout: int = 300

    # 应用配置
    app_name: str = "LR-Toolkit"
    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        env_prefix = "LR_"

settings = Settings()
