import os
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """全局默认配置（单次压测的参数通过 RunOptions 显式传递）"""

    # 应用
    APP_NAME: str = "Load Test Platform"
    APP_VERSION: str = "0.1.0"

    # 请求
    DEFAULT_REQUEST_TIMEOUT: float = float(os.getenv("DEFAULT_REQUEST_TIMEOUT", "60.0"))
    MAX_CONNECTIONS: int = int(os.getenv("MAX_CONNECTIONS", "100"))

    # 调度
    DEFAULT_GRACE_TIMEOUT: float = float(os.getenv("DEFAULT_GRACE_TIMEOUT", "30.0"))

    # 指标
    MAX_ERROR_SAMPLES: int = 50  # 报告中保留的错误信息条数

    # 日志
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "console")

    # 报告输出目录
    REPORTS_DIR: Path = Path(os.getenv("REPORTS_DIR", "./reports"))

    # 场景配置目录
    SCENARIOS_DIR: Path = Path(__file__).parent.parent / "scenarios" / "examples"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
