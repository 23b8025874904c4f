#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Token Aggregator
Main Entry Point

启动 API 服务；组件在应用生命周期内由 ServiceBuilder 构建和清理。
"""

import sys

import uvicorn

from token_aggregator.api.server import create_app
from token_aggregator.core.config import get_config
from token_aggregator.core.logger import get_logger, init_logging_from_config


def main() -> int:
    """主函数"""
    # 初始化日志系统 (内部会自动加载配置)
    init_logging_from_config()

    config = get_config()
    logger = get_logger(__name__)
    logger.info(f"✓ [系统] 启动中... http://{config.api_host}:{config.api_port}")

    try:
        uvicorn.run(
            create_app(),
            host=config.api_host,
            port=config.api_port,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("收到 KeyboardInterrupt，准备退出。")
    except Exception as e:
        logger.critical(f"致命错误: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
