"""
FastAPI应用主文件
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from token_aggregator.api.routes import stream, tokens
from token_aggregator.api.websocket import ConnectionManager
from token_aggregator.core.builder import ServiceBuilder, TokenServices
from token_aggregator.core.logger import get_logger

logger = get_logger(__name__)


def create_app(
    services: Optional[TokenServices] = None,
    start_detector: bool = True,
) -> FastAPI:
    """
    创建FastAPI应用

    Args:
        services: 预先构建好的服务；None 时在启动阶段由 ServiceBuilder 构建
        start_detector: 启动阶段是否开启变化检测后台任务
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info("Starting API server...")

        builder: Optional[ServiceBuilder] = None
        if app.state.services is None:
            builder = ServiceBuilder()
            app.state.services = await builder.build()

        current: TokenServices = app.state.services
        current.broadcaster.attach(app.state.connections)
        if start_detector:
            await current.detector.start()

        yield

        logger.info("Shutting down API server...")
        if builder is not None:
            await builder.cleanup()
        elif start_detector:
            await current.detector.stop()

    app = FastAPI(
        title="Token Aggregator API",
        description="Solana 代币多数据源聚合服务",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.connections = ConnectionManager()

    # 配置CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册路由
    app.include_router(tokens.router, prefix="/api", tags=["tokens"])
    app.include_router(stream.router, tags=["stream"])

    @app.get("/")
    async def root():
        """根路径"""
        return {
            "name": "Token Aggregator API",
            "version": "0.1.0",
            "status": "running",
        }

    return app
