import logging

from typing import Any

from fastapi import FastAPI
import uvicorn

from ehr_sync.container import get_export_scheduler, setup_container
from ehr_sync.routers.default import router as default_router
from ehr_sync.routers.health import router as health_router
from ehr_sync.routers.export_router import router as export_router
from ehr_sync.routers.adapter_router import router as adapter_router
from ehr_sync.routers.scheduler_router import router as scheduler_router
from ehr_sync.config import get_config
from ehr_sync.stats import StatsdMiddleware, setup_stats


def get_uvicorn_params() -> dict[str, Any]:
    config = get_config()
    kwargs = {
        "host": config.uvicorn.host,
        "port": config.uvicorn.port,
        "reload": config.uvicorn.reload,
        "reload_delay": config.uvicorn.reload_delay,
        "reload_dirs": config.uvicorn.reload_dirs,
    }
    if (
        config.uvicorn.use_ssl
        and config.uvicorn.ssl_base_dir is not None
        and config.uvicorn.ssl_cert_file is not None
        and config.uvicorn.ssl_key_file is not None
    ):
        kwargs["ssl_keyfile"] = (
            config.uvicorn.ssl_base_dir + "/" + config.uvicorn.ssl_key_file
        )
        kwargs["ssl_certfile"] = (
            config.uvicorn.ssl_base_dir + "/" + config.uvicorn.ssl_cert_file
        )

    return kwargs


def run() -> None:
    uvicorn.run("ehr_sync.application:create_fastapi_app", factory=True, **get_uvicorn_params())


def create_fastapi_app() -> FastAPI:
    if get_config().stats.enabled:
        setup_stats()

    application_init()
    return setup_fastapi()


def application_init() -> None:
    config = get_config()
    setup_logging()
    setup_container()
    if config.scheduler.automatic_background_export:
        get_export_scheduler().start()


def setup_logging() -> None:
    loglevel = logging.getLevelName(get_config().app.loglevel.upper())

    if isinstance(loglevel, str):
        raise ValueError(f"Invalid loglevel {loglevel.upper()}")
    logging.basicConfig(
        level=loglevel,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )


def setup_fastapi() -> FastAPI:
    config = get_config()

    fastapi = (
        FastAPI(docs_url=config.uvicorn.docs_url, redoc_url=config.uvicorn.redoc_url)
        if config.uvicorn.swagger_enabled
        else FastAPI(docs_url=None, redoc_url=None)
    )

    routers = [
        default_router,
        health_router,
        export_router,
        adapter_router,
        scheduler_router,
    ]
    for router in routers:
        fastapi.include_router(router)

    stats_conf = config.stats
    if stats_conf.enabled:
        fastapi.add_middleware(StatsdMiddleware, module_name=stats_conf.module_name or "ehr_sync")

    return fastapi
