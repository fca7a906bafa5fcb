from typing import Any
from ehr_sync.services.scheduler import Scheduler
from fastapi import APIRouter, Depends

from ehr_sync.container import get_export_scheduler

router = APIRouter(prefix="/scheduler", tags=["Scheduled background exports"])


@router.post("/start")
def start_scheduled_export(service: Scheduler = Depends(get_export_scheduler)) -> None:
    return service.start()


@router.post("/stop", summary="Stops background scheduled exports")
def stop_scheduled_exports(service: Scheduler = Depends(get_export_scheduler)) -> None:
    return service.stop()


@router.get("/runner_logs")
def get_runner_history_logs(
    service: Scheduler = Depends(get_export_scheduler),
) -> list[dict[str, Any]]:
    return service.get_runner_history()
