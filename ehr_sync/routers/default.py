from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()


def _version() -> str:
    try:
        return version("ehr-sync")
    except PackageNotFoundError:
        return "unknown"


@router.get("/", response_class=PlainTextResponse)
def index() -> str:
    return f"EHR sync service, version {_version()}\n"
