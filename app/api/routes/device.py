"""
Device Routes
=============

Manual device console for checking a setup before running tasks.

Provides:
- Display size and density
- Raw UI hierarchy dump
- Labeled element list and annotated screenshot
- Single gestures (tap, long press, swipe, text, back)

Gestures are refused while a task is driving the device.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from app.agent.console import DeviceConsole
from app.api.routes.tasks import _tasks
from app.config import Settings, get_settings
from app.device.interfaces import GestureResult
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/device", tags=["Device"])


# Request/Response Models
class DeviceInfoResponse(BaseModel):
    """Display geometry of the connected device."""

    serial: Optional[str] = None
    width: int
    height: int
    physical_width: int
    physical_height: int
    dpi: int
    density: float


class ElementsResponse(BaseModel):
    """Labeled elements of the current screen."""

    count: int
    elements: list[dict[str, Any]]
    annotated_path: str


class PointRequest(BaseModel):
    x: int = Field(ge=0, description="X coordinate in screen pixels")
    y: int = Field(ge=0, description="Y coordinate in screen pixels")


class LongPressRequest(PointRequest):
    duration_ms: int = Field(default=1000, ge=100, le=10000)


class SwipeRequest(BaseModel):
    start_x: int = Field(ge=0)
    start_y: int = Field(ge=0)
    end_x: int = Field(ge=0)
    end_y: int = Field(ge=0)
    duration_ms: int = Field(default=500, ge=50, le=10000)


class TextRequest(BaseModel):
    text: str = Field(max_length=1000, description="New content of the focused field")


class GestureResponse(BaseModel):
    """Outcome of a manual gesture."""

    completed: bool
    cancelled: bool = False
    error: Optional[str] = None
    duration_ms: int = 0

    @classmethod
    def from_result(cls, result: GestureResult) -> "GestureResponse":
        return cls(
            completed=result.completed,
            cancelled=result.cancelled,
            error=result.error,
            duration_ms=result.duration_ms,
        )


async def get_device_console(settings: Settings = Depends(get_settings)) -> DeviceConsole:
    """Dependency returning a console on the configured device (overridden in tests)."""
    console = DeviceConsole.from_settings(settings)
    await console.connect()
    return console


def connected_console(console: DeviceConsole = Depends(get_device_console)) -> DeviceConsole:
    """
    Require a reachable device.

    Raises:
        HTTPException: 503 if no device is connected.
    """
    if not console.is_connected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No ADB device connected",
        )
    return console


def idle_console(console: DeviceConsole = Depends(connected_console)) -> DeviceConsole:
    """
    Require a connected device that no task is driving.

    Raises:
        HTTPException: 409 if a task is running.
    """
    running = [r for r in _tasks.values() if not r.is_done]
    if running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Task {running[0].task_id} is driving the device",
        )
    return console


@router.get(
    "/info",
    response_model=DeviceInfoResponse,
    summary="Display size and density",
)
async def device_info(console: DeviceConsole = Depends(connected_console)) -> DeviceInfoResponse:
    """Report the screen size the device renders at, its panel size and density."""
    info = await console.display_info()
    return DeviceInfoResponse(**info.to_dict())


@router.get(
    "/ui-dump",
    summary="Raw UI hierarchy",
    response_class=Response,
)
async def ui_dump(console: DeviceConsole = Depends(connected_console)) -> Response:
    """
    Dump the current UI hierarchy as uiautomator XML.

    Raises:
        HTTPException: 502 if the dump could not be read.
    """
    xml_content = await console.ui_dump()
    if xml_content is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not read the UI hierarchy",
        )
    return Response(content=xml_content, media_type="application/xml")


@router.get(
    "/elements",
    response_model=ElementsResponse,
    summary="Labeled elements",
)
async def list_elements(console: DeviceConsole = Depends(connected_console)) -> ElementsResponse:
    """
    Extract and label the interactive elements and save the annotated screenshot.

    Element ``label`` is the number drawn on the screenshot.
    """
    try:
        screen = await console.inspect()
    except RuntimeError as e:
        logger.error("Screen inspection failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to capture screenshot: {e}",
        )

    return ElementsResponse(
        count=len(screen.elements),
        elements=[{"label": i, **e.to_dict()} for i, e in enumerate(screen.elements, start=1)],
        annotated_path=str(screen.annotated.path),
    )


@router.get(
    "/screenshot",
    summary="Current screenshot",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def screenshot(
    annotated: bool = Query(default=False, description="Draw element labels"),
    console: DeviceConsole = Depends(connected_console),
) -> Response:
    """Return the current screen as PNG, optionally labeled."""
    try:
        if annotated:
            png = (await console.inspect()).annotated.png
        else:
            png = await console.bridge.screenshot()
    except RuntimeError as e:
        logger.error("Screenshot failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to capture screenshot: {e}",
        )
    return Response(content=png, media_type="image/png")


@router.post("/tap", response_model=GestureResponse, summary="Tap")
async def tap(request: PointRequest, console: DeviceConsole = Depends(idle_console)) -> GestureResponse:
    return GestureResponse.from_result(await console.tap(request.x, request.y))


@router.post("/long-press", response_model=GestureResponse, summary="Long press")
async def long_press(
    request: LongPressRequest,
    console: DeviceConsole = Depends(idle_console),
) -> GestureResponse:
    return GestureResponse.from_result(
        await console.long_press(request.x, request.y, request.duration_ms)
    )


@router.post("/swipe", response_model=GestureResponse, summary="Swipe")
async def swipe(request: SwipeRequest, console: DeviceConsole = Depends(idle_console)) -> GestureResponse:
    result = await console.swipe(
        request.start_x,
        request.start_y,
        request.end_x,
        request.end_y,
        request.duration_ms,
    )
    return GestureResponse.from_result(result)


@router.post("/text", response_model=GestureResponse, summary="Set text of the focused field")
async def set_text(request: TextRequest, console: DeviceConsole = Depends(idle_console)) -> GestureResponse:
    return GestureResponse.from_result(await console.set_text(request.text))


@router.post("/back", response_model=GestureResponse, summary="Press back")
async def back(console: DeviceConsole = Depends(idle_console)) -> GestureResponse:
    return GestureResponse.from_result(await console.back())
