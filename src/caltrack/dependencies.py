"""
FastAPI dependencies resolving the services built in the application lifespan
"""

from fastapi import HTTPException, Request, WebSocket, status

from .services.broadcaster import ChangeBroadcaster
from .services.machine_registry import MachineRegistry
from .services.record_service import RecordService


def _state_attr(app, name: str):
    service = getattr(app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting or shutting down"
        )
    return service


def get_record_service(request: Request) -> RecordService:
    return _state_attr(request.app, "record_service")


def get_machine_registry(request: Request) -> MachineRegistry:
    return _state_attr(request.app, "machine_registry")


def get_broadcaster(request: Request) -> ChangeBroadcaster:
    return _state_attr(request.app, "broadcaster")


def get_ws_broadcaster(websocket: WebSocket) -> ChangeBroadcaster:
    # WebSocket routes cannot receive Request-typed dependencies
    return _state_attr(websocket.app, "broadcaster")
