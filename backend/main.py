import logging
import os
from typing import Any, Dict, List, Optional, Set

import uvloop
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from devices import DeviceCommandError, WebBridgeDevice
from events import EngineEvent, EventBus
from history_store import HistoryStore, SampleArchive
from plan import default_plan, item_from_dict, items_from_config
from plan_runner import PlanRunner
from plan_store import PlanStore
from timers import LoopScheduler
from workout_controller import WorkoutSessionController

# Install and use uvloop as the default event loop
uvloop.install()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

WORKOUTS_DIR = os.getenv("WORKOUTS_DIR", "workouts")
PLANS_PATH = os.getenv("PLANS_PATH", "plans.json")
SAMPLE_HISTORY_SECONDS = float(os.getenv("SAMPLE_HISTORY_SECONDS", "600"))
WARMUP_REPS = int(os.getenv("WARMUP_REPS", "3"))

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Workout engine ---
bus = EventBus()
device = WebBridgeDevice()
history = HistoryStore(WORKOUTS_DIR)
archive = SampleArchive(retention_seconds=SAMPLE_HISTORY_SECONDS)
device.add_monitor_listener(archive.on_sample)
scheduler = LoopScheduler()
controller = WorkoutSessionController(
    device, history, archive, scheduler, bus=bus, warmup_reps=WARMUP_REPS
)
runner = PlanRunner(controller, device, scheduler, bus=bus)
plan_store = PlanStore(PLANS_PATH)

connections: Set[WebSocket] = set()


async def _send_event(websocket: WebSocket, message: Dict[str, Any]):
    try:
        await websocket.send_json(message)
    except (RuntimeError, WebSocketDisconnect) as e:
        logger.debug("Dropping event for closed socket: %s", e)


def _broadcast(event: EngineEvent):
    if not connections:
        return
    message = {"kind": "event", **event.to_dict()}
    for websocket in list(connections):
        scheduler.spawn(_send_event(websocket, message))


bus.subscribe(_broadcast)


class StartPlanRequest(BaseModel):
    items: Optional[List[Dict[str, Any]]] = None
    name: Optional[str] = None  # saved plan to run when no items are given


class SavePlanRequest(BaseModel):
    name: str
    items: List[Dict[str, Any]]


class ExtendRestRequest(BaseModel):
    seconds: float = 30.0


class StopAtTopRequest(BaseModel):
    enabled: bool


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"status": "error", "message": str(exc)})


@app.exception_handler(DeviceCommandError)
async def device_error_handler(request: Request, exc: DeviceCommandError):
    return JSONResponse(status_code=502, content={"status": "error", "message": str(exc)})


def _summary(record) -> Dict[str, Any]:
    data = record.to_dict()
    data["movement_points"] = len(data.pop("movement_data", None) or [])
    return data


@app.get("/")
def read_root():
    return {
        "message": "Welcome to the Workout Session Engine API",
        "device": device.name,
        "connected": device.is_connected,
    }


@app.get("/status")
async def get_status():
    return {
        "connected": device.is_connected,
        "workout": controller.status(),
        "plan": runner.status(),
    }


@app.post("/settings/stop_at_top")
async def set_stop_at_top(request: StopAtTopRequest):
    controller.stop_at_top = request.enabled
    return {"stop_at_top": controller.stop_at_top}


@app.post("/workout/start")
async def start_workout(item_data: Dict[str, Any]):
    """Start a standalone program or echo block."""
    item = item_from_dict(item_data)
    if runner.active:
        raise HTTPException(status_code=409, detail="A plan is running; cancel it first.")
    session = await controller.start_block(item)
    return {"status": "success", "session": session.to_dict()}


@app.post("/workout/stop")
async def stop_workout():
    if not controller.is_active:
        raise HTTPException(status_code=409, detail="No active workout.")
    record = await controller.stop_workout()
    return {"status": "success", "workout": _summary(record) if record else None}


@app.post("/plan/start")
async def start_plan(request: StartPlanRequest):
    if request.items is not None:
        items = items_from_config(request.items)
    elif request.name:
        try:
            items = plan_store.load(request.name)
        except KeyError:
            raise HTTPException(status_code=404, detail=f'Plan "{request.name}" not found.')
    else:
        items = default_plan()

    if not device.is_connected:
        raise HTTPException(status_code=409, detail="Please connect your device before starting a plan.")
    if not items:
        raise HTTPException(status_code=400, detail="No items in plan.")
    await runner.start(items)
    return {"status": "success", "plan": runner.status()}


@app.post("/plan/cancel")
async def cancel_plan():
    runner.cancel()
    return {"status": "success", "plan": runner.status()}


@app.post("/plan/rest/skip")
async def skip_rest():
    if not runner.skip_rest():
        raise HTTPException(status_code=409, detail="Not resting.")
    return {"status": "success", "plan": runner.status()}


@app.post("/plan/rest/extend")
async def extend_rest(request: ExtendRestRequest):
    if not runner.extend_rest(request.seconds):
        raise HTTPException(status_code=409, detail="Not resting.")
    return {"status": "success", "plan": runner.status()}


@app.get("/history")
async def get_history(limit: int = 50):
    records = history.all_records()[: max(0, limit)]
    return {"total": len(history), "workouts": [_summary(r) for r in records]}


@app.get("/plans")
def list_plans():
    return {"plans": plan_store.names()}


@app.get("/plans/default")
def get_default_plan():
    return {"items": [item.to_dict() for item in default_plan()]}


@app.get("/plans/{name}")
def get_plan(name: str):
    try:
        items = plan_store.load(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f'Plan "{name}" not found.')
    return {"name": name, "items": [item.to_dict() for item in items]}


@app.post("/plans")
def save_plan(request: SavePlanRequest):
    items = items_from_config(request.items)
    plan_store.save(request.name, items)
    return {"status": "success", "plans": plan_store.names()}


@app.delete("/plans/{name}")
def delete_plan(name: str):
    if not plan_store.delete(name):
        raise HTTPException(status_code=404, detail=f'Plan "{name}" not found.')
    return {"status": "success", "plans": plan_store.names()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    BLE bridge socket. Inbound messages:

        {"type": "sample", "data": {"loadA": .., "loadB": .., "posA": .., "posB": ..}}
        {"type": "notification", "data": <byte list | hex | base64>}

    Outbound: {"kind": "command", "command": ...} for the machine and
    {"kind": "event", "type": ...} for every engine event.
    """
    logger.info("WebSocket connection attempt received.")

    async def send_command(message: Dict[str, Any]):
        await websocket.send_json({"kind": "command", **message})

    # Attach before accepting so a connected client can start a workout at once.
    device.attach(send_command)
    await websocket.accept()
    connections.add(websocket)
    logger.info("WebSocket connection accepted.")

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                logger.warning("Received malformed data packet")
                continue

            kind = message.get("type")
            try:
                if kind == "sample":
                    await device.push_sample(message.get("data") or {})
                elif kind == "notification":
                    await device.push_notification(message.get("data"))
                else:
                    logger.warning("Unknown bridge message type %r", kind)
            except DeviceCommandError as e:
                logger.error("Device command failed: %s", e)
            except (TypeError, ValueError) as e:
                logger.warning("Dropping malformed %s message: %s", kind, e)

    except WebSocketDisconnect:
        logger.info("Bridge disconnected")
    except Exception as websocket_error:
        logger.error("WebSocket connection error: %s", websocket_error)
    finally:
        connections.discard(websocket)
        if device.sender is send_command:
            device.detach()
        logger.info("Client connection closed")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
