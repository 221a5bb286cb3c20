import asyncio
import json
import logging
import os
import sys
from contextlib import asynccontextmanager

# Add current directory to path so we can import backend modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from typing import Any, Dict, Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from config import load_mirror_config
from economy import CommunityEconomy
from mirror import MirrorOutbox, build_mirror
from run_simulation import compute_household_stats, create_community_economy

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    manager.stop()
    manager.shutdown_mirror()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SetupConfig(BaseModel):
    num_households: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None
    ai_redistribution: bool = False
    tick_interval: float = Field(default=1.0, gt=0)


class TransferCommand(BaseModel):
    from_id: str
    to_id: str
    amount: float = Field(allow_inf_nan=False)
    ai_suggested: bool = False


class BidCommand(BaseModel):
    task_id: str
    household_id: str
    amount: float = Field(allow_inf_nan=False)


class TokenizeCommand(BaseModel):
    household_id: str
    hours: float = Field(default=1.0, allow_inf_nan=False)


class AIToggleCommand(BaseModel):
    enabled: Optional[bool] = None


class ActivateProgramCommand(BaseModel):
    sector: str


class SubmitProofCommand(BaseModel):
    job_id: str
    household_id: str
    proof: str


class VerifyJobCommand(BaseModel):
    job_id: str


class FundPoolCommand(BaseModel):
    amount: float = Field(allow_inf_nan=False)


class SimulationManager:
    def __init__(self):
        self.economy: Optional[CommunityEconomy] = None
        self.mirror: Optional[MirrorOutbox] = None
        self.is_running = False
        self.tick_interval = 1.0
        self.active_websocket: Optional[WebSocket] = None
        self.loop_task: Optional[asyncio.Task] = None

    def initialize(self, config: Optional[Dict[str, Any]] = None):
        setup = SetupConfig(**(config or {}))

        self.shutdown_mirror()
        self.mirror = build_mirror(load_mirror_config())
        if self.mirror is not None:
            self.mirror.start()

        logger.info("Initializing community economy (households=%s, seed=%s)", setup.num_households, setup.seed)
        self.economy = create_community_economy(
            num_households=setup.num_households,
            seed=setup.seed,
            mirror=self.mirror,
        )
        if setup.ai_redistribution:
            self.economy.set_ai_redistribution(True)
        self.tick_interval = setup.tick_interval
        logger.info("Economy initialized")

    def shutdown_mirror(self):
        if self.mirror is not None:
            self.mirror.flush(timeout=2.0)
            self.mirror.stop()
            self.mirror = None

    def state_message(self, message_type: str, **extra) -> Dict[str, Any]:
        state = self.economy.snapshot()
        state["household_stats"] = compute_household_stats(self.economy.households)
        return {"type": message_type, **extra, "state": state}

    def execute(self, command: str, payload: Dict[str, Any]) -> Any:
        """
        Apply one economy command. Returns the operation's result (None for
        rejected operations). Raises ValidationError for malformed payloads
        and KeyError for unknown commands.
        """
        economy = self.economy
        if command == "CYCLE":
            return economy.run_cycle()
        elif command == "SHOCK":
            return economy.simulate_shock()
        elif command == "TRANSFER":
            cmd = TransferCommand(**payload)
            return economy.transfer_credits(cmd.from_id, cmd.to_id, cmd.amount, ai_suggested=cmd.ai_suggested)
        elif command == "BID":
            cmd = BidCommand(**payload)
            return economy.submit_bid(cmd.task_id, cmd.household_id, cmd.amount)
        elif command == "TOKENIZE":
            cmd = TokenizeCommand(**payload)
            return economy.tokenize_labor(cmd.household_id, cmd.hours)
        elif command == "AI_TOGGLE":
            cmd = AIToggleCommand(**payload)
            if cmd.enabled is None:
                return economy.toggle_ai_redistribution()
            return economy.set_ai_redistribution(cmd.enabled)
        elif command == "AI_SUGGESTION":
            return economy.get_ai_suggestion()
        elif command == "ACTIVATE_PROGRAM":
            cmd = ActivateProgramCommand(**payload)
            return economy.activate_program(cmd.sector)
        elif command == "SUBMIT_PROOF":
            cmd = SubmitProofCommand(**payload)
            return economy.submit_job_proof(cmd.job_id, cmd.household_id, cmd.proof)
        elif command == "VERIFY_JOB":
            cmd = VerifyJobCommand(**payload)
            return economy.verify_job(cmd.job_id)
        elif command == "FUND_POOL":
            cmd = FundPoolCommand(**payload)
            return economy.fund_emergency_pool(cmd.amount) or None
        elif command == "PILOT":
            return economy.run_pilot_simulation()
        raise KeyError(command)

    async def run_loop(self):
        if not self.economy:
            logger.warning("Attempted to run loop without economy. Waiting for SETUP.")
            return

        logger.info("Starting simulation loop")
        try:
            while self.is_running and self.active_websocket:
                start_time = asyncio.get_event_loop().time()

                # One tick at a time; the next starts only after this one is sent
                point = self.economy.run_cycle()
                await self.active_websocket.send_json(
                    self.state_message("TICK", cycle=point.cycle, trend_point=point.to_dict())
                )

                # Throttle
                elapsed = asyncio.get_event_loop().time() - start_time
                await asyncio.sleep(max(0.0, self.tick_interval - elapsed))
        except WebSocketDisconnect:
            self.is_running = False
        except Exception as e:
            logger.error(f"Simulation loop error: {e}")
            self.is_running = False
        finally:
            logger.info("Simulation loop stopped")

    def start(self):
        if self.is_running:
            return
        self.is_running = True
        # A loop stopped mid-sleep is still alive and resumes on its next check
        if self.loop_task is not None and not self.loop_task.done():
            return
        self.loop_task = asyncio.create_task(self.run_loop())

    def stop(self):
        self.is_running = False


manager = SimulationManager()


def _result_to_json(result: Any) -> Any:
    if isinstance(result, list):
        return [_result_to_json(r) for r in result]
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return result


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager.active_websocket = websocket
    logger.info("WebSocket connected")

    try:
        while True:
            data = await websocket.receive_json()
            command = data.get("command")

            if command == "SETUP":
                try:
                    manager.initialize(data.get("config", {}))
                except ValidationError as e:
                    await websocket.send_json({"type": "ERROR", "command": command, "detail": json.loads(e.json())})
                    continue
                await websocket.send_json(manager.state_message("SETUP_COMPLETE"))
                continue

            if not manager.economy:
                # Auto-initialize if not done yet (fallback)
                manager.initialize()

            if command == "START":
                manager.start()
                await websocket.send_json({"type": "STARTED", "cycle": manager.economy.cycle})
            elif command == "STOP":
                manager.stop()
                await websocket.send_json({"type": "STOPPED", "cycle": manager.economy.cycle})
            elif command == "RESET":
                manager.stop()
                manager.initialize(data.get("config", {}))
                await websocket.send_json(manager.state_message("RESET"))
            elif command == "STATE":
                await websocket.send_json(manager.state_message("STATE"))
            else:
                try:
                    result = manager.execute(command, data.get("payload", {}))
                except ValidationError as e:
                    await websocket.send_json({"type": "ERROR", "command": command, "detail": json.loads(e.json())})
                    continue
                except KeyError:
                    await websocket.send_json({"type": "ERROR", "command": command, "detail": "unknown command"})
                    continue
                await websocket.send_json(manager.state_message(
                    "COMMAND_RESULT",
                    command=command,
                    accepted=result is not None,
                    result=_result_to_json(result),
                ))

    except WebSocketDisconnect:
        manager.stop()
        manager.active_websocket = None
        logger.info("Client disconnected")
