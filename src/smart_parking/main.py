"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api.router import init_router, router
from .config import AppConfig, get_config_path, load_config
from .events import EventBus, SlotEvent
from .scheduling.lifecycle import LifecycleScheduler
from .scheduling.timers import AsyncioTimerService, SystemClock

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global state
config: AppConfig | None = None
timer_service: AsyncioTimerService | None = None
scheduler: LifecycleScheduler | None = None


def load_app_config() -> AppConfig:
    """Load configuration, falling back to defaults when no file exists."""
    config_path = get_config_path()
    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.warning("Using default configuration (3 slots, 10s windows)")
        return AppConfig()

    cfg = load_config(config_path)
    logger.info(f"Loaded configuration from {config_path}")
    return cfg


def log_event(event: SlotEvent) -> None:
    """Event listener that writes every lifecycle event to the log."""
    logger.info(f"Event {event.kind} for slot {event.slot_id}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global config, timer_service, scheduler

    logger.info("Starting Smart Parking...")

    config = load_app_config()
    logging.getLogger().setLevel(config.log_level)

    timer_service = AsyncioTimerService(SystemClock())
    event_bus = EventBus(history_size=config.events.history_size)
    event_bus.subscribe(log_event)

    scheduler = LifecycleScheduler(
        slots_config=[s.model_dump() for s in config.slots],
        timer_service=timer_service,
        event_bus=event_bus,
        confirm_window=config.lifecycle.confirm_window,
        payment_window=config.lifecycle.payment_window,
    )

    init_router(scheduler, event_bus, config.payment)

    logger.info(f"Smart Parking ready on http://{config.api.host}:{config.api.port}")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down...")

    scheduler.shutdown()
    timer_service.close()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Smart Parking",
    description="API for reserving parking slots and following their lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router, prefix="/api/v1")


def main():
    """Run the application."""
    # Load config just to get API settings
    cfg = load_app_config()

    uvicorn.run(
        "smart_parking.main:app",
        host=cfg.api.host,
        port=cfg.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
