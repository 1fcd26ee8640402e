"""Workers API router exposing worker slot lease state."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from relayq.db import WorkerSlotRepositoryPort


def api_create_workers_router(slot_repository: WorkerSlotRepositoryPort) -> APIRouter:
    """Create workers router listing provisioned slots.

    Raises:
        ValueError: Raised when slot_repository is invalid.
    """

    if slot_repository is None:
        raise ValueError("slot_repository must not be None")

    router = APIRouter(prefix="/workers", tags=["workers"])

    @router.get("")
    def api_worker_slot_list() -> JSONResponse:
        slots = slot_repository.db_worker_slot_list()
        payload = {
            "items": [
                {
                    "slot_id": slot.slot_id,
                    "leased": slot.leased,
                    "leased_by": slot.leased_by,
                    "leased_at_utc": slot.leased_at_utc.isoformat() if slot.leased_at_utc is not None else None,
                }
                for slot in slots
            ],
            "pool_size": len(slots),
            "leased": sum(1 for slot in slots if slot.leased),
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router
