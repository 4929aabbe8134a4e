"""Cooperative cancellation token polled at phase checkpoints."""
from tourism_director.exceptions import CancellationError
from tourism_director.services.setting_store import RunStatus


class CancellationToken:
    """Never cancelled. Subclasses decide where the flag comes from."""

    async def is_cancelled(self) -> bool:
        return False

    async def raise_if_cancelled(self, checkpoint: str = "") -> None:
        if await self.is_cancelled():
            raise CancellationError(f"Generation cancelled at {checkpoint or 'checkpoint'}")


class PersistedCancellationToken(CancellationToken):
    """Reads the job's persisted cancellation key on every check."""

    def __init__(self, run_status: RunStatus) -> None:
        self.run_status = run_status

    async def is_cancelled(self) -> bool:
        return await self.run_status.is_cancelled()
