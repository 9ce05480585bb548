"""
Model registry — the client's view of which models exist and their status.

Status per model follows one graph:

    unloaded ──▶ loading ──▶ loaded ──▶ unloaded
                    │
                    └──▶ error ──▶ loading

load() moves to `loading` before the server is asked; unload() waits for
the server before moving to `unloaded`. toggle_favorite() flips first and
flips back if the server refuses.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from llamadash.api import ApiClient
from llamadash.errors import InvalidTransitionError, LlamaDashError, ModelNotFoundError
from llamadash.types import STATUS_TRANSITIONS, ModelEntry, ModelStatus

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Owns the model collection. Nothing else writes to it."""

    def __init__(self, api: ApiClient):
        self.api = api
        self.models: list[ModelEntry] = []
        self.loading = False
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def available_models(self) -> list[ModelEntry]:
        return list(self.models)

    @property
    def loaded_models(self) -> list[ModelEntry]:
        return [m for m in self.models if m.status is ModelStatus.LOADED]

    @property
    def favorite_models(self) -> list[ModelEntry]:
        return [m for m in self.models if m.favorite]

    def find(self, model_id: str) -> ModelEntry | None:
        for m in self.models:
            if m.id == model_id:
                return m
        return None

    def get(self, model_id: str) -> ModelEntry:
        entry = self.find(model_id)
        if entry is None:
            raise ModelNotFoundError(model_id)
        return entry

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(entry: ModelEntry, target: ModelStatus):
        if target not in STATUS_TRANSITIONS[entry.status]:
            raise InvalidTransitionError(entry.id, entry.status.value, target.value)
        logger.debug("Model '%s': %s -> %s", entry.id, entry.status.value, target.value)
        entry.status = target

    async def fetch_all(self) -> list[ModelEntry]:
        """
        Replace the collection with the server's snapshot.
        On failure the previous snapshot stays and `error` says why.
        """
        self.loading = True
        self.error = None
        try:
            self.models = await self.api.get_models()
            logger.info("Fetched %d models", len(self.models))
        except LlamaDashError as e:
            self.error = str(e)
            logger.warning("Failed to fetch models: %s", e)
        finally:
            self.loading = False
        return self.models

    async def load(
        self,
        model_id: str,
        ctx_size: int | None = None,
        n_gpu_layers: int | None = None,
    ) -> ModelEntry:
        entry = self.get(model_id)
        self._transition(entry, ModelStatus.LOADING)
        try:
            await self.api.load_model(model_id, ctx_size=ctx_size, n_gpu_layers=n_gpu_layers)
        except BaseException as e:
            self._transition(entry, ModelStatus.ERROR)
            logger.warning("Failed to load model '%s': %r", model_id, e)
            raise
        self._transition(entry, ModelStatus.LOADED)
        entry.loaded_at = datetime.now(timezone.utc).isoformat()
        logger.info("Model '%s' loaded", model_id)
        return entry

    async def unload(self, model_id: str) -> ModelEntry:
        entry = self.get(model_id)
        if ModelStatus.UNLOADED not in STATUS_TRANSITIONS[entry.status]:
            raise InvalidTransitionError(model_id, entry.status.value, ModelStatus.UNLOADED.value)
        await self.api.unload_model(model_id)
        self._transition(entry, ModelStatus.UNLOADED)
        entry.loaded_at = None
        logger.info("Model '%s' unloaded", model_id)
        return entry

    async def rescan(self) -> list[ModelEntry]:
        await self.api.scan_models()
        return await self.fetch_all()

    async def toggle_favorite(self, model_id: str) -> bool:
        """
        Flip the favorite flag. Returns True when the server kept the change;
        on refusal the flag is flipped back and False is returned. A cancelled
        call is flipped back as well before the cancellation propagates.
        """
        entry = self.get(model_id)
        entry.favorite = not entry.favorite
        try:
            await self.api.toggle_favorite(model_id)
        except LlamaDashError as e:
            entry.favorite = not entry.favorite
            logger.warning("Favorite toggle for '%s' rolled back: %s", model_id, e)
            return False
        except asyncio.CancelledError:
            entry.favorite = not entry.favorite
            raise
        return True
