"""
Tests for ModelRegistry.
Run with: pytest tests/test_registry.py
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from llamadash.errors import ApiError, InvalidTransitionError, ModelNotFoundError, TransportError
from llamadash.registry import ModelRegistry
from llamadash.types import ModelEntry, ModelStatus


def _entry(model_id: str, status: str = "unloaded", favorite: bool = False) -> ModelEntry:
    return ModelEntry.from_dict({
        "id": model_id,
        "filename": f"{model_id}.gguf",
        "path": f"/models/{model_id}.gguf",
        "size": 4_000_000_000,
        "architecture": "llama",
        "quantization": "Q4_K_M",
        "status": status,
        "favorite": favorite,
    })


@pytest.fixture
def api():
    mock = MagicMock()
    mock.get_models = AsyncMock(return_value=[
        _entry("m1"),
        _entry("m2", status="loaded", favorite=True),
        _entry("m3", status="error"),
    ])
    mock.load_model = AsyncMock(return_value={"status": "loaded"})
    mock.unload_model = AsyncMock(return_value={"status": "unloaded"})
    mock.scan_models = AsyncMock(return_value={"scanned": 3})
    mock.toggle_favorite = AsyncMock(return_value={"favorite": True})
    return mock


# ---------------------------------------------------------------------------
# fetch_all / views
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetch_all_and_views(api):
    reg = ModelRegistry(api)
    models = await reg.fetch_all()
    assert [m.id for m in models] == ["m1", "m2", "m3"]
    assert [m.id for m in reg.loaded_models] == ["m2"]
    assert [m.id for m in reg.favorite_models] == ["m2"]
    assert [m.id for m in reg.available_models] == ["m1", "m2", "m3"]
    assert reg.error is None
    assert reg.loading is False


@pytest.mark.asyncio
async def test_fetch_all_replaces_local_overlay(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    reg.get("m1").status = ModelStatus.LOADING

    api.get_models.return_value = [_entry("m1"), _entry("m4")]
    await reg.fetch_all()
    assert reg.get("m1").status is ModelStatus.UNLOADED
    assert reg.find("m2") is None
    assert reg.find("m4") is not None


@pytest.mark.asyncio
async def test_fetch_all_failure_keeps_snapshot(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    api.get_models.side_effect = TransportError("connection refused")

    models = await reg.fetch_all()
    assert [m.id for m in models] == ["m1", "m2", "m3"]
    assert "connection refused" in reg.error
    assert reg.loading is False


@pytest.mark.asyncio
async def test_rescan_then_fetch(api):
    reg = ModelRegistry(api)
    api.get_models.return_value = [_entry("fresh")]
    models = await reg.rescan()
    api.scan_models.assert_awaited_once()
    assert [m.id for m in models] == ["fresh"]


# ---------------------------------------------------------------------------
# load / unload
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_load_success(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    seen = []

    async def load_model(model_id, ctx_size=None, n_gpu_layers=None):
        seen.append(reg.get(model_id).status)
        return {"status": "loaded"}

    api.load_model.side_effect = load_model
    entry = await reg.load("m1", ctx_size=8192, n_gpu_layers=-1)

    assert seen == [ModelStatus.LOADING]
    assert entry.status is ModelStatus.LOADED
    assert entry.loaded_at
    api.load_model.assert_awaited_once_with("m1", ctx_size=8192, n_gpu_layers=-1)
    assert [m.id for m in reg.loaded_models] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_load_failure_sets_error_and_reraises(api):
    """load('m1'): loading, remote fails -> error, failure re-raised."""
    reg = ModelRegistry(api)
    await reg.fetch_all()
    seen = []

    async def load_model(model_id, ctx_size=None, n_gpu_layers=None):
        seen.append(reg.get(model_id).status)
        raise ApiError(404, "Model 'm1' not found in configured directories")

    api.load_model.side_effect = load_model
    with pytest.raises(ApiError) as exc:
        await reg.load("m1")

    assert exc.value.status_code == 404
    assert seen == [ModelStatus.LOADING]
    assert reg.get("m1").status is ModelStatus.ERROR


@pytest.mark.asyncio
async def test_cancelled_load_lands_in_error(api):
    """A load abandoned mid-call does not leave the model stuck in loading."""
    reg = ModelRegistry(api)
    await reg.fetch_all()
    started = asyncio.Event()

    async def load_model(model_id, ctx_size=None, n_gpu_layers=None):
        started.set()
        await asyncio.Event().wait()

    api.load_model.side_effect = load_model
    task = asyncio.create_task(reg.load("m1"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert reg.get("m1").status is ModelStatus.ERROR
    api.load_model.side_effect = None
    entry = await reg.load("m1")
    assert entry.status is ModelStatus.LOADED


@pytest.mark.asyncio
async def test_load_from_error_is_allowed(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    entry = await reg.load("m3")
    assert entry.status is ModelStatus.LOADED


@pytest.mark.asyncio
async def test_load_already_loaded_rejected(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    with pytest.raises(InvalidTransitionError):
        await reg.load("m2")
    api.load_model.assert_not_called()
    assert reg.get("m2").status is ModelStatus.LOADED


@pytest.mark.asyncio
async def test_unload_waits_for_server(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    seen = []

    async def unload_model(model_id):
        seen.append(reg.get(model_id).status)
        return {"status": "unloaded"}

    api.unload_model.side_effect = unload_model
    entry = await reg.unload("m2")
    assert seen == [ModelStatus.LOADED]
    assert entry.status is ModelStatus.UNLOADED


@pytest.mark.asyncio
async def test_unload_failure_keeps_loaded(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    api.unload_model.side_effect = TransportError("reset")
    with pytest.raises(TransportError):
        await reg.unload("m2")
    assert reg.get("m2").status is ModelStatus.LOADED


@pytest.mark.asyncio
async def test_unload_not_loaded_rejected(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    with pytest.raises(InvalidTransitionError):
        await reg.unload("m1")
    api.unload_model.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_model(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    with pytest.raises(ModelNotFoundError):
        await reg.load("ghost")
    with pytest.raises(ModelNotFoundError):
        await reg.toggle_favorite("ghost")


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_toggle_favorite_success(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    assert await reg.toggle_favorite("m1") is True
    assert reg.get("m1").favorite is True
    assert [m.id for m in reg.favorite_models] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_toggle_favorite_rollback(api):
    """A refused toggle leaves the flag where it started."""
    reg = ModelRegistry(api)
    await reg.fetch_all()
    seen = []

    async def toggle(model_id):
        seen.append(reg.get(model_id).favorite)
        raise ApiError(500, "db locked")

    api.toggle_favorite.side_effect = toggle
    assert await reg.toggle_favorite("m2") is False
    assert seen == [False]  # optimistic flip was visible during the call
    assert reg.get("m2").favorite is True


@pytest.mark.asyncio
async def test_cancelled_toggle_favorite_rolls_back(api):
    reg = ModelRegistry(api)
    await reg.fetch_all()
    started = asyncio.Event()

    async def toggle(model_id):
        started.set()
        await asyncio.Event().wait()

    api.toggle_favorite.side_effect = toggle
    task = asyncio.create_task(reg.toggle_favorite("m1"))
    await started.wait()
    assert reg.get("m1").favorite is True
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert reg.get("m1").favorite is False
