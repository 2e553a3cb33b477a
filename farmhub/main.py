from fastapi import FastAPI, Depends, HTTPException
from typing import List
from farmhub.config import get_config
from farmhub.db import Base, engine
from farmhub import schemas
from farmhub.deps import get_directory, get_selection_store
from farmhub.directory import FarmDirectory
from farmhub.errors import DirectoryError, FarmNotFound
from farmhub.logging_utils import init_logging
from farmhub.selection import FarmSelectionState, FarmSelectionStore


app = FastAPI(title="Farms API")

# Create tables at startup
@app.on_event("startup")
def _init_app():
    init_logging(log_path=get_config().log_path)
    Base.metadata.create_all(bind=engine)


def _selection_out(state: FarmSelectionState) -> schemas.SelectionOut:
    return schemas.SelectionOut(
        farms=list(state.farms),
        selected_farm=state.selected_farm,
        loading=state.loading,
        error=state.error,
        is_initialized=state.is_initialized,
    )

# ---------- farm directory ----------

@app.get("/farms", response_model=List[schemas.FarmOut])
async def list_farms(directory: FarmDirectory = Depends(get_directory)):
    try:
        return await directory.list()
    except DirectoryError as e:
        raise HTTPException(status_code=502, detail=str(e))

@app.get("/farms/{farm_id}", response_model=schemas.FarmOut)
async def get_farm(farm_id: str, directory: FarmDirectory = Depends(get_directory)):
    try:
        return await directory.get_by_id(farm_id)
    except FarmNotFound:
        raise HTTPException(404, "Farm not found")
    except DirectoryError as e:
        raise HTTPException(status_code=502, detail=str(e))

@app.post("/farms", response_model=schemas.FarmOut, status_code=201)
async def create_farm(payload: schemas.FarmCreate, directory: FarmDirectory = Depends(get_directory)):
    try:
        return await directory.create(payload)
    except DirectoryError as e:
        raise HTTPException(status_code=502, detail=str(e))

@app.put("/farms/{farm_id}", response_model=schemas.FarmOut)
async def update_farm(
    farm_id: str,
    payload: schemas.FarmUpdate,
    directory: FarmDirectory = Depends(get_directory),
):
    try:
        return await directory.update(farm_id, payload)
    except FarmNotFound:
        raise HTTPException(404, "Farm not found")
    except DirectoryError as e:
        raise HTTPException(status_code=502, detail=str(e))

@app.delete("/farms/{farm_id}")
async def delete_farm(farm_id: str, directory: FarmDirectory = Depends(get_directory)):
    try:
        deleted = await directory.delete(farm_id)
    except DirectoryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not deleted:
        raise HTTPException(404, "Farm not found")
    return {"deleted": True}

# ---------- active farm selection ----------

@app.get("/selection", response_model=schemas.SelectionOut)
async def get_selection(store: FarmSelectionStore = Depends(get_selection_store)):
    return _selection_out(store.state)

@app.post("/selection/load", response_model=schemas.SelectionOut)
async def load_selection(store: FarmSelectionStore = Depends(get_selection_store)):
    # failures are reported through the snapshot's error field
    return _selection_out(await store.load_farms())

@app.put("/selection", response_model=schemas.SelectionOut)
async def select_farm(body: schemas.SelectFarmIn, store: FarmSelectionStore = Depends(get_selection_store)):
    if body.farm_id is None:
        return _selection_out(store.set_selected_farm(None))
    farm = next((f for f in store.state.farms if str(f.id) == str(body.farm_id)), None)
    if farm is None:
        raise HTTPException(404, "Farm is not in the loaded farm list")
    return _selection_out(store.set_selected_farm(farm))

@app.delete("/selection", response_model=schemas.SelectionOut)
async def clear_selection(store: FarmSelectionStore = Depends(get_selection_store)):
    return _selection_out(store.clear_farm_state())
