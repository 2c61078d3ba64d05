from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Path, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from abtest.core.auth import require_auth_token
from abtest.core.db import get_db, init_db
from abtest.core.logging import configure_logging
from abtest.core.settings import config_settings
from abtest.models.schemas.assignment import (
    AssignmentCreatedModel,
    AssignmentRecord,
    AssignmentWriteModel,
)
from abtest.models.schemas.event import SuccessEventCreateModel, SuccessEventResponseModel
from abtest.models.schemas.experiment import Experiment, ExperimentCreateModel
from abtest.services.assignment_service import AssignmentService
from abtest.services.event_service import EventService
from abtest.services.experiment_service import ExperimentService


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config_settings.service_name)
    init_db()
    yield


app = FastAPI(
    title="abtest",
    description="Experiment assignment store",
    version="0.1.0",
    lifespan=lifespan,
)

# Public routes used by the client engine
public_router = APIRouter(prefix="/api", dependencies=[Depends(require_auth_token)])

# Assignment store, only ever called by the client engine
internal_router = APIRouter(
    prefix="/api/internal", dependencies=[Depends(require_auth_token)]
)


@app.get("/healthz", summary="Liveness probe")
def healthz():
    return {"status": "ok"}


@public_router.post(
    "/experiments",
    response_model=Experiment,
    status_code=status.HTTP_201_CREATED,
    summary="Create an experiment with its variations",
)
def post_experiments(
    experiment_data: ExperimentCreateModel,
    db: Session = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    return experiment_service.create_experiment(experiment_data)


@public_router.get(
    "/experiments/{experiment_id}",
    response_model=Experiment,
    status_code=status.HTTP_200_OK,
    summary="Get experiment descriptor",
)
def get_experiment(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    db: Session = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    return experiment_service.get_experiment(experiment_id)


@public_router.post(
    "/experiments/{experiment_id}/success",
    response_model=SuccessEventResponseModel,
    status_code=status.HTTP_201_CREATED,
    summary="Track a success event",
)
def post_success(
    event_data: SuccessEventCreateModel,
    experiment_id: str = Path(..., description="The ID of the experiment."),
    db: Session = Depends(get_db),
):
    event_service = EventService(db)
    return event_service.record_success(experiment_id, event_data)


@internal_router.get(
    "/experiments/{experiment_id}/variation",
    response_model=List[AssignmentRecord],
    status_code=status.HTTP_200_OK,
    summary="Get a visitor's stored variation",
)
def get_variation(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    user_id: Optional[str] = Query(None, alias="userId"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: Session = Depends(get_db),
):
    """
    Returns `[]` when the visitor has no assignment yet, otherwise a
    single-element list.
    """
    assignment_service = AssignmentService(db)
    return assignment_service.get_assignment(experiment_id, user_id, session_id)


@internal_router.post(
    "/experiments/{experiment_id}/variation",
    status_code=status.HTTP_201_CREATED,
    summary="Persist a visitor's variation (first write wins)",
)
def post_variation(
    payload: AssignmentWriteModel,
    experiment_id: str = Path(..., description="The ID of the experiment."),
    user_id: Optional[str] = Query(None, alias="userId"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: Session = Depends(get_db),
):
    """
    Creates the assignment (201) or, when one already exists, acknowledges
    it with `{"message": "already exists"}` (200).
    """
    assignment_service = AssignmentService(db)
    result = assignment_service.persist_assignment(
        experiment_id, user_id, session_id, payload
    )
    status_code = (
        status.HTTP_201_CREATED
        if isinstance(result, AssignmentCreatedModel)
        else status.HTTP_200_OK
    )
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


app.include_router(public_router)
app.include_router(internal_router)


if __name__ == "__main__":
    uvicorn.run("abtest.main:app", host="0.0.0.0", port=8000, reload=True)
