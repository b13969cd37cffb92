"""FastAPI routes exposing the face recognition service.

The service is created by the caller and stored on ``app.state``; every
route resolves it through the ``get_service`` dependency.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .exceptions import (
    ConfigurationError,
    DetectorError,
    FaceRecognitionError,
    NameConflictError,
    NotFoundError,
)
from .service import FaceRecognitionService
from .types import Person

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Schemas
# =============================================================================

class BoundingBoxModel(BaseModel):
    x: float
    y: float
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class OptionsUpdate(BaseModel):
    min_face_size: Optional[int] = None
    max_face_size: Optional[int] = None
    detection_confidence_threshold: Optional[float] = None
    match_confidence_threshold: Optional[float] = None
    max_faces_per_image: Optional[int] = None
    enable_landmarks: Optional[bool] = None
    enable_attributes: Optional[bool] = None


class RecognizeRequest(BaseModel):
    file_path: str


class BatchRequest(BaseModel):
    file_paths: List[str] = Field(..., min_length=1)


class PersonCreate(BaseModel):
    name: str = Field(..., min_length=1)
    thumbnail_path: Optional[str] = None


class PersonUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    thumbnail_path: Optional[str] = None


class FaceAssignRequest(BaseModel):
    image_path: str
    bounding_box: BoundingBoxModel
    embedding: Optional[List[float]] = None


class ExemplarResponse(BaseModel):
    face_id: str
    sample_image_path: str


class PersonResponse(BaseModel):
    id: str
    name: str
    exemplars: List[ExemplarResponse]
    thumbnail_path: Optional[str]
    date_created: str
    date_modified: str
    image_count: int


class PeopleResponse(BaseModel):
    people: List[PersonResponse]
    total: int


class HealthResponse(BaseModel):
    status: str
    version: str
    detector: str
    people: int
    cached_images: int


def _person_response(person: Person) -> PersonResponse:
    data = person.to_dict(include_embeddings=False)
    data.pop("matched_fingerprints")
    return PersonResponse(**data)


# =============================================================================
# Dependencies
# =============================================================================

def get_service(request: Request) -> FaceRecognitionService:
    """Get the service owned by the application."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Face recognition service not initialized",
        )
    return service


def _require_person(service: FaceRecognitionService, person_id: str) -> Person:
    person = service.get_person(person_id)
    if person is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Person '{person_id}' not found",
        )
    return person


# =============================================================================
# Router
# =============================================================================

router = APIRouter(prefix="/api/v1", tags=["faces"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(service: FaceRecognitionService = Depends(get_service)):
    """Health check endpoint."""
    stats = service.get_stats()
    return HealthResponse(
        status="healthy",
        version=__version__,
        detector=stats["detector"],
        people=stats["people"],
        cached_images=stats["cached_images"],
    )


@router.put("/options", summary="Update recognition options")
def update_options(
    update: OptionsUpdate,
    service: FaceRecognitionService = Depends(get_service),
):
    """Merge the given options into the current ones."""
    partial = update.model_dump(exclude_none=True)
    return service.configure(**partial).to_dict()


@router.post("/recognize", summary="Recognize faces in an image file")
def recognize(
    body: RecognizeRequest,
    service: FaceRecognitionService = Depends(get_service),
):
    """Recognize faces in one image; per-file failures are reported in ``error``."""
    result = service.recognize_one(body.file_path)
    return result.to_dict(include_embeddings=False)


@router.post(
    "/batches",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a background batch",
)
def submit_batch(
    body: BatchRequest,
    service: FaceRecognitionService = Depends(get_service),
):
    job_id = service.submit_batch(body.file_paths)
    return {"job_id": job_id, "total": len(body.file_paths)}


@router.get("/batches/{job_id}", summary="Batch status and results")
def get_batch(
    job_id: str,
    service: FaceRecognitionService = Depends(get_service),
):
    job = service.get_batch(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch '{job_id}' not found",
        )
    return job.to_dict()


@router.delete("/batches/{job_id}", summary="Cancel a batch")
def cancel_batch(
    job_id: str,
    service: FaceRecognitionService = Depends(get_service),
):
    if service.get_batch(job_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch '{job_id}' not found",
        )
    return {"job_id": job_id, "cancelled": service.cancel_batch(job_id)}


@router.get("/people", response_model=PeopleResponse, summary="List people")
def list_people(service: FaceRecognitionService = Depends(get_service)):
    people = [_person_response(p) for p in service.list_people()]
    return PeopleResponse(people=people, total=len(people))


@router.post(
    "/people",
    response_model=PersonResponse,
    summary="Create or update a person by name",
)
def create_person(
    body: PersonCreate,
    service: FaceRecognitionService = Depends(get_service),
):
    fields = {}
    if body.thumbnail_path is not None:
        fields["thumbnail_path"] = body.thumbnail_path
    return _person_response(service.create_or_update_person(body.name, **fields))


@router.get("/people/{person_id}", response_model=PersonResponse, summary="Get a person")
def get_person(
    person_id: str,
    service: FaceRecognitionService = Depends(get_service),
):
    return _person_response(_require_person(service, person_id))


@router.patch("/people/{person_id}", response_model=PersonResponse, summary="Update a person")
def update_person(
    person_id: str,
    body: PersonUpdate,
    service: FaceRecognitionService = Depends(get_service),
):
    person = _require_person(service, person_id)
    if body.name is not None and body.name != person.name:
        person = service.rename_person(person_id, body.name)
    if body.thumbnail_path is not None:
        person = service.create_or_update_person(person.name, thumbnail_path=body.thumbnail_path)
    return _person_response(person)


@router.delete("/people/{person_id}", summary="Delete a person")
def delete_person(
    person_id: str,
    service: FaceRecognitionService = Depends(get_service),
):
    if not service.delete_person(person_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Person '{person_id}' not found",
        )
    return {"message": f"Deleted person: {person_id}"}


@router.post(
    "/people/{person_id}/faces",
    response_model=PersonResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign a face to a person",
)
def assign_face(
    person_id: str,
    body: FaceAssignRequest,
    service: FaceRecognitionService = Depends(get_service),
):
    person = service.assign_face(
        person_id,
        body.image_path,
        body.bounding_box.model_dump(),
        embedding=body.embedding,
    )
    return _person_response(person)


@router.delete(
    "/people/{person_id}/faces/{face_id}",
    response_model=PersonResponse,
    summary="Remove a face from a person",
)
def unassign_face(
    person_id: str,
    face_id: str,
    service: FaceRecognitionService = Depends(get_service),
):
    return _person_response(service.unassign_face(person_id, face_id))


# =============================================================================
# Error Handling
# =============================================================================

def _status_for(exc: FaceRecognitionError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NameConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ConfigurationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, DetectorError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


async def _recognition_error_handler(request: Request, exc: FaceRecognitionError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=_status_for(exc), content={"detail": exc.to_dict()})


async def _value_error_handler(request: Request, exc: ValueError):
    logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": {"code": "INVALID_VALUE", "message": str(exc)}},
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    service: Optional[FaceRecognitionService] = None,
    cors_origins: Optional[List[str]] = None,
    debug: bool = False,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        service: Face recognition service; routes answer 503 until one is set
        cors_origins: List of allowed CORS origins
        debug: Enable debug mode

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Photo Face Recognition API",
        description="Recognize known people in photo libraries",
        version=__version__,
        debug=debug,
    )

    if cors_origins is None:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service

    app.add_exception_handler(FaceRecognitionError, _recognition_error_handler)
    app.add_exception_handler(ValueError, _value_error_handler)

    app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "message": "Photo Face Recognition API",
            "docs": "/docs",
            "health": "/api/v1/health",
        }

    return app
