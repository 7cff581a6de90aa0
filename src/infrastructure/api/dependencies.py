from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.application.canvas_session import CanvasSession, get_canvas_session
from src.application.use_cases.generate_image import GenerationJobController
from src.application.use_cases.load_canvas import LoadCanvasUseCase
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.database.repositories.generation_job_repository import GenerationJobRepository
from src.infrastructure.database.repositories.image_repository import ImageRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.supabase_client import (
    SupabaseAuthAdapter,
    UserInfo,
    get_supabase_client,
)
from src.infrastructure.generation.generation_client import GenerationClient, get_generation_client
from src.infrastructure.storage.supabase_storage import SupabaseStorage

_bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_adapter() -> SupabaseAuthAdapter:
    return SupabaseAuthAdapter()


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(_bearer_scheme)] = None,
    auth: Annotated[SupabaseAuthAdapter, Depends(get_auth_adapter)] = None,
) -> UserInfo:
    if not credentials or not credentials.scheme or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = credentials.credentials
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return auth.validate_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def get_storage() -> SupabaseStorage:
    return SupabaseStorage(get_supabase_client())


def get_image_repo() -> ImageRepository:
    return ImageRepository(get_supabase_client())


def get_job_repo() -> GenerationJobRepository:
    return GenerationJobRepository(get_supabase_client())


def get_profile_repo() -> ProfileRepository:
    return ProfileRepository(get_supabase_client())


def get_client() -> GenerationClient:
    return get_generation_client()


def get_load_canvas(
    settings: Settings = Depends(get_settings),
    images: ImageRepository = Depends(get_image_repo),
    jobs: GenerationJobRepository = Depends(get_job_repo),
    profiles: ProfileRepository = Depends(get_profile_repo),
    storage: SupabaseStorage = Depends(get_storage),
) -> LoadCanvasUseCase:
    return LoadCanvasUseCase(
        image_repo=images,
        job_repo=jobs,
        profile_repo=profiles,
        storage=storage,
        page_size=settings.canvas_page_size,
        url_ttl_sec=settings.signed_url_ttl_sec,
    )


def get_session(
    user: UserInfo = Depends(get_current_user),
    loader: LoadCanvasUseCase = Depends(get_load_canvas),
) -> CanvasSession:
    """The caller's canvas, loaded from persistence on first use in this process."""
    session = get_canvas_session(user.id)
    with session.lock:
        if not session.loaded:
            loader.execute(session, email=user.email)
    return session


def get_controller(
    session: CanvasSession = Depends(get_session),
    images: ImageRepository = Depends(get_image_repo),
    jobs: GenerationJobRepository = Depends(get_job_repo),
    profiles: ProfileRepository = Depends(get_profile_repo),
    storage: SupabaseStorage = Depends(get_storage),
    client: GenerationClient = Depends(get_client),
) -> GenerationJobController:
    # one controller per session so background repairs outlive the request
    with session.lock:
        if session.controller is None:
            session.controller = GenerationJobController(
                store=session.store,
                ledger=session.ledger,
                image_repo=images,
                job_repo=jobs,
                profile_repo=profiles,
                storage=storage,
                client=client,
                lock=session.lock,
            )
        return session.controller
