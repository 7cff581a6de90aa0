"""Per-user canvas state kept in process between requests."""
from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

from src.domain.services.annotation_engine import AnnotationEngine, Listener
from src.domain.services.canvas_store import CanvasStore
from src.domain.services.credit_ledger import CreditLedger
from src.domain.services.selection_navigator import SelectionNavigator

if TYPE_CHECKING:
    from src.application.use_cases.generate_image import GenerationJobController


class CanvasSession:
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.store = CanvasStore()
        self.ledger = CreditLedger()
        self.navigator = SelectionNavigator()
        self.engines: dict[str, AnnotationEngine] = {}
        self.controller: GenerationJobController | None = None
        self.loaded = False
        # held by request handlers and by generation completion while they
        # touch the store, ledger or editors
        self.lock = threading.RLock()

    def engine_for(self, image_id: str, persist: Listener) -> AnnotationEngine:
        """The editor for one image, created on first use from the store's copy."""
        engine = self.engines.get(image_id)
        if engine is not None:
            return engine
        image = self.store.get(image_id)
        if image is None or image.user_id != self.user_id:
            raise ValueError("Image not found")
        if image.is_generating:
            raise ValueError("Image is still generating")
        engine = AnnotationEngine(
            image.id,
            image.annotations,
            width=image.width,
            height=image.height,
            on_change=self.store.update_annotations,
            on_commit=persist,
        )
        self.engines[image_id] = engine
        return engine

    def drop_engines(self, image_ids: Iterable[str]) -> None:
        for image_id in image_ids:
            self.engines.pop(image_id, None)

    def refresh_selection(self) -> None:
        self.navigator.refresh(self.store.rows())


_SESSIONS: dict[str, CanvasSession] = {}
_LOCK = threading.Lock()


def get_canvas_session(user_id: str) -> CanvasSession:
    with _LOCK:
        session = _SESSIONS.get(user_id)
        if session is None:
            session = CanvasSession(user_id)
            _SESSIONS[user_id] = session
        return session


def reset_canvas_sessions() -> None:
    with _LOCK:
        _SESSIONS.clear()
