import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so 'src' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SUPABASE_DISABLED", "1")
os.environ.setdefault("SUPABASE_STORAGE_LOCAL_DIR", tempfile.mkdtemp(prefix="nanocanvas-storage-"))
os.environ["USE_LOCAL_DB"] = "0"
os.environ.pop("GENERATION_ENDPOINT_URL", None)


@pytest.fixture(scope="session")
def client() -> TestClient:
    # lazy import after env configured
    from src.main import create_app

    app = create_app()
    return TestClient(app)


@pytest.fixture()
def auth_header() -> dict[str, str]:
    # any token is accepted in disabled mode
    return {"Authorization": "Bearer test-token"}


@pytest.fixture()
def clean_state():
    """Empty the in-memory repositories and canvas sessions around a test."""
    from src.application.canvas_session import reset_canvas_sessions
    from src.infrastructure.database.repositories import (
        generation_job_repository,
        image_repository,
        profile_repository,
    )

    def clear():
        image_repository._MEM_IMAGES.clear()
        generation_job_repository._MEM_JOBS.clear()
        profile_repository._MEM_PROFILES.clear()
        reset_canvas_sessions()

    clear()
    yield
    clear()


def _png_bytes(w=8, h=4, color=(128, 64, 32)) -> bytes:
    import io

    import numpy as np
    from PIL import Image

    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[:, :] = color
    img = Image.fromarray(arr)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def make_png():
    """Factory for small solid-colour PNG files."""
    return _png_bytes
