"""Vertex AI client wrapper using google-genai SDK.

Location-aware clients authenticated via Application Default Credentials.

Usage:
    from storyflow.services.vertex_client import get_vertex_client

    client = get_vertex_client()                    # default location
    client = get_vertex_client(location="global")   # global endpoint
"""

import os

from dotenv import load_dotenv
from google import genai

from storyflow.config import settings

# Pick up GOOGLE_APPLICATION_CREDENTIALS from a local .env
load_dotenv()

# Per-location client cache
_clients: dict[str, genai.Client] = {}

# Models only served from the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.google_cloud.location


def get_vertex_client(location: str | None = None) -> genai.Client:
    """Get or create a Vertex AI client for the given location.

    Raises:
        RuntimeError: If google_cloud.project_id is not configured
    """
    loc = location or settings.google_cloud.location
    if not settings.google_cloud.project_id:
        raise RuntimeError(
            "google_cloud.project_id is not set "
            "(set STORYFLOW_GOOGLE_CLOUD__PROJECT_ID or config.yaml)"
        )

    if loc not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        os.environ["GOOGLE_CLOUD_PROJECT"] = settings.google_cloud.project_id

        _clients[loc] = genai.Client(
            vertexai=settings.google_cloud.use_vertex_ai,
            project=settings.google_cloud.project_id,
            location=loc,
        )

    return _clients[loc]
