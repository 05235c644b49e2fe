from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger("ai-relay.secrets")


def get_secret_from_manager(secret_name: str, project_id: Optional[str] = None) -> str:
    """Return the latest version of ``secret_name`` as text.

    ``project_id`` falls back to GCP_PROJECT, then GOOGLE_CLOUD_PROJECT.
    """
    from google.cloud import secretmanager

    if project_id is None:
        project_id = os.environ.get("GCP_PROJECT") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        if not project_id:
            raise ValueError(
                "Project ID not specified. Set GCP_PROJECT_ID, GCP_PROJECT or GOOGLE_CLOUD_PROJECT."
            )

    client = secretmanager.SecretManagerServiceClient()
    name = f"projects/{project_id}/secrets/{secret_name}/versions/latest"

    logger.info(f"Fetching secret from Secret Manager: {secret_name}")
    try:
        response = client.access_secret_version(request={"name": name})
    except Exception as e:
        logger.error(f"Failed to retrieve secret {secret_name}: {e}")
        raise

    return response.payload.data.decode("UTF-8")


def load_secret_as_dict(secret_name: str, project_id: Optional[str] = None) -> Dict[str, str]:
    """Load the relay's secret bundle: a JSON object keyed by settings field name."""
    payload = get_secret_from_manager(secret_name, project_id)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse secret {secret_name} as JSON: {e}")
        raise ValueError(f"Secret {secret_name} is not valid JSON") from e
    if not isinstance(data, dict):
        raise ValueError(f"Secret {secret_name} must be a JSON object")
    return data


def should_use_secret_manager() -> bool:
    return os.environ.get("USE_SECRET_MANAGER", "").lower() in ("true", "1", "yes")
