"""
replica/client.py -- HTTP client for the Convex secondary store.

Convex exposes deployed functions over plain HTTPS:

  POST {url}/api/mutation   {"path": "userActions:upsert", "args": {...}, "format": "json"}
  POST {url}/api/query      {"path": "userQueries:getUserByExternalId", "args": {...}, "format": "json"}

and answers {"status": "success", "value": ...} or
{"status": "error", "errorMessage": "..."}. Admin calls authenticate with
"Authorization: Convex <admin key>".

Every failure (network, non-2xx, status=error) raises ReplicaError. Whether
that matters is the caller's decision -- ProfileSync swallows it.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from auth.models import User

logger = logging.getLogger("eventdesk.replica")

UPSERT_PATH = "userActions:upsert"
DELETE_PATH = "userActions:deleteUser"
GET_BY_EXTERNAL_ID_PATH = "userQueries:getUserByExternalId"


class ReplicaError(Exception):
    """Raised when the secondary store call fails for any reason."""


class ReplicaClient:
    def __init__(
        self,
        base_url: str,
        admin_key: str = "",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Shared session for connection pooling across sync calls.
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        self._headers = {"Content-Type": "application/json"}
        if admin_key:
            self._headers["Authorization"] = f"Convex {admin_key}"

    def upsert_user(self, user: User) -> Any:
        """Insert or update the profile keyed by the primary user id."""
        return self._call(
            "mutation",
            UPSERT_PATH,
            {
                "id": user.id,
                "email": user.email,
                "name": user.name,
                "image": user.image,
                "role": user.role,
                "createdAt": user.created_at,
                "updatedAt": user.updated_at,
            },
        )

    def delete_user(self, user_id: str) -> Any:
        return self._call("mutation", DELETE_PATH, {"externalId": user_id})

    def get_user_by_external_id(self, user_id: str) -> Optional[dict]:
        return self._call("query", GET_BY_EXTERNAL_ID_PATH, {"externalId": user_id})

    def _call(self, kind: str, path: str, args: dict) -> Any:
        url = f"{self.base_url}/api/{kind}"
        try:
            resp = self._session.post(
                url,
                json={"path": path, "args": args, "format": "json"},
                headers=self._headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ReplicaError(f"{path} failed: {e}") from e
        if body.get("status") != "success":
            raise ReplicaError(f"{path} failed: {body.get('errorMessage', 'unknown error')}")
        return body.get("value")

    def close(self) -> None:
        self._session.close()
