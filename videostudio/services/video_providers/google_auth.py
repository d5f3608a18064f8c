"""
Google service-account access tokens (JWT-bearer grant).

Used only for reading gs:// outputs from Cloud Storage. The token is cached in
memory and refreshed 5 minutes before it expires.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Dict, Optional

import jwt  # PyJWT
import requests

from videostudio.services.video_providers.base import ProviderAuthError, ProviderConfigError


TOKEN_URL = "https://oauth2.googleapis.com/token"
STORAGE_READ_SCOPE = "https://www.googleapis.com/auth/devstorage.read_only"
REFRESH_BUFFER_SECONDS = 300


class ServiceAccountTokenSource:
    """Cached bearer tokens for one service account."""

    def __init__(self, credentials_json: str, scope: str = STORAGE_READ_SCOPE):
        self.credentials_json = credentials_json
        self.scope = scope
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(self.credentials_json)

    def _service_account(self) -> Dict[str, Any]:
        if not self.credentials_json:
            raise ProviderConfigError("veo", "GOOGLE_APPLICATION_CREDENTIALS_JSON is not set")
        try:
            info = json.loads(self.credentials_json)
        except json.JSONDecodeError as e:
            raise ProviderConfigError("veo", f"Invalid GOOGLE_APPLICATION_CREDENTIALS_JSON: {e}")
        if not info.get("client_email") or not info.get("private_key"):
            raise ProviderConfigError("veo", "Service account JSON needs client_email and private_key")
        return info

    def _signed_assertion(self, info: Dict[str, Any]) -> str:
        now = int(time.time())
        payload = {
            "iss": info["client_email"],
            "sub": info["client_email"],
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
            "scope": self.scope,
        }
        return jwt.encode(payload, info["private_key"], algorithm="RS256")

    def token(self) -> str:
        with self._lock:
            cached: Optional[str] = self._cache.get("access_token")
            if cached and time.time() < self._cache.get("expires_at", 0) - REFRESH_BUFFER_SECONDS:
                return cached

            assertion = self._signed_assertion(self._service_account())
            try:
                r = requests.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": assertion,
                    },
                    timeout=30,
                )
            except requests.RequestException as e:
                raise ProviderAuthError("veo", f"Token exchange request failed: {e}")

            if not r.ok:
                raise ProviderAuthError("veo", f"Token exchange failed: {r.status_code} - {r.text[:300]}")

            body = r.json()
            expires_in = int(body.get("expires_in", 3600))
            self._cache = {
                "access_token": body["access_token"],
                "expires_at": time.time() + expires_in,
            }
            print(f"[Veo] Obtained storage access token, expires in {expires_in}s")
            return self._cache["access_token"]
