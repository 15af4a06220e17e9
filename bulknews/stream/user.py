from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from bulknews.common.config import (
    ACCOUNT_BASEPATH,
    STREAM_CREDENTIALS_BASEPATH,
    BulkNewsConfig,
    from_env,
)
from bulknews.common.errors import ConstructionError, TransportError
from bulknews.transport.http import ApiClient, auth_headers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountInfo:
    name: Optional[str]
    max_allowed_extractions: Optional[int]
    total_extractions: Optional[int]


class StreamUser:
    """
    The account that owns a stream.

    Provides the `user-key` headers, the account limits and the Pub/Sub
    service-account credentials used to pull messages.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[BulkNewsConfig] = None,
        client: Optional[ApiClient] = None,
    ) -> None:
        self.config = config or from_env()
        key = api_key or self.config.api_key
        if not key:
            raise ConstructionError("An API key is required (FACTIVA_APIKEY)")
        self.api_key: str = key
        self.client = client or ApiClient(timeout_s=self.config.http_timeout_s)

        self.account_name: Optional[str] = None
        self.max_allowed_extractions: Optional[int] = None
        self.total_extractions: Optional[int] = None
        self._credentials: Optional[dict[str, Any]] = None

    def get_authentication_headers(self) -> dict[str, str]:
        return auth_headers(self.api_key, json_body=True)

    def fetch_info(self) -> AccountInfo:
        """
        Read the account details (limits and usage) from the server.

        Does not touch this object, so it is safe to call from a monitor
        thread while a consumer shares the user.
        """
        body = self.client.send_request(
            "GET",
            self.config.url(f"{ACCOUNT_BASEPATH}/{self.api_key}"),
            headers=self.get_authentication_headers(),
        )
        attrs = (body.get("data") or {}).get("attributes") or {}
        max_allowed = attrs.get("max_allowed_extractions")
        total = attrs.get("tot_extractions")
        return AccountInfo(
            name=attrs.get("name"),
            max_allowed_extractions=int(max_allowed) if max_allowed is not None else None,
            total_extractions=int(total) if total is not None else None,
        )

    def refresh_info(self) -> AccountInfo:
        info = self.fetch_info()
        self.account_name = info.name
        self.max_allowed_extractions = info.max_allowed_extractions
        self.total_extractions = info.total_extractions
        return info

    def fetch_credentials(self) -> dict[str, Any]:
        """
        Service-account JSON for the Pub/Sub project that carries the streams.

        Cached after the first successful read.
        """
        if self._credentials is not None:
            return self._credentials

        body = self.client.send_request(
            "GET",
            self.config.url(STREAM_CREDENTIALS_BASEPATH),
            headers=self.get_authentication_headers(),
        )
        raw = ((body.get("data") or {}).get("attributes") or {}).get("streaming_credentials")
        if not raw:
            raise TransportError("Streaming credentials missing from the account response")
        creds = json.loads(raw) if isinstance(raw, str) else dict(raw)
        self._credentials = creds
        return creds

    @property
    def project_id(self) -> Optional[str]:
        return self.fetch_credentials().get("project_id")

    def subscriber_client(self) -> Any:
        """
        Build a Pub/Sub `SubscriberClient` authenticated with the stream credentials.

        Lazy-imports `google.cloud.pubsub_v1` so the job side of the package
        can be used without the Pub/Sub dependencies.
        """
        try:
            from google.cloud import pubsub_v1  # type: ignore
            from google.oauth2 import service_account  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "google-cloud-pubsub is required to consume streams. "
                "Install with: pip install google-cloud-pubsub"
            ) from e

        credentials = service_account.Credentials.from_service_account_info(self.fetch_credentials())
        logger.debug("stream_user.subscriber_client_created")
        return pubsub_v1.SubscriberClient(credentials=credentials)
