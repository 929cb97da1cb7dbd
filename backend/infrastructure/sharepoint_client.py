"""
Infrastructure layer - SharePoint document library client.
Following SOLID: Single Responsibility - this client only lists and downloads
library files; extraction and indexing happen elsewhere.

Authenticates app-only against Azure AD and talks to the SharePoint REST API
over httpx. SharePoint REST only accepts app-only tokens signed with a
certificate, so certificate credentials go through msal; the client-secret
grant remains for tenants and proxies that accept it.
"""
import asyncio
import time
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, urlparse

import httpx
import msal

from domain.interfaces import IDocumentSource
from infrastructure.document_processor import content_type_for
from rag.config import SharePointConfig
from rag.errors import DocumentSourceError
from rag.models import DocumentMetadata

logger = logging.getLogger(__name__)

INDEXABLE_FILTER = (
    "FSObjType eq 0 and (endswith(FileLeafRef, '.pdf') "
    "or endswith(FileLeafRef, '.docx') or endswith(FileLeafRef, '.doc'))"
)


class SharePointClient(IDocumentSource):
    """SharePoint REST client for one document library."""

    TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
    AUTHORITY_URL = "https://login.microsoftonline.com/{tenant_id}"

    def __init__(self, config: SharePointConfig, http_client: Optional[httpx.AsyncClient] = None):
        config.validate()
        self.config = config
        self.site_url = config.site_url.rstrip("/")
        parsed = urlparse(self.site_url)
        self.origin = f"{parsed.scheme}://{parsed.netloc}"

        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._msal_app: Optional[msal.ConfidentialClientApplication] = None

        auth = "certificate" if config.uses_certificate else "client secret"
        logger.info(f"SharePoint client initialized for {self.site_url} / {config.library_name} ({auth})")

    async def list_documents(self) -> List[DocumentMetadata]:
        """List PDF and Word files in the library, following pagination."""
        logger.info(f"Fetching documents from library: {self.config.library_name}")

        library = self.config.library_name.replace("'", "''")
        url: Optional[str] = f"{self.site_url}/_api/web/lists/getbytitle('{library}')/items"
        params: Optional[dict] = {
            "$select": "Id,FileLeafRef,File/Name,File/ServerRelativeUrl,"
                       "File/TimeLastModified,File/Length,File/UniqueId",
            "$expand": "File",
            "$filter": INDEXABLE_FILTER,
            "$top": "500",
        }

        documents: List[DocumentMetadata] = []
        try:
            while url:
                response = await self._client.get(url, params=params, headers=await self._headers())
                response.raise_for_status()
                payload = response.json()

                for item in payload.get("value", []):
                    documents.append(self._to_metadata(item))

                url = payload.get("odata.nextLink") or payload.get("@odata.nextLink")
                params = None  # nextLink already carries the query
        except httpx.HTTPError as e:
            logger.error(f"Failed to list documents: {e}")
            raise DocumentSourceError(f"Failed to list documents: {e}") from e

        logger.info(f"Found {len(documents)} documents")
        return documents

    async def download_document(self, path: str) -> bytes:
        """Download a file by its server-relative URL."""
        logger.debug(f"Downloading document: {path}")
        encoded = quote(path.replace("'", "''"), safe="/")
        url = f"{self.site_url}/_api/web/GetFileByServerRelativePath(decodedurl='{encoded}')/$value"

        try:
            response = await self._client.get(url, headers=await self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to download document: {path}: {e}")
            raise DocumentSourceError(f"Failed to download {path}: {e}") from e

        logger.debug(f"Downloaded {len(response.content)} bytes")
        return response.content

    async def close(self) -> None:
        await self._client.aclose()

    def _to_metadata(self, item: dict) -> DocumentMetadata:
        file_info = item["File"]
        server_relative_url = file_info["ServerRelativeUrl"]
        return DocumentMetadata(
            id=file_info.get("UniqueId") or str(item["Id"]),
            filename=file_info["Name"],
            url=f"{self.origin}{server_relative_url}",
            path=server_relative_url,
            modified=file_info["TimeLastModified"],
            size=int(file_info.get("Length") or 0),
            content_type=content_type_for(file_info["Name"]),
            library=self.config.library_name,
        )

    async def _headers(self) -> dict:
        token = await self._get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json;odata=nometadata",
        }

    async def _get_token(self) -> str:
        # Refresh a minute early so long crawls don't hit an expired token mid-request
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token

        if self.config.uses_certificate:
            data = await self._request_certificate_token()
        else:
            data = await self._request_secret_token()

        self._token = data["access_token"]
        self._token_expires_at = time.time() + int(data.get("expires_in", 3600))
        logger.debug("Acquired SharePoint access token")
        return self._token

    async def _request_certificate_token(self) -> dict:
        if self._msal_app is None:
            try:
                private_key = Path(self.config.certificate_path).read_text()
            except OSError as e:
                logger.error(f"Failed to read certificate {self.config.certificate_path}: {e}")
                raise DocumentSourceError(f"Failed to read certificate: {e}") from e
            self._msal_app = msal.ConfidentialClientApplication(
                self.config.client_id,
                authority=self.AUTHORITY_URL.format(tenant_id=self.config.tenant_id),
                client_credential={"private_key": private_key, "thumbprint": self.config.thumbprint},
            )

        # msal is synchronous
        result = await asyncio.to_thread(
            self._msal_app.acquire_token_for_client, scopes=[f"{self.origin}/.default"]
        )
        if "access_token" not in result:
            reason = result.get("error_description") or result.get("error") or "no access token"
            logger.error(f"SharePoint authentication failed: {reason}")
            raise DocumentSourceError(f"SharePoint authentication failed: {reason}")
        return result

    async def _request_secret_token(self) -> dict:
        try:
            response = await self._client.post(
                self.TOKEN_URL.format(tenant_id=self.config.tenant_id),
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "client_credentials",
                    "scope": f"{self.origin}/.default",
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"SharePoint authentication failed: {e}")
            raise DocumentSourceError(f"SharePoint authentication failed: {e}") from e
        return response.json()
