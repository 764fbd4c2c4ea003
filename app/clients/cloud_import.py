"""Import drone GeoTIFFs from shared cloud folders into imagery storage."""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from app.clients.base import (
    FeatureDisabledError,
    build_http_client,
    raise_for_status,
)
from app.config import settings
from app.storage.imagery import ImageryStore, parse_imagery_filename

logger = logging.getLogger(__name__)

SERVICE = "google_drive"
DRIVE_API = "https://www.googleapis.com/drive/v3"


def _is_tiff(entry: Dict[str, Any]) -> bool:
    name = entry.get("name", "").lower()
    return name.endswith((".tif", ".tiff")) or entry.get("mimeType") == "image/tiff"


class GoogleDriveImporter:
    """Copies every TIFF in a shared Drive folder into a farm's imagery."""

    def __init__(
        self,
        store: ImageryStore,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._store = store
        self.api_key = api_key if api_key is not None else settings.google_drive_api_key
        self._client = build_http_client(DRIVE_API, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_tiffs(self, folder_id: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise FeatureDisabledError(
                "Google Drive API key not configured. Set GOOGLE_DRIVE_API_KEY."
            )
        response = await self._client.get(
            "/files",
            params={
                "q": f"'{folder_id}' in parents",
                "key": self.api_key,
                "fields": "files(id,name,mimeType,size,modifiedTime)",
            },
        )
        raise_for_status(response, SERVICE, "Failed to list Google Drive files")
        return [f for f in response.json().get("files", []) if _is_tiff(f)]

    async def import_folder(self, folder_id: str, farm_id: str) -> Dict[str, Any]:
        """Download and store each TIFF. A failing file is recorded and skipped."""
        tiffs = await self.list_tiffs(folder_id)
        processed = []

        for entry in tiffs:
            name = entry["name"]
            try:
                response = await self._client.get(
                    f"/files/{entry['id']}", params={"alt": "media", "key": self.api_key}
                )
                raise_for_status(response, SERVICE, f"Could not download {name}")

                flight_date, layer_type = parse_imagery_filename(name)
                result = await self._store.upload_drone_imagery(
                    response.content,
                    farm_id=farm_id,
                    flight_date=flight_date or date.today().isoformat(),
                    layer_type=layer_type,
                )
                processed.append({
                    "original_name": name,
                    "success": True,
                    "flight_id": result.flight_id,
                    "storage_path": result.storage_path,
                })
            except Exception as exc:
                logger.error("Error processing file %s: %s", name, exc)
                processed.append({"original_name": name, "success": False, "error": str(exc)})

        return {"total_found": len(tiffs), "processed": processed}


async def import_from_onedrive(share_link: str, farm_id: str) -> Dict[str, Any]:
    raise FeatureDisabledError(
        "OneDrive integration requires Microsoft Graph API setup. "
        "Please use the manual upload option or Google Drive for now."
    )
