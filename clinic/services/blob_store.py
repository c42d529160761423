import os
import secrets
import time

import aiofiles
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.config import Settings
from clinic.models.blob import Blob


class BlobStore:
    """Writes uploaded attachments to disk and records them in the blobs table."""

    def __init__(self, settings: Settings):
        self.upload_dir = settings.upload_dir
        self.base_url = settings.blob_base_url.rstrip("/")

    async def upload(self, data: bytes, name: str, db: AsyncSession) -> Blob:
        blob_name = f"attachments/{int(time.time() * 1000)}_{secrets.token_hex(3)}_{self._safe_name(name)}"
        file_path = os.path.join(self.upload_dir, *blob_name.split("/"))
        os.makedirs(os.path.dirname(file_path), exist_ok=True)

        async with aiofiles.open(file_path, "wb") as f:
            await f.write(data)

        blob = Blob(
            name=blob_name,
            file_path=file_path,
            url=f"{self.base_url}/{blob_name}",
            file_size=len(data),
        )
        db.add(blob)
        await db.flush()
        await db.refresh(blob)
        return blob

    def _safe_name(self, name: str) -> str:
        base = os.path.basename(name.replace("\\", "/")) or "file"
        return "".join(c if c.isalnum() or c in "._-" else "_" for c in base)
