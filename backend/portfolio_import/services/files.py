from pathlib import Path
import uuid
from fastapi import UploadFile
from portfolio_import.core.config import settings

_CHUNK = 1024 * 1024

class UploadTooLargeError(Exception):
    pass

def ensure_dirs():
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

def upload_path(user_id: int, original_name: str) -> Path:
    # unique name so parallel uploads of the same file never overwrite each other
    safe = Path(original_name or "upload").name.replace(" ", "_")
    return Path(settings.UPLOAD_DIR) / f"{user_id}_{uuid.uuid4().hex}_{safe}"

def save_upload(file: UploadFile, dest_path: Path, max_bytes: int | None = None) -> int:
    """Copy the upload to ``dest_path`` and return its size in bytes."""
    limit = max_bytes if max_bytes is not None else settings.MAX_UPLOAD_MB * 1024 * 1024
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    size = 0
    with dest_path.open("wb") as f:
        while chunk := file.file.read(_CHUNK):
            size += len(chunk)
            if size > limit:
                break
            f.write(chunk)
    if size > limit:
        dest_path.unlink(missing_ok=True)
        raise UploadTooLargeError(f"File exceeds {limit // (1024 * 1024)} MB")
    return size
