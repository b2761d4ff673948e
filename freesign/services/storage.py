import logging
import os
from typing import BinaryIO

import requests

from ..config import settings

logger = logging.getLogger(__name__)

UPLOADS = "uploads"
SIGNED = "signed_docs"


def is_blob_storage() -> bool:
    return bool(settings.BLOB_READ_WRITE_TOKEN)


def _local_dir(folder: str) -> str:
    local_dir = settings.UPLOAD_DIR if folder == UPLOADS else settings.SIGNED_DIR
    os.makedirs(local_dir, exist_ok=True)
    return local_dir


async def upload_file(file_content: BinaryIO, filename: str, folder: str = UPLOADS) -> str:
    """
    Store a file in Vercel Blob (when BLOB_READ_WRITE_TOKEN is set) or on the
    local filesystem.

    Returns the blob URL or the local path; either is kept on the document
    as an opaque storage reference.
    """
    content = file_content.read()
    if is_blob_storage():
        from vercel_blob import put

        result = put(f"{folder}/{filename}", content)
        return result["url"]

    file_path = os.path.join(_local_dir(folder), filename)
    with open(file_path, "wb") as f:
        f.write(content)
    return file_path


async def download_file(file_path: str) -> bytes:
    if file_path.startswith("http"):
        response = requests.get(file_path, timeout=30)
        response.raise_for_status()
        return response.content

    with open(file_path, "rb") as f:
        return f.read()


async def delete_file(file_path: str) -> bool:
    try:
        if is_blob_storage() and file_path.startswith("http"):
            from vercel_blob import delete as blob_delete

            blob_delete(file_path)
        elif os.path.exists(file_path):
            os.remove(file_path)
        return True
    except (OSError, requests.RequestException) as e:
        logger.error(f"Error deleting file {file_path}: {e}")
        return False
