import asyncio
import io
import os

from freesign.services import storage


def test_local_round_trip():
    path = asyncio.run(storage.upload_file(io.BytesIO(b"%PDF-1.4 test"), "a.pdf", storage.UPLOADS))
    assert os.path.dirname(path) == storage.settings.UPLOAD_DIR
    assert asyncio.run(storage.download_file(path)) == b"%PDF-1.4 test"

    assert asyncio.run(storage.delete_file(path)) is True
    assert not os.path.exists(path)


def test_signed_copies_go_to_their_own_folder():
    path = asyncio.run(storage.upload_file(io.BytesIO(b"signed"), "signed_1.pdf", storage.SIGNED))
    assert os.path.dirname(path) == storage.settings.SIGNED_DIR


def test_local_storage_without_blob_token():
    assert storage.is_blob_storage() is False
