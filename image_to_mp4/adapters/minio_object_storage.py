import mimetypes
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import S3Error

from image_to_mp4.application.ports import ObjectStoragePort


class MinioObjectStorageAdapter(ObjectStoragePort):
    """MinIOを利用するオブジェクトストレージアダプターです。"""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        secure: bool,
        client: Optional[Minio] = None,
    ) -> None:
        if client is None:
            client = Minio(
                endpoint=endpoint,
                access_key=access_key,
                secret_key=secret_key,
                secure=secure,
            )

        self._client = client

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        """入力画像をローカルへダウンロードします。"""

        local_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._client.fget_object(bucket_name=bucket, object_name=key, file_path=str(local_path))
        except S3Error as ex:
            if ex.code in ("NoSuchKey", "NoSuchBucket"):
                raise FileNotFoundError(f"入力オブジェクトが見つかりません: {bucket}/{key}") from ex
            raise

    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        content_type: Optional[str] = None,
    ) -> None:
        """ローカルファイルをアップロードします。content_type 省略時は拡張子から推定します。"""

        self._ensure_bucket_exists(bucket)

        if content_type is None:
            guessed, _ = mimetypes.guess_type(local_path.name)
            content_type = guessed if guessed is not None else "application/octet-stream"

        self._client.fput_object(
            bucket_name=bucket,
            object_name=key,
            file_path=str(local_path),
            content_type=content_type,
        )

    def _ensure_bucket_exists(self, bucket: str) -> None:
        """バケットの存在を確認し、なければ作成します。"""

        exists = self._client.bucket_exists(bucket)
        if exists == False:
            self._client.make_bucket(bucket)
