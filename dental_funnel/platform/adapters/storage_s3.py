import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from dental_funnel.platform.ports.object_storage import ObjectStoragePort
from dental_funnel.core.config import settings

class S3Storage(ObjectStoragePort):
    def __init__(self):
        session = boto3.session.Session(
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
        )
        self.s3 = session.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            config=Config(signature_version="s3v4"),
        )
        self.bucket = settings.S3_BUCKET

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise OSError(f"s3 put {key} failed: {e}") from e

    def get_bytes(self, key: str) -> bytes:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise OSError(f"s3 get {key} failed: {e}") from e
        return obj["Body"].read()
