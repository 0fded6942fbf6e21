# app/prescription_engine/image_ingestion.py
"""
Image Ingestion - validates an upload batch against its context policy and
stores every file. The whole batch is checked before anything is written.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import UploadFile

from app.helpers.exceptions import ValidationError
from app.prescription_engine.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadPolicy:
    context: str
    max_files: int
    max_bytes: int
    mime_types: Tuple[str, ...]
    folder: str

    @property
    def max_megabytes(self) -> int:
        return self.max_bytes // (1024 * 1024)


@dataclass(frozen=True)
class ImageDescriptor:
    """What a PrescriptionImage row is built from."""
    url: str
    storage_key: str
    original_name: str
    size: int
    mime_type: str


def policies_from_settings(settings) -> Dict[str, UploadPolicy]:
    return {
        "prescription": UploadPolicy(
            context="prescription",
            max_files=settings.MAX_PRESCRIPTION_IMAGES,
            max_bytes=settings.MAX_PRESCRIPTION_IMAGE_BYTES,
            mime_types=tuple(settings.PRESCRIPTION_MIME_TYPES),
            folder="prescriptions",
        ),
        "product": UploadPolicy(
            context="product",
            max_files=settings.MAX_PRODUCT_IMAGES,
            max_bytes=settings.MAX_PRODUCT_IMAGE_BYTES,
            mime_types=tuple(settings.CATALOG_MIME_TYPES),
            folder="products",
        ),
        "avatar": UploadPolicy(
            context="avatar",
            max_files=1,
            max_bytes=settings.MAX_AVATAR_IMAGE_BYTES,
            mime_types=tuple(settings.CATALOG_MIME_TYPES),
            folder="avatars",
        ),
    }


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes


class ImageIngestor:
    def __init__(self, storage: ObjectStorage, policies: Dict[str, UploadPolicy]):
        self.storage = storage
        self.policies = policies

    def policy(self, context: str) -> UploadPolicy:
        try:
            return self.policies[context]
        except KeyError:
            raise ValueError(f"Unknown upload context: {context}")

    @staticmethod
    async def read_uploads(uploads: Optional[Sequence[UploadFile]]) -> List[IncomingFile]:
        """Pull multipart uploads into memory, skipping empty form slots."""
        files = []
        for upload in uploads or []:
            if upload is None or not upload.filename:
                continue
            data = await upload.read()
            files.append(IncomingFile(
                filename=upload.filename,
                content_type=(upload.content_type or "").lower(),
                data=data,
            ))
        return files

    def validate(self, files: Sequence[IncomingFile], context: str) -> UploadPolicy:
        policy = self.policy(context)

        if len(files) > policy.max_files:
            raise ValidationError(
                f"Too many files. Maximum is {policy.max_files}",
                errors=[{"field": "files", "message": f"Maximum {policy.max_files} files for {context} uploads"}],
            )

        for incoming in files:
            if incoming.content_type not in policy.mime_types:
                raise ValidationError.for_field(
                    incoming.filename,
                    f"Invalid file type for {incoming.filename}. Allowed: {', '.join(policy.mime_types)}",
                )
            if not incoming.data:
                raise ValidationError.for_field(incoming.filename, f"File {incoming.filename} is empty")
            if len(incoming.data) > policy.max_bytes:
                raise ValidationError.for_field(
                    incoming.filename,
                    f"File {incoming.filename} is too large. Maximum size is {policy.max_megabytes}MB",
                )
        return policy

    async def ingest(self, files: Sequence[IncomingFile], context: str = "prescription") -> List[ImageDescriptor]:
        """
        Validate then store a batch of uploads.

        Args:
            files: Files already read from the request
            context: Upload policy to apply (prescription, product, avatar)

        Returns:
            One ImageDescriptor per file, in upload order
        """
        policy = self.validate(files, context)

        descriptors = []
        for incoming in files:
            stored = await self.storage.save(incoming.data, incoming.filename, policy.folder)
            descriptors.append(ImageDescriptor(
                url=stored.url,
                storage_key=stored.key,
                original_name=incoming.filename,
                size=len(incoming.data),
                mime_type=incoming.content_type,
            ))

        if descriptors:
            logger.info(f"📥 Ingested {len(descriptors)} {context} file(s)")
        return descriptors
