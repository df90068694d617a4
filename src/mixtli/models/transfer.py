"""Transfer request and response models."""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Declared-size ceilings mirror what S3-compatible services accept
MAX_SINGLE_PUT_BYTES = 400 * 1024**3
MAX_MULTIPART_BYTES = 5 * 1024**4


class PresignRequest(BaseModel):
    """Request model for a single presigned PUT."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1)
    size: int = Field(..., gt=0, le=MAX_SINGLE_PUT_BYTES)
    content_type: str = Field(..., min_length=1, alias="contentType")


class PresignResponse(BaseModel):
    """Response model for a presigned PUT."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    put_url: str = Field(..., serialization_alias="putUrl")
    expires_in: int = Field(..., serialization_alias="expiresIn")
    expires_at: datetime = Field(..., serialization_alias="expiresAt")


class SignGetResponse(BaseModel):
    """Response model for a presigned GET."""

    key: str
    get_url: str = Field(..., serialization_alias="getUrl")
    expires_in: int = Field(..., serialization_alias="expiresIn")
    expires_at: datetime = Field(..., serialization_alias="expiresAt")


class MultipartCreateRequest(BaseModel):
    """Request model for opening a multipart upload."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1)
    size: int = Field(..., gt=0, le=MAX_MULTIPART_BYTES)
    content_type: str = Field(..., min_length=1, alias="contentType")
    part_size: Optional[int] = Field(None, gt=0, alias="partSize")


class MultipartCreateResponse(BaseModel):
    """Response model for an opened multipart upload."""

    upload_id: str = Field(..., serialization_alias="uploadId")
    key: str
    part_size: int = Field(..., serialization_alias="partSize")


class MultipartPartUrlRequest(BaseModel):
    """Request model for signing one part."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., min_length=1, alias="uploadId")
    key: str = Field(..., min_length=1)
    part_number: int = Field(..., gt=0, le=10_000, alias="partNumber")


class MultipartPartUrlResponse(BaseModel):
    """Response model for a signed part URL."""

    url: str


class UploadedPart(BaseModel):
    """A part number with the ETag storage returned for it."""

    part_number: int = Field(
        ..., gt=0, le=10_000, validation_alias=AliasChoices("PartNumber", "partNumber", "part_number")
    )
    etag: str = Field(..., min_length=1, validation_alias=AliasChoices("ETag", "etag", "Etag"))


class MultipartCompleteRequest(BaseModel):
    """Request model for completing a multipart upload."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., min_length=1, alias="uploadId")
    key: str = Field(..., min_length=1)
    parts: List[UploadedPart] = Field(..., min_length=1)


class MultipartCompleteResponse(BaseModel):
    """Response model for a completed multipart upload."""

    ok: bool = True
    key: str
    location: Optional[str] = None


class MultipartAbortRequest(BaseModel):
    """Request model for aborting a multipart upload."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., min_length=1, alias="uploadId")
    key: str = Field(..., min_length=1)


class OkResponse(BaseModel):
    """Plain acknowledgement."""

    ok: bool = True


class BundleItem(BaseModel):
    """One object to include in a bundle."""

    key: str = Field(..., min_length=1)
    name: Optional[str] = None


class BundleCreateRequest(BaseModel):
    """Request model for storing a bundle manifest."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    items: List[BundleItem] = Field(..., min_length=1, max_length=1000)
    expires_in_days: Optional[int] = Field(None, alias="expiresInDays")


class BundleCreateResponse(BaseModel):
    """Response model for a stored bundle manifest."""

    manifest_key: str = Field(..., serialization_alias="manifestKey")
    name: str
    count: int
    download_path: str = Field(..., serialization_alias="downloadPath")
    expires_at: Optional[datetime] = Field(None, serialization_alias="expiresAt")
    id: Optional[str] = None


class BundleInfoItem(BaseModel):
    """One member of a stored bundle."""

    key: str
    name: str
    size: Optional[int] = None
    type: Optional[str] = None


class BundleInfoResponse(BaseModel):
    """Response model describing a stored bundle."""

    id: str
    name: str
    count: int
    total_bytes: int = Field(..., serialization_alias="totalBytes")
    items: List[BundleInfoItem]
    expires_at: Optional[datetime] = Field(None, serialization_alias="expiresAt")
    download_path: str = Field(..., serialization_alias="downloadPath")
