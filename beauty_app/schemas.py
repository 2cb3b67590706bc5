from __future__ import annotations

import base64
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CaptureSource(str, Enum):
	camera = "camera"
	upload = "upload"


class CapturedImage(BaseModel):
	"""Encoded portrait held as a base64 payload, never mutated after capture."""

	model_config = ConfigDict(frozen=True)

	data: str
	mime_type: str = "image/jpeg"
	source: CaptureSource

	@property
	def data_url(self) -> str:
		return f"data:{self.mime_type};base64,{self.data}"

	def to_bytes(self) -> bytes:
		return base64.b64decode(self.data)


class FacialMetric(BaseModel):
	model_config = ConfigDict(frozen=True)

	label: str
	score: float = Field(ge=0, le=100)


class Product(BaseModel):
	model_config = ConfigDict(frozen=True, populate_by_name=True)

	id: str
	name: str
	description: str = ""
	price: float = 0.0
	url: str = ""
	thumbnail_url: str = Field(default="", alias="thumbnailUrl")


class DiagnosticResult(BaseModel):
	model_config = ConfigDict(frozen=True, populate_by_name=True)

	summary: str
	metrics: List[FacialMetric] = []
	# base64 overlay image, absent when the model returned text only
	report_image: Optional[str] = Field(default=None, alias="reportImage")
	report_mime_type: str = "image/png"


class SearchResult(BaseModel):
	model_config = ConfigDict(frozen=True)

	description: str
	products: List[Product] = []


class SharedPayload(BaseModel):
	"""The only state carried in a share link. Images are excluded."""

	model_config = ConfigDict(frozen=True)

	desc: str
	prods: List[Product]


class ApplicationState(BaseModel):
	model_config = ConfigDict(frozen=True)

	original_image: Optional[CapturedImage] = None
	diagnostic_image: Optional[str] = None
	generated_image: Optional[str] = None
	products: List[Product] = []
	is_loading: bool = False
	error: Optional[str] = None
	look_description: Optional[str] = None
	diagnostic_summary: Optional[str] = None
	diagnostic_metrics: List[FacialMetric] = []


# Request bodies for the local HTTP surface

class GenerateRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	user_request: str = Field(default="", alias="userRequest")
	research_notes: str = Field(default="", alias="researchNotes")


class ShareRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	base_url: Optional[str] = Field(default=None, alias="baseUrl")


class RestoreRequest(BaseModel):
	fragment: str


class InlineImage(BaseModel):
	"""Image bytes returned inline by the model, base64 encoded."""

	model_config = ConfigDict(frozen=True)

	data: str
	mime_type: str = "image/png"

	@property
	def data_url(self) -> str:
		return f"data:{self.mime_type};base64,{self.data}"
