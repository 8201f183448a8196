"""
Pydantic Models and Schemas
===========================

Core data models for diagram analysis, rendered diagrams, cache bookkeeping
and conversion results. Enums use ``str`` values so they serialize directly
into tool responses and cache side files.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Enums
class DiagramType(str, Enum):
    """Mermaid diagram families the analyzer distinguishes."""
    FLOWCHART = "flowchart"
    SEQUENCE = "sequence"
    CLASS = "class"
    STATE = "state"
    ENTITY_RELATIONSHIP = "entity-relationship"
    GANTT = "gantt"
    PIE = "pie"
    JOURNEY = "journey"
    GIT_GRAPH = "git-graph"
    MINDMAP = "mindmap"
    TIMELINE = "timeline"
    UNKNOWN = "unknown"


class ComplexityLevel(str, Enum):
    """Complexity bands, ordered from smallest to largest."""
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    VERY_COMPLEX = "very-complex"


class ImageFormat(str, Enum):
    """Output formats for rendered diagrams."""
    PNG = "png"
    JPEG = "jpeg"
    SVG = "svg"

    @property
    def is_vector(self) -> bool:
        return self is ImageFormat.SVG

    @property
    def mime_type(self) -> str:
        return "image/svg+xml" if self.is_vector else f"image/{self.value}"


class PageSize(str, Enum):
    """Supported page sizes."""
    A4 = "A4"
    LETTER = "Letter"
    LEGAL = "Legal"

    @classmethod
    def parse(cls, name: Optional[str]) -> "PageSize":
        """Resolve a page size name, falling back to A4 for unknown names."""
        for member in cls:
            if name and member.value.lower() == name.lower():
                return member
        return cls.A4


class ConversionStatus(str, Enum):
    """Outcome of a conversion that produced an artifact."""
    COMPLETED = "completed"
    DEGRADED = "degraded"


class OutputFormat(str, Enum):
    """Document formats a Markdown file converts to."""
    PDF = "pdf"
    CONFLUENCE = "confluence"


class OperationKind(str, Enum):
    """Operation families with their own overall timeout."""
    VALIDATION = "validation"
    EXTRACTION = "extraction"
    CONVERSION = "conversion"


# Analysis Models
class Dimensions(BaseModel):
    """Pixel dimensions."""
    model_config = ConfigDict(frozen=True)

    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)


class Viewport(BaseModel):
    """Browser viewport recommended for a diagram."""
    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    device_scale_factor: float = Field(..., gt=0, le=3.0)


class DiagramAnalysis(BaseModel):
    """Rendering plan computed from diagram source and page size."""
    model_config = ConfigDict(frozen=True)

    type: DiagramType
    complexity: ComplexityLevel
    estimated_dimensions: Dimensions
    recommended_viewport: Viewport
    render_library_config: Dict[str, Any] = Field(default_factory=dict)


# Rendering Models
class DiagramInfo(BaseModel):
    """Source side of a diagram."""
    index: int = Field(0, ge=0, description="Position of the block in its document")
    source: str = Field(..., description="Mermaid source text")
    diagram_type: DiagramType = DiagramType.UNKNOWN


class RenderedDiagram(BaseModel):
    """A rendered diagram, either fresh from the renderer or served from cache."""
    info: DiagramInfo
    image_data: str = Field(..., description="Base64 encoded image or SVG markup")
    format: ImageFormat
    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)
    fallback: bool = Field(False, description="True when the page drew the error placeholder")
    error_message: Optional[str] = None

    @property
    def data_url(self) -> str:
        return f"data:{self.format.mime_type};base64,{self.image_data}"

    @property
    def size_bytes(self) -> int:
        return len(self.image_data)


# Cache Models
class CacheEntry(BaseModel):
    """Bookkeeping for one cached render. ``data`` is None until hydrated."""
    hash: str
    data: Optional[RenderedDiagram] = None
    created_at: float
    last_accessed: float
    ttl_seconds: int = 0
    size_bytes: int = 0

    def is_expired(self, now: float) -> bool:
        if not self.ttl_seconds:
            return False
        return now - self.created_at > self.ttl_seconds


class CacheStats(BaseModel):
    """Cache statistics snapshot."""
    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = Field(0.0, description="Hit percentage rounded to two decimals")
    total_size: int = 0
    memory_usage: str = "0 B"
    evictions: int = 0


# Document Models
class DiagramOutcome(BaseModel):
    """Result of processing one diagram block inside a document."""
    index: int
    source: str
    rendered: Optional[RenderedDiagram] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.rendered is None or self.rendered.fallback


class AssembledDocument(BaseModel):
    """Markdown with every diagram block replaced by image or failure markup."""
    markdown: str
    diagrams: List[DiagramOutcome] = Field(default_factory=list)

    @property
    def diagram_count(self) -> int:
        return len(self.diagrams)

    @property
    def failed_diagram_count(self) -> int:
        return sum(1 for outcome in self.diagrams if outcome.failed)

    @property
    def status(self) -> ConversionStatus:
        if self.failed_diagram_count:
            return ConversionStatus.DEGRADED
        return ConversionStatus.COMPLETED


class ConversionMetadata(BaseModel):
    """Metadata reported with a conversion result."""
    file_size: int = 0
    diagram_count: int = 0
    failed_diagram_count: int = 0
    processing_time: float = Field(0.0, description="Seconds spent converting")


class ConversionResult(BaseModel):
    """Result of a Markdown conversion."""
    status: ConversionStatus
    pdf_base64: Optional[str] = None
    output_path: Optional[str] = None
    metadata: ConversionMetadata = Field(default_factory=ConversionMetadata)
    warnings: List[str] = Field(default_factory=list)
    confluence: Optional["ConfluenceDocument"] = None


# Batch Models
class BatchItem(BaseModel):
    """One file of a batch conversion."""
    input_path: str = Field(..., min_length=1)
    output_path: Optional[str] = None
    output_format: OutputFormat = OutputFormat.PDF
    title: Optional[str] = None
    page_size: Optional[str] = None


class BatchItemResult(BaseModel):
    """Outcome of one file of a batch."""
    input_path: str
    success: bool
    status: Optional[ConversionStatus] = None
    output_path: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class BatchSummary(BaseModel):
    """Counts for a batch conversion."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = Field(0, description="Files not attempted after a failure")
    processing_time: float = 0.0


class BatchResult(BaseModel):
    """Result of converting several files."""
    success: bool
    results: List[BatchItemResult] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)


class ExtractedDiagram(BaseModel):
    """A diagram returned by the extraction operation."""
    index: int
    code: str
    image_base64: Optional[str] = None
    format: ImageFormat
    fallback: bool = False
    error: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of Mermaid syntax validation."""
    valid: bool
    error: Optional[str] = None
    diagram_type: Optional[DiagramType] = None


# Confluence Models
class ConfluenceAttachment(BaseModel):
    """An image attachment referenced from storage format."""
    filename: str
    content_type: str = "image/png"
    data_base64: str
    size: int = 0


class ConfluenceDocument(BaseModel):
    """Confluence page payload in storage representation."""
    type: str = "page"
    title: str
    space_key: Optional[str] = None
    body: str = Field(..., description="Storage-format XHTML")
    attachments: List[ConfluenceAttachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_api_payload(self) -> Dict[str, Any]:
        """Shape the page the way the Confluence REST API expects it."""
        payload: Dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "body": {"storage": {"value": self.body, "representation": "storage"}},
        }
        if self.space_key:
            payload["space"] = {"key": self.space_key}
        return payload


ConversionResult.model_rebuild()
