from .cascade import FallbackCascade, decide_route
from .classifier import ErrorKind, ErrorReport, classify
from .config import PipelineConfig
from .contracts import CascadeResult, ChatMessage, GenerationRequest, OutputShape, Route
from .errors import GenerationError
from .extractor import ResponseExtractor
from .models import DocumentPoint, ExtractionTier, ExtractionWarning, StructuredDocument
from .orchestrator import RunOrchestrator
from .pipeline import GenerationPipeline, create_pipeline
from .prompts import SermonRequest

__all__ = [
    "CascadeResult",
    "ChatMessage",
    "DocumentPoint",
    "ErrorKind",
    "ErrorReport",
    "ExtractionTier",
    "ExtractionWarning",
    "FallbackCascade",
    "GenerationError",
    "GenerationPipeline",
    "GenerationRequest",
    "OutputShape",
    "PipelineConfig",
    "ResponseExtractor",
    "Route",
    "RunOrchestrator",
    "SermonRequest",
    "StructuredDocument",
    "classify",
    "create_pipeline",
    "decide_route",
]
