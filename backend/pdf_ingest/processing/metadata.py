"""
LLM Metadata Extraction
═══════════════════════

  extracted text ─► truncate (15,000 chars)
                 ─► prompt (+ existing keyword / technology-area vocabulary)
                 ─► LLMGateway.complete()
                 ─► first {...} block ─► json.loads
                 ─► per-field validation (never rejects the whole record)

Validation policy:
  year              int in [1900, 2100]; else a 19xx/20xx year found in a
                    string; else an integer prefix in bounds; else the
                    current year
  region/industry   lowercased, must be a closed-enum value, else "other"
  document_type     lowercased, whitespace → "_", closed enum, else "other"
  string arrays     non-strings and blanks dropped, trimmed, capped
  string fields     missing → ""

Failure (no API key, empty text, no JSON, LLM error) is returned on the
result; enrichment is best-effort and never fails the pipeline.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from pdf_ingest.core.config import settings
from pdf_ingest.llm.gateway import LLMGateway
from pdf_ingest.schemas.documents import DocumentType, Industry, Region

logger = logging.getLogger(__name__)

YEAR_MIN = 1900
YEAR_MAX = 2100

MAX_AUTHORS          = 10
MAX_KEY_FINDINGS     = 5
MAX_KEYWORDS         = 10
MAX_TECHNOLOGY_AREAS = 10

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_YEAR_IN_TEXT = re.compile(r"\b(19|20)\d{2}\b")
_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class DocumentMetadata:
    title:            str = ""
    company:          str = ""
    year:             int = 0
    topic:            str = ""
    summary:          str = ""
    region:           str = Region.OTHER.value
    industry:         str = Industry.OTHER.value
    document_type:    str = DocumentType.OTHER.value
    authors:          list[str] = field(default_factory=list)
    key_findings:     list[str] = field(default_factory=list)
    keywords:         list[str] = field(default_factory=list)
    technology_areas: list[str] = field(default_factory=list)

    def to_columns(self) -> dict[str, Any]:
        """Column values for ingest.documents (title is left to the uploader)."""
        return {
            "company":          self.company or None,
            "year":             self.year,
            "topic":            self.topic or None,
            "summary":          self.summary or None,
            "region":           self.region,
            "industry":         self.industry,
            "document_type":    self.document_type,
            "authors":          self.authors,
            "key_findings":     self.key_findings,
            "keywords":         self.keywords,
            "technology_areas": self.technology_areas,
        }


@dataclass
class MetadataExtractionResult:
    success:  bool
    metadata: DocumentMetadata | None = None
    error:    str | None = None


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------

def current_year() -> int:
    return datetime.now(timezone.utc).year


def _in_bounds(year: int) -> bool:
    return YEAR_MIN <= year <= YEAR_MAX


def validate_year(value: Any) -> int:
    if isinstance(value, bool):
        return current_year()

    if isinstance(value, int) and _in_bounds(value):
        return value

    if isinstance(value, float) and value.is_integer() and _in_bounds(int(value)):
        return int(value)

    if isinstance(value, str):
        match = _YEAR_IN_TEXT.search(value)
        if match and _in_bounds(int(match.group(0))):
            return int(match.group(0))

        prefix = _INT_PREFIX.match(value)
        if prefix and _in_bounds(int(prefix.group(1))):
            return int(prefix.group(1))

    return current_year()


def _validate_enum(value: Any, allowed: Sequence[str], normalise_spaces: bool = False) -> str:
    if not isinstance(value, str):
        return "other"
    candidate = value.lower()
    if normalise_spaces:
        candidate = re.sub(r"\s+", "_", candidate)
    return candidate if candidate in allowed else "other"


def validate_region(value: Any) -> str:
    return _validate_enum(value, [r.value for r in Region])


def validate_industry(value: Any) -> str:
    return _validate_enum(value, [i.value for i in Industry])


def validate_document_type(value: Any) -> str:
    return _validate_enum(value, [d.value for d in DocumentType], normalise_spaces=True)


def validate_string_array(value: Any, max_items: int) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return items[:max_items]


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_metadata(payload: dict[str, Any]) -> DocumentMetadata:
    return DocumentMetadata(
        title=_string(payload.get("title")),
        company=_string(payload.get("company")),
        year=validate_year(payload.get("year", payload.get("dateOrYear"))),
        topic=_string(payload.get("topic")),
        summary=_string(payload.get("summary")),
        region=validate_region(payload.get("region", payload.get("continent"))),
        industry=validate_industry(payload.get("industry")),
        document_type=validate_document_type(
            payload.get("document_type", payload.get("documentType"))
        ),
        authors=validate_string_array(payload.get("authors"), MAX_AUTHORS),
        key_findings=validate_string_array(
            payload.get("key_findings", payload.get("keyFindings")), MAX_KEY_FINDINGS
        ),
        keywords=validate_string_array(payload.get("keywords"), MAX_KEYWORDS),
        technology_areas=validate_string_array(
            payload.get("technology_areas", payload.get("technologyAreas")), MAX_TECHNOLOGY_AREAS
        ),
    )


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Greedy match from the first '{' to the last '}'; None if absent or invalid."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_PROMPT_TEMPLATE = """Analyze the following document content and extract metadata in JSON format.

Document content:
{content}
{vocabulary}
Extract the following fields:
- title: The title of the document or report
- company: The company that authored or is the subject of the document
- year: The publication year as an INTEGER (e.g. 2024). Use the most recent publication year if several appear.
- topic: A one-sentence topic description (max 100 characters)
- summary: An executive summary of the document (2-4 paragraphs covering key findings, insights and conclusions)
- region: One of: {regions}
- industry: One of: {industries}
- document_type: One of: {document_types}
- authors: Array of author names (empty array if none, max {max_authors})
- key_findings: Array of 3-{max_findings} key takeaways
- keywords: Array of up to {max_keywords} searchable keywords. Prefer existing keywords when semantically equivalent.
- technology_areas: Array of specific technology focus areas. Prefer existing technology areas when semantically equivalent.

Respond ONLY with valid JSON, no other text."""


def _vocabulary_section(label: str, values: Sequence[str]) -> str:
    if not values:
        return ""
    return (
        f"\nEXISTING {label} IN THE LIBRARY (reuse these when semantically equivalent; "
        f"only introduce a new one if none fits):\n{', '.join(values)}\n"
    )


def build_prompt(
    text: str,
    existing_keywords: Sequence[str] = (),
    existing_technology_areas: Sequence[str] = (),
    max_chars: int | None = None,
) -> str:
    limit = max_chars or settings.metadata_max_chars
    vocabulary = (
        _vocabulary_section("KEYWORDS", existing_keywords)
        + _vocabulary_section("TECHNOLOGY AREAS", existing_technology_areas)
    )
    return _PROMPT_TEMPLATE.format(
        content=text[:limit],
        vocabulary=vocabulary,
        regions=", ".join(f'"{r.value}"' for r in Region),
        industries=", ".join(f'"{i.value}"' for i in Industry),
        document_types=", ".join(f'"{d.value}"' for d in DocumentType),
        max_authors=MAX_AUTHORS,
        max_findings=MAX_KEY_FINDINGS,
        max_keywords=MAX_KEYWORDS,
    )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class MetadataExtractor:

    def __init__(self, gateway: LLMGateway | None = None) -> None:
        self._gateway = gateway

    async def extract(
        self,
        text: str,
        existing_keywords: Sequence[str] = (),
        existing_technology_areas: Sequence[str] = (),
    ) -> MetadataExtractionResult:
        if self._gateway is None and not settings.openai_api_key:
            return MetadataExtractionResult(success=False, error="OPENAI_API_KEY must be set")

        if not text or not text.strip():
            return MetadataExtractionResult(
                success=False, error="No text content provided for metadata extraction"
            )

        gateway = self._gateway or LLMGateway()
        prompt = build_prompt(text, existing_keywords, existing_technology_areas)

        try:
            raw = await gateway.complete(prompt)
        except Exception as exc:
            logger.warning("Metadata extraction LLM call failed: %s", exc)
            return MetadataExtractionResult(success=False, error=str(exc) or type(exc).__name__)

        payload = extract_json_object(raw)
        if payload is None:
            return MetadataExtractionResult(
                success=False, error="Failed to parse metadata from LLM response"
            )

        metadata = parse_metadata(payload)
        logger.info(
            "Metadata extracted | company=%r year=%d type=%s keywords=%d",
            metadata.company, metadata.year, metadata.document_type, len(metadata.keywords),
        )
        return MetadataExtractionResult(success=True, metadata=metadata)
