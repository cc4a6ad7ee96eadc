"""Runsheet row analysis using the Claude API."""

import anthropic
import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod

from .config import CONFIG
from .models import Analysis, AnalysisRequest

logger = logging.getLogger(__name__)


ROW_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert oil and gas landman with deep knowledge of property records, "
    "mineral rights, and lease analysis. You excel at parsing runsheet data and "
    "determining ownership and leasehold changes."
)

ROW_ANALYSIS_PROMPT_TEMPLATE = """You are a professional oil and gas landman analyzing a single row from a runsheet document. Your task is to determine what this specific row tells us about ownership or leasing changes.

CONTEXT:
- Prospect: {prospect}
- Total Acres: {total_acres}
- Current Ownership State: {current_ownership}

ROW TO ANALYZE:
Row {row_number}: {row_content}

ANALYSIS INSTRUCTIONS:
1. Determine the document type (WD, QCD, MD, PRMD, OGL, Patent, etc.)
2. Extract document number/reference if present
3. Identify grantors (sellers/lessors) and grantees (buyers/lessees)
4. Determine if this represents an ownership change
5. Estimate percentage of ownership involved (if determinable)
6. Determine lease status if this is a lease document
7. Extract effective dates, acreage, and other key details
8. Provide a clear description of what this row represents

IMPORTANT ANALYSIS RULES:
- WD = Warranty Deed (ownership transfer)
- QCD = Quit Claim Deed (ownership transfer)
- MD = Mineral Deed (mineral rights transfer)
- PRMD = Partial Release Mineral Deed (partial mineral release)
- OGL = Oil and Gas Lease (leasing document)
- Patent = Original government grant
- Be careful with percentages - look for fractions, percentages, or words like "undivided"
- Note if this affects surface vs mineral rights, and quote any mineral reservation
  (e.g. "reserving 1/2 of the minerals") in the description
- Identify if this is a current lease or expired lease

Return your analysis as JSON with this exact structure:
{{
  "documentType": "string (WD, QCD, MD, OGL, Patent, etc.)",
  "documentNumber": "string or null",
  "recordingReference": "string or null (Book/Page or Document Number)",
  "grantors": ["array of grantor names"],
  "grantees": ["array of grantee names"],
  "ownershipChange": boolean,
  "leaseStatus": "active" | "expired" | "none",
  "percentageChange": number or null,
  "effectiveDate": "string or null",
  "acreage": number or null,
  "description": "Brief description of what this row represents",
  "leaseDetails": {{
    "lessor": "string or null",
    "lessee": "string or null",
    "dated": "string or null",
    "term": "string or null",
    "expiration": "string or null",
    "documentNumber": "string or null",
    "royalty": "string or null",
    "clauses": ["array of special clauses like Pugh"]
  }},
  "confidence": "high" | "medium" | "low",
  "notes": "Any additional observations or uncertainties"
}}

Return ONLY the JSON object."""


# Used when the model's reply cannot be read as JSON
FALLBACK_ANALYSIS = {
    "documentType": "Unknown",
    "grantors": [],
    "grantees": [],
    "ownershipChange": False,
    "leaseStatus": "none",
    "description": "Could not parse row content",
    "confidence": "low",
    "notes": "AI analysis failed, manual review required",
}


class AnalysisProvider(ABC):
    """Turns one runsheet row into a structured Analysis."""

    @abstractmethod
    async def analyze(self, request: AnalysisRequest) -> Analysis:
        """Analyze a row. Raises on failure; the session treats any error as recoverable."""
        pass


def build_row_prompt(request: AnalysisRequest) -> str:
    return ROW_ANALYSIS_PROMPT_TEMPLATE.format(
        prospect=request.prospect,
        total_acres=request.total_acres,
        current_ownership=json.dumps(request.current_ownership.to_dict()),
        row_number=request.row_number,
        row_content=request.row_content,
    )


def parse_analysis_response(response_text: str) -> Analysis:
    """
    Read the model's JSON reply into an Analysis.

    Markdown code fences and surrounding prose are tolerated. A reply with
    no readable JSON object yields a low-confidence, no-change fallback.
    """
    text = response_text.strip()
    if text.startswith("```"):
        # Remove opening fence (```json or ```)
        lines = text.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        # Remove closing fence
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    match = re.search(r'\{[\s\S]*\}', text)
    try:
        if not match:
            raise ValueError("No valid JSON found in response")
        data = json.loads(match.group(0))
        if not isinstance(data, dict):
            raise ValueError("Response JSON is not an object")
    except (ValueError, json.JSONDecodeError) as e:
        logger.error(f"Failed to parse AI response: {e}")
        logger.error(f"Response text was: {response_text[:500]}")
        return Analysis.from_dict(FALLBACK_ANALYSIS)

    return Analysis.from_dict(data)


async def retry_with_backoff(func, *args, **kwargs):
    """
    Retry function with exponential backoff for rate limit errors.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        Last exception if all retries fail
    """
    retry_delay = CONFIG.INITIAL_RETRY_DELAY

    for attempt in range(CONFIG.MAX_RETRIES):
        try:
            return await func(*args, **kwargs)
        except anthropic.RateLimitError:
            if attempt == CONFIG.MAX_RETRIES - 1:
                logger.error(f"Max retries ({CONFIG.MAX_RETRIES}) reached for rate limit error")
                raise

            logger.warning(f"Rate limit hit (attempt {attempt + 1}/{CONFIG.MAX_RETRIES}). Waiting {retry_delay} seconds...")
            await asyncio.sleep(retry_delay)
            retry_delay *= 2  # Exponential backoff


class ClaudeRowAnalyzer(AnalysisProvider):
    """Analysis provider backed by Claude."""

    def __init__(self, client: anthropic.AsyncAnthropic = None, model: str = None, max_tokens: int = 2048):
        self.client = client or anthropic.AsyncAnthropic(api_key=CONFIG.ANTHROPIC_API_KEY)
        self.model = model or CONFIG.CLAUDE_MODEL
        self.max_tokens = max_tokens

    async def _create_message(self, prompt: str):
        return await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.1,
            system=ROW_ANALYSIS_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}]
        )

    async def analyze(self, request: AnalysisRequest) -> Analysis:
        logger.info(f"Analyzing row {request.row_number}: {request.row_content[:120]}")
        prompt = build_row_prompt(request)

        response = await retry_with_backoff(self._create_message, prompt)
        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        analysis = parse_analysis_response(response_text)
        logger.info(
            f"Row {request.row_number}: {analysis.document_type} "
            f"(ownership change: {analysis.ownership_change}, confidence: {analysis.confidence})"
        )
        return analysis
