"""
Contact Enrichment API

Endpoints:
- POST /enrich: Enrich a single lead (email, phone, company research)
- POST /enrich/batch: Enrich several leads sequentially, with hit rates
- GET /health: Health check
"""

import logging
from typing import List

from fastapi import FastAPI

from config import get_settings
from models import LeadInput, EnrichmentResult, BatchEnrichmentReport
from pipeline import enrich_lead, enrich_leads

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Reduce noise from other loggers
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('httpcore').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="Contact Enrichment", version="1.0.0")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "ai_research_configured": bool(settings.openrouter_api_key),
    }


@app.post("/enrich", response_model=EnrichmentResult)
async def enrich(lead: LeadInput) -> EnrichmentResult:
    """Enrich one lead. Always answers 200; failures show up as status="failed"."""
    return await enrich_lead(lead)


@app.post("/enrich/batch", response_model=BatchEnrichmentReport)
async def enrich_batch(leads: List[LeadInput]) -> BatchEnrichmentReport:
    logger.info(f"Batch request with {len(leads)} leads")
    return await enrich_leads(leads)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port)
