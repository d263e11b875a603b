from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, List
import logging
import os

from ai_verification import verify_with_ai
from certificate_pipeline import BatchItem, verify_batch, verify_new_certificate
from enhanced_verification import enhanced_gpt_verification
from field_matching import CertificateClaim
from image_integrity import ImageAnalysis
from issuer_registry import IssuerRegistry, load_known_issuers, verify_against_issuer_database
from text_extraction import check_remote_source, extract_text, load_remote_source
from verification_engine import VERSIONS, generate_verification_summary, verify_certificate

logger = logging.getLogger(__name__)

app = FastAPI(
    title="CertGuard - Certificate Verification",
    version=VERSIONS["core"],
    description="OCR text matching, image integrity and issuer cross-checks for uploaded certificates"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Lock down in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Empty key disables the check (local development)
API_KEY = os.getenv("CG_API_KEY", "")

registry = IssuerRegistry(load_known_issuers())


def check_api_key(x_api_key: Optional[str]):
    if API_KEY and x_api_key != API_KEY:
        raise HTTPException(status_code=401, detail="Unauthorized")


# File sources from callers must be remote; server paths are never read
def check_source(url: Optional[str]):
    if url:
        try:
            check_remote_source(url)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))


def extract_remote_text(url: str) -> str:
    return extract_text(url, allow_local=False)


# ----- Request models -----
class ClaimFields(BaseModel):
    title: Optional[str] = None
    issuer: Optional[str] = None
    issue_date: Optional[str] = None
    credential_id: Optional[str] = None
    credential_url: Optional[str] = None
    holder_name: Optional[str] = None

    def to_claim(self) -> CertificateClaim:
        return CertificateClaim(
            title=self.title,
            issuer=self.issuer,
            issue_date=self.issue_date,
            credential_id=self.credential_id,
            credential_url=self.credential_url,
            holder_name=self.holder_name,
        )

class ImageAnalysisIn(BaseModel):
    integrity_score: int = Field(ge=0, le=100)
    metadata_consistent: bool = True
    compression_artifacts: bool = False
    pixel_pattern_consistent: bool = True

    def to_analysis(self) -> ImageAnalysis:
        return ImageAnalysis(
            integrity_score=self.integrity_score,
            metadata_consistent=self.metadata_consistent,
            compression_artifacts=self.compression_artifacts,
            pixel_pattern_consistent=self.pixel_pattern_consistent,
        )

class VerifyRequest(ClaimFields):
    extracted_text: str = ""
    image_url: Optional[str] = None

class EnhancedVerifyRequest(ClaimFields):
    extracted_text: str = ""
    image_analysis: Optional[ImageAnalysisIn] = None

class NewCertificateRequest(ClaimFields):
    image_url: Optional[str] = None

class BulkItemIn(ClaimFields):
    id: str
    image_url: Optional[str] = None

class BulkVerifyRequest(BaseModel):
    certificates: List[BulkItemIn] = []

class AIVerifyRequest(ClaimFields):
    file_url: str


# ----- Endpoints -----

@app.get("/")
def root():
    return {
        "service": "CertGuard - Certificate Verification",
        "version": VERSIONS["core"],
        "features": [
            "OCR text vs claimed metadata matching",
            "Image integrity scoring",
            "Enhanced verification for borderline scores",
            "Issuer database cross-check",
            "Bulk verification (up to 50 certificates)"
        ]
    }


@app.get("/health")
def health():
    return {"status": "ok", "version": VERSIONS["core"]}


@app.post("/verify")
def verify(req: VerifyRequest, x_api_key: Optional[str] = Header(None)):
    """Basic verification of already-extracted OCR text"""
    check_api_key(x_api_key)
    check_source(req.image_url)
    outcome = verify_certificate(req.extracted_text, req.to_claim(), req.image_url)
    return {**outcome.to_dict(), "summary": generate_verification_summary(outcome)}


@app.post("/verify/enhanced")
def verify_enhanced(req: EnhancedVerifyRequest, x_api_key: Optional[str] = Header(None)):
    check_api_key(x_api_key)
    analysis = req.image_analysis.to_analysis() if req.image_analysis else None
    outcome = enhanced_gpt_verification(req.extracted_text, req.to_claim(), analysis)
    return outcome.to_dict()


@app.post("/verify/issuer")
def verify_issuer(req: ClaimFields, x_api_key: Optional[str] = Header(None)):
    check_api_key(x_api_key)
    return verify_against_issuer_database(req.to_claim(), registry).to_dict()


@app.post("/verify-certificate")
def verify_uploaded_certificate(req: NewCertificateRequest, x_api_key: Optional[str] = Header(None)):
    """Full flow: OCR, image integrity, enhanced verification, issuer adjustment"""
    check_api_key(x_api_key)
    try:
        result = verify_new_certificate(req.image_url, req.to_claim(),
                                        loader=load_remote_source, registry=registry)
        return {"success": True, "verification": result.to_dict()}
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except Exception as e:
        logger.error("Error verifying certificate: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Certificate verification failed: {str(e)}")


@app.post("/bulk-verify")
def bulk_verify(req: BulkVerifyRequest, x_api_key: Optional[str] = Header(None)):
    """Verify up to 50 certificates; failures are reported per item"""
    check_api_key(x_api_key)
    items = [
        BatchItem(id=c.id, image_url=c.image_url, certificate_data=c.to_claim().to_dict())
        for c in req.certificates
    ]
    try:
        return {"success": True, **verify_batch(items, extractor=extract_remote_text)}
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))


@app.post("/verify/ai")
def verify_ai(req: AIVerifyRequest, x_api_key: Optional[str] = Header(None)):
    check_api_key(x_api_key)
    check_source(req.file_url)
    return verify_with_ai(req.file_url, req.to_claim(), loader=load_remote_source).to_dict()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("CG_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
