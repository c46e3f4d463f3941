import asyncio
import logging
from typing import List

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import JSONResponse

from vendor_compare.core.comparison import compare
from vendor_compare.core.config import settings
from vendor_compare.core.gemini import GeminiRateLimitError, GeminiRequestError, extract_quote
from vendor_compare.schemas.quotes import CompareRequest, CompareResponse, RawExtractionRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["quotes"])


def _error_record(filename: str, message: str) -> RawExtractionRecord:
    return RawExtractionRecord(filename=filename, items=[], error=message)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "message": message})


async def _extract_one(upload: UploadFile, semaphore: asyncio.Semaphore) -> RawExtractionRecord:
    """
    Extracts a single uploaded file. Never raises: any failure becomes an error record
    so one bad document can't sink the rest of the batch.
    """
    filename = upload.filename or "unnamed"
    max_bytes = settings.MAX_FILE_SIZE_MB * 1024 * 1024

    try:
        # one byte past the limit is enough to know the file is too big
        data = await upload.read(max_bytes + 1)
        if not data:
            return _error_record(filename, "File is empty")
        if len(data) > max_bytes:
            return _error_record(filename, f"File exceeds {settings.MAX_FILE_SIZE_MB} MB limit")

        async with semaphore:
            logger.info("Parsing: %s", filename)
            return await extract_quote(filename, data)

    except GeminiRateLimitError as e:
        logger.warning("Rate limited while parsing %s (retry after %s)", filename, e.retry_after_seconds)
        return _error_record(filename, e.message)

    except GeminiRequestError as e:
        logger.warning("Gemini error parsing %s: %s (status=%s)", filename, e.message, e.status_code)
        return _error_record(filename, e.message)

    except Exception as e:
        logger.exception("Error parsing %s", filename)
        return _error_record(filename, str(e) or e.__class__.__name__)


@router.post("/upload", response_model=CompareResponse)
async def upload(files: List[UploadFile] = File(default=[])):
    """
    Extracts every uploaded quote, then compares the whole batch.
    Failed files stay in the result with their error; they just don't get a price.
    """
    if len(files) < settings.MIN_UPLOAD_FILES:
        return _bad_request(f"Please upload at least {settings.MIN_UPLOAD_FILES} quote files")
    if len(files) > settings.MAX_UPLOAD_FILES:
        return _bad_request(f"Please upload at most {settings.MAX_UPLOAD_FILES} quote files")

    logger.info("Processing %d files...", len(files))

    try:
        semaphore = asyncio.Semaphore(max(1, settings.EXTRACTION_CONCURRENCY))
        # gather keeps upload order; compare only runs once every file is settled
        records = await asyncio.gather(*(_extract_one(f, semaphore) for f in files))
        result = compare(records)
    except Exception as e:
        logger.exception("Upload error")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": f"Error processing files: {e}"},
        )

    failed = sum(1 for r in records if r.error)
    if result.best_deal:
        logger.info(
            "Compared %d quotes (%d failed); best deal %s at %.2f",
            len(records), failed, result.best_deal.vendor, result.best_deal.total,
        )
    else:
        logger.info("Compared %d quotes (%d failed); no valid quotes", len(records), failed)

    return CompareResponse(data=result)


@router.post("/compare", response_model=CompareResponse)
def compare_quotes(body: CompareRequest):
    """
    Compares records that were already extracted elsewhere. No document calls happen here.
    """
    return CompareResponse(data=compare(body.quotes))
