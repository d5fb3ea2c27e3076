"""
Conversion router for the /convert and /download endpoints.

Form fields are declared optional so that missing values reach the gateway's
own error taxonomy instead of FastAPI's generic 422.
"""

import logging
from typing import Optional

from fastapi import APIRouter, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from .utils.conversion_core import ConversionLifecycle, build_download_url
from .utils.conversion_lookup import get_supported_conversions, get_supported_document_routes

# Set up logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["conversions"])


def _lifecycle(request: Request) -> ConversionLifecycle:
    return request.app.state.lifecycle


#-- Conversion
#-------------------------------------------------------------------------------
@router.post("/convert")
async def convert(
    request: Request,
    file: Optional[UploadFile] = File(None),
    targetFormat: Optional[str] = Form(None),
    conversionType: Optional[str] = Form(None),
):
    """Convert an uploaded file and return a single-use download link"""
    artifact = await _lifecycle(request).convert_upload(file, targetFormat, conversionType)
    return JSONResponse(content={
        "success": True,
        "downloadUrl": build_download_url(artifact.token, artifact.display_name),
    })


#-- Download
#-------------------------------------------------------------------------------
@router.get("/download")
async def download(
    request: Request,
    file: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
):
    """Stream a converted file once; it is deleted after the transfer"""
    return request.app.state.artifacts.download_response(file, name)


#-- Utility endpoints
#-------------------------------------------------------------------------------
@router.get("/convert/supported")
async def get_supported_conversions_endpoint(request: Request):
    """Get the enabled targets per category and the document routes"""
    return JSONResponse(content={
        "supported_conversions": get_supported_conversions(request.app.state.settings),
        "document_routes": get_supported_document_routes(),
    })
