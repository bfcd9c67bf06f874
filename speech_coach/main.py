"""FastAPI application exposing the upload, analysis and report endpoints and the single-page UI."""

import logging
import os
import secrets
import time
from datetime import date
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from pydantic import BaseModel

from .config import Settings, get_settings
from .coze_service import CozeService
from .exceptions import ConfigurationError, UploadValidationError, UpstreamRequestError
from .report import assemble_report, render_report_pdf

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

INDEX_HTML = Path(__file__).parent / "static" / "index.html"

app = FastAPI(title=settings.APP_NAME)


class AnalyzeRequest(BaseModel):
    videoUrl: str | None = None
    userId: str | None = None
    debug: bool = False


class PdfRequest(BaseModel):
    analysisContent: str
    downloadLink: str = ""


def get_coze_service(settings: Annotated[Settings, Depends(get_settings)]) -> CozeService:
    """One Coze client per request, bound to the active settings."""
    return CozeService(settings)


SettingsDep = Annotated[Settings, Depends(get_settings)]
CozeServiceDep = Annotated[CozeService, Depends(get_coze_service)]


@app.exception_handler(UploadValidationError)
async def upload_error_handler(request: Request, exc: UploadValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": exc.message})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": exc.message, "configStatus": exc.config_status},
    )


@app.exception_handler(UpstreamRequestError)
async def upstream_error_handler(request: Request, exc: UpstreamRequestError) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": exc.message,
            "details": {"status": exc.status, "data": exc.data},
        },
    )


@app.get("/")
async def get_index() -> HTMLResponse:
    """Serve the index.html single-page UI."""
    with open(INDEX_HTML, encoding="utf-8") as f:
        return HTMLResponse(f.read())


def _unique_filename(original: str) -> str:
    extension = Path(original).suffix.lstrip(".")
    if not (extension.isascii() and extension.isalnum()):
        extension = "mp4"
    return f"video_{int(time.time() * 1000)}_{secrets.token_hex(6)}.{extension}"


@app.post("/upload")
async def upload_video(settings: SettingsDep, file: UploadFile = File(...)) -> dict:
    """Validate the uploaded video, store it locally and return its public URL."""
    if file.content_type not in settings.ALLOWED_VIDEO_TYPES:
        logger.info("Rejected upload %s with type %s", file.filename, file.content_type)
        raise UploadValidationError("不支持的文件类型")

    content = await file.read()
    size = len(content)
    if size > settings.MAX_FILE_SIZE:
        logger.info("Rejected upload %s of %d bytes", file.filename, size)
        raise UploadValidationError("文件大小超过限制")

    size_mb = size / (1024 * 1024)
    exceeds_coze_limit = size > settings.COZE_SIZE_LIMIT
    if exceeds_coze_limit:
        logger.warning("Upload %s is %.2fMB, above the Coze API limit", file.filename, size_mb)

    file_name = _unique_filename(file.filename or "")
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    with open(os.path.join(settings.UPLOAD_DIR, file_name), "wb") as f:
        f.write(content)

    file_url = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/uploads/{file_name}"
    logger.info("Stored upload %s as %s (%d bytes)", file.filename, file_name, size)

    limit_mb = settings.COZE_SIZE_LIMIT // (1024 * 1024)
    advice = (
        f"文件大小 {size_mb:.2f}MB 超过Coze API的{limit_mb}MB限制。"
        f"建议：1. 使用较小的视频文件 2. 或者使用视频编辑软件手动压缩到{limit_mb}MB以下"
        if exceeds_coze_limit
        else "文件大小符合要求"
    )
    return {
        "success": True,
        "data": {
            "fileName": file_name,
            "originalName": file.filename,
            "fileSize": size,
            "fileUrl": file_url,
            "uploadMethod": "Local",
            "exceedsCozeLimit": exceeds_coze_limit,
            "compressionAdvice": advice,
        },
    }


@app.get("/uploads/{file_name}")
async def get_upload(file_name: str, settings: SettingsDep) -> FileResponse:
    """Serve a stored upload so the chat service can fetch it by URL."""
    path = Path(settings.UPLOAD_DIR) / file_name
    if Path(file_name).name != file_name or not path.is_file():
        raise HTTPException(status_code=404, detail="文件不存在")
    return FileResponse(path)


@app.post("/analyze")
async def analyze_video(request: AnalyzeRequest, settings: SettingsDep, coze_service: CozeServiceDep) -> JSONResponse:
    """Send the video URL to Coze and return the structured critique."""
    if request.videoUrl is None or request.videoUrl == "":
        return JSONResponse(status_code=400, content={"success": False, "error": "视频URL是必需的"})
    video_url = request.videoUrl.strip()
    if not video_url:
        return JSONResponse(status_code=400, content={"success": False, "error": "视频URL不能为空"})

    if not settings.coze_configured:
        logger.error("Coze is not configured: %s", settings.coze_status())
        raise ConfigurationError(config_status=settings.coze_status())

    await coze_service.check_video_url(video_url)

    try:
        raw_sse = await coze_service.analyze_video(video_url, request.userId)
        report = assemble_report(raw_sse, settings.protocol(), logger)
    except (ConfigurationError, UpstreamRequestError):
        raise
    except Exception:
        logger.exception("Video analysis failed")
        return JSONResponse(status_code=500, content={"success": False, "error": "视频分析过程中发生错误"})

    logger.info(
        "Analysis done: payload %d chars, content %d chars, link %s",
        len(report.raw_analysis),
        len(report.analysis_content),
        "present" if report.download_link else "absent",
    )
    body = {"success": True, "data": report.to_response()}
    if request.debug:
        body["debug"] = report.debug_bundle(raw_sse)
    return JSONResponse(content=body)


@app.post("/report/pdf")
async def download_report_pdf(request: PdfRequest) -> Response:
    """Render the critique as a downloadable PDF."""
    pdf = render_report_pdf(request.analysisContent, request.downloadLink)
    filename = f"Medical_Speech_AI_Report_{date.today().isoformat()}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/config/status")
async def config_status(settings: SettingsDep) -> dict:
    """Report which integrations are configured, without exposing secrets."""
    return {"success": True, "systemStatus": settings.status()}
