import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse, Response

from notera.clients.auth_client import bearer_token
from notera.deps import get_processor
from notera.errors import Unauthorized, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _json(body: dict, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


@router.options("/process-lesson")
async def process_lesson_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/process-lesson")
async def process_lesson(
    request: Request, authorization: str | None = Header(default=None)
) -> JSONResponse:
    """Transcribe and summarise one lesson.

    The caller's token is verified before the lesson is looked up, so an
    unauthenticated request never touches lesson state.  Failures are
    logged in full and answered with a generic message.
    """
    try:
        user = await request.app.state.auth_client.get_user(bearer_token(authorization))
    except Unauthorized as e:
        logger.warning("Rejected process-lesson call: %s", e.message)
        return _json({"error": e.message}, 401)

    logger.info("Processing request from user: %s", user.id)
    try:
        body = await request.json()
        lesson_id = body.get("lessonId") if isinstance(body, dict) else None
        if not lesson_id:
            raise ValidationError("lessonId is required")
        result = await get_processor(request).process(str(lesson_id))
    except Exception as e:
        logger.error("process-lesson failed: %s", e)
        return _json({"error": "Lesson processing failed"}, 500)
    return _json(result.to_response(), 200)
