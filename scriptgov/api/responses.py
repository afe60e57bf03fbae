"""Helpers for turning service outcomes into HTTP responses."""

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from scriptgov.core.exceptions import ActionResult


def action_response(result: ActionResult) -> JSONResponse:
    """Render an ActionResult with the status code its failure reason maps to."""
    return JSONResponse(
        status_code=result.status_code,
        content=jsonable_encoder(result.to_dict()),
    )
