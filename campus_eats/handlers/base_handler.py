# campus_eats/handlers/base_handler.py
import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple
from aiohttp import web
from pydantic import BaseModel
from ..exceptions import CampusEatsError, ValidationError

@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map service errors to JSON responses"""
    try:
        return await handler(request)
    except CampusEatsError as e:
        return web.json_response(e.to_dict(), status=e.status_code)

def _forbidden(message: str) -> web.HTTPForbidden:
    return web.HTTPForbidden(
        text=json.dumps({"success": False, "error": message}),
        content_type="application/json"
    )

class BaseHandler:
    """Shared request helpers; identity headers are set by the upstream auth layer"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__)

    @staticmethod
    def current_user_id(request: web.Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if not user_id:
            raise web.HTTPUnauthorized(
                text=json.dumps({"success": False, "error": "Authentication required"}),
                content_type="application/json"
            )
        return user_id

    @classmethod
    def admin_context(cls, request: web.Request) -> Tuple[str, str]:
        """(user_id, cafeteria_id) of a cafeteria administrator"""
        user_id = cls.current_user_id(request)
        cafeteria_id = request.headers.get("X-Cafeteria-Id")
        if not cafeteria_id:
            raise _forbidden("Cafeteria administrator access required")
        return user_id, cafeteria_id

    @staticmethod
    async def read_json(request: web.Request) -> Dict[str, Any]:
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError("Request body must be valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    @staticmethod
    def require(body: Dict[str, Any], *fields: str):
        missing = [field for field in fields if body.get(field) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    @staticmethod
    def query_bool(request: web.Request, name: str) -> Optional[bool]:
        value = request.query.get(name)
        if value is None:
            return None
        return value.lower() == "true"

    @staticmethod
    def respond(data: Any, status: int = 200) -> web.Response:
        if isinstance(data, BaseModel):
            payload = data.model_dump(mode="json")
        elif isinstance(data, (list, tuple)):
            payload = [
                item.model_dump(mode="json") if isinstance(item, BaseModel) else item
                for item in data
            ]
        else:
            payload = data
        return web.json_response(payload, status=status)

    @staticmethod
    def dump(models: Iterable[BaseModel]):
        return [model.model_dump(mode="json") for model in models]
