"""JSON request/response messages exchanged with the frontend."""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..exceptions import InvalidRequestError
from ..models import AppInfoStatus

logger = logging.getLogger(__name__)


class GetModStatusRequest(BaseModel):
    type: Literal["GetModStatus"] = "GetModStatus"


class PatchRequest(BaseModel):
    type: Literal["Patch"] = "Patch"
    downgrade_to: Optional[str] = None


Request = Annotated[Union[GetModStatusRequest, PatchRequest], Field(discriminator="type")]

_REQUEST_ADAPTER = TypeAdapter(Request)


class ModStatusResponse(BaseModel):
    type: Literal["ModStatus"] = "ModStatus"
    app_info: Optional[AppInfoStatus] = None


def parse_request(payload: Union[str, bytes]) -> Union[GetModStatusRequest, PatchRequest]:
    try:
        return _REQUEST_ADAPTER.validate_json(payload)
    except ValidationError as exc:
        raise InvalidRequestError(f"Invalid request: {exc}") from exc


def handle_request(request: Union[GetModStatusRequest, PatchRequest], installer) -> ModStatusResponse:
    """Run a request against ``installer`` (a ``ModInstaller``).

    A patch request answers with the post-patch status, like a status query.
    """
    if isinstance(request, PatchRequest):
        app_info = installer.get_app_info()
        if app_info is None:
            raise InvalidRequestError("Cannot patch: the app is not installed")
        installer.mod_current_apk(app_info, downgrade_to=request.downgrade_to)
        installer.install_modloader()

    return ModStatusResponse(app_info=installer.get_mod_status())
