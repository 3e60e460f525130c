"""Wire messages exchanged with the proxy server.

Every message is a JSON object tagged by ``type``. Inbound messages are
validated strictly; anything that is valid JSON but matches no known shape
parses to ``None``.
"""

import json
import string
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from resource_agent.jobs.models import UploadStatus


URI_SCHEME = "sha1:"
HASH_LENGTH = 40


class InvalidUriError(ValueError):
    pass


def is_valid_uri(uri: Any) -> bool:
    """True for ``sha1://<40 hex chars>``."""
    if not isinstance(uri, str):
        return False
    parts = uri.split("/")
    if len(parts) != 3:
        return False
    scheme, middle, sha1 = parts
    if scheme != URI_SCHEME or middle != "":
        return False
    return len(sha1) == HASH_LENGTH and all(c in string.hexdigits for c in sha1)


def uri_hash(uri: str) -> str:
    if not is_valid_uri(uri):
        raise InvalidUriError("Invalid URI")
    return uri.split("/")[2]


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, strict=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Resource -> proxy
# ---------------------------------------------------------------------------

class InitializeMessageFromResource(WireMessage):
    type: Literal["initialize"] = "initialize"
    resource_name: str = Field(alias="resourceName")
    zone: Optional[str] = None
    proxy_secret: str = Field(alias="proxySecret")


class PingMessageFromResource(WireMessage):
    type: Literal["ping"] = "ping"


class ResponseToClient(WireMessage):
    type: Literal["responseToClient"] = "responseToClient"
    request_id: str = Field(alias="requestId")
    response: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Proxy -> resource
# ---------------------------------------------------------------------------

class AcknowledgeMessageToResource(WireMessage):
    type: Literal["acknowledgeMessageToResource"]


class RequestFromClient(WireMessage):
    type: Literal["requestFromClient"]
    request_id: str = Field(alias="requestId")
    request: Any


class CancelRequestFromClientMessage(WireMessage):
    type: Literal["cancelRequestFromClientMessage"]
    request_id: str = Field(alias="requestId")


ProxyMessage = Annotated[
    Union[AcknowledgeMessageToResource, RequestFromClient, CancelRequestFromClientMessage],
    Field(discriminator="type"),
]

_proxy_message_adapter = TypeAdapter(ProxyMessage)


def parse_proxy_message(text: Union[str, bytes]):
    """Parse one inbound frame.

    Raises ValueError when the frame is not JSON. Returns None for JSON that
    is not a known message.
    """
    data = json.loads(text)
    try:
        return _proxy_message_adapter.validate_python(data)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Client request payloads (carried inside requestFromClient)
# ---------------------------------------------------------------------------

class FileUploadRequest(WireMessage):
    type: Literal["fileUpload"]
    uri: str
    timeout_msec: float = Field(alias="timeoutMsec")


class FileUploadResponse(WireMessage):
    type: Literal["fileUpload"] = "fileUpload"
    status: UploadStatus


# Only one request shape exists so far
ResourceRequest = FileUploadRequest


def parse_resource_request(payload: Any) -> Optional[ResourceRequest]:
    try:
        return FileUploadRequest.model_validate(payload)
    except ValidationError:
        return None
