from typing import Mapping, NamedTuple, Optional


class HttpResponse(NamedTuple):
    """Response from HTTP fetch operation.

    `url` is the final URL after redirects, when known.
    """
    status_code: int
    text: str
    content_type: Optional[str] = None
    url: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None
