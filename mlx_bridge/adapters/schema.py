from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class CompletionOptions(BaseModel):
    """
    Generic sampling options accepted by every provider.
    Fields left as None are forwarded as-is; providers decide defaults.
    """
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop: Optional[List[str]] = None


class ServerInfo(BaseModel):
    """
    Response body of the MLX server's /info endpoint.
    Either field may be missing; missing fields leave adapter state alone.
    """
    model_config = ConfigDict(extra="ignore")

    model_id: Optional[str] = None
    max_tokens: Optional[int] = None


class StreamEvent(BaseModel):
    """
    One decoded `data:` payload from the /generate event stream.
    `error` wins over `content` when both are present.
    """
    model_config = ConfigDict(extra="ignore")

    content: Optional[str] = None
    error: Optional[str] = None
    model_id: Optional[str] = None
    max_tokens: Optional[int] = None
