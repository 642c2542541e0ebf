"""Durable HTTP 请求 / 响应模型

CallHttp Action 由宿主执行，响应以 TaskCompleted 的 JSON result 返回。
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ManagedIdentityTokenSource(BaseModel):
    """由宿主获取访问令牌的来源描述"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["AzureManagedIdentity"] = "AzureManagedIdentity"
    resource: str = Field(min_length=1, description="令牌目标资源 URI")


class DurableHttpRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str = Field(min_length=1, description="HTTP 方法")
    uri: str = Field(min_length=1, description="请求地址")
    content: str | None = Field(default=None, description="请求体")
    headers: dict[str, str] = Field(default_factory=dict)
    token_source: ManagedIdentityTokenSource | None = None
    async_pattern_enabled: bool = Field(
        default=True,
        description="遇到 202 + Location 时是否自动轮询",
    )


class DurableHttpResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int
    content: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    def get_header(self, name: str) -> str | None:
        """按名称读取响应头（大小写不敏感）"""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None
