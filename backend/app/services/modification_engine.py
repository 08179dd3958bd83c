"""
Modification Engine Client

Targeted edits are delegated to a remote AST modification service. The
service receives the current file set and the context-enhanced request and
answers with the files it changed or added.
"""

from typing import Optional, Dict, List, Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from app.core.config import settings
from app.core.exceptions import ModificationError
from app.core.logging_config import logger


class ModifiedRange(BaseModel):
    file: str
    start_line: int
    end_line: int


class ModificationResult(BaseModel):
    """Engine response, validated at the boundary"""
    success: bool
    approach: str = "UNKNOWN"  # FULL_FILE, TARGETED_NODES, COMPONENT_ADDITION
    selected_files: List[str] = Field(default_factory=list)
    added_files: List[str] = Field(default_factory=list)
    modified_ranges: List[ModifiedRange] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)  # path -> new content
    reasoning: Optional[str] = None
    error: Optional[str] = None

    @property
    def modified_files(self) -> List[str]:
        return [path for path in self.files if path not in self.added_files]


class ModificationEngineClient:
    """HTTP client for the AST modification engine"""

    def __init__(self, base_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url if base_url is not None else settings.MODIFIER_API_URL).rstrip("/")
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def modify(
        self,
        prompt: str,
        files: Dict[str, str],
        session_id: str,
        project_summary: Optional[str] = None,
    ) -> ModificationResult:
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "files": files,
            "session_id": session_id,
            "project_summary": project_summary,
        }
        url = f"{self.base_url}/modify"

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=settings.MODIFIER_TIMEOUT) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            result = ModificationResult(**response.json())
        except httpx.HTTPError as e:
            raise ModificationError(f"Modification engine request failed: {e}") from e
        except (ValidationError, ValueError) as e:
            raise ModificationError(f"Invalid modification engine response: {e}") from e

        if not result.success:
            raise ModificationError(
                result.error or "Modification engine reported failure",
                approach=result.approach,
                reasoning=result.reasoning,
            )

        logger.log_agent_event(
            "modifier",
            f"{result.approach} changed {len(result.modified_files)} files, added {len(result.added_files)}",
        )
        return result
