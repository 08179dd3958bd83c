"""
Mock Claude Client for Testing
Provides canned responses without calling the actual API
"""
import asyncio
import json
from typing import AsyncGenerator, Optional, Dict, Any, List


def code_files_response(files: Dict[str, str], fenced: bool = True) -> str:
    """Model output in the shape the generation prompt asks for"""
    payload = json.dumps({"codeFiles": files}, indent=2)
    if fenced:
        return f"Here is your project:\n\n```json\n{payload}\n```\n"
    return payload


DEFAULT_FILES = {
    "src/App.tsx": (
        "import Header from './components/Header'\n\n"
        "export default function App() {\n"
        "  return <Header />\n"
        "}\n"
    ),
    "src/components/Header.tsx": (
        "export default function Header() {\n"
        "  return <header>Bakery</header>\n"
        "}\n"
    ),
}


class MockClaudeClient:
    """Mock Claude client that streams a predefined response"""

    def __init__(self, response: Optional[str] = None, chunk_size: int = 1024,
                 chunk_delay: float = 0, summary: str = "**Project:** Bakery site"):
        self.response = response if response is not None else code_files_response(DEFAULT_FILES)
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.summary = summary
        self.fail_summary = False
        self.stream_calls: List[Dict[str, Any]] = []
        self.summary_calls: List[Dict[str, Any]] = []

    async def generate_stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: str = "generation",
        **kwargs
    ) -> AsyncGenerator[str, None]:
        self.stream_calls.append({"prompt": prompt, "system_prompt": system_prompt, "model": model})
        for start in range(0, len(self.response), self.chunk_size):
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield self.response[start:start + self.chunk_size]

    async def generate(self, prompt: str, system_prompt: Optional[str] = None,
                       model: str = "summary", **kwargs) -> Dict[str, Any]:
        return {"content": await self.summarize(prompt, system_prompt or ""), "model": model}

    async def summarize(self, prompt: str, system_prompt: str) -> str:
        self.summary_calls.append({"prompt": prompt, "system_prompt": system_prompt})
        if self.fail_summary:
            raise RuntimeError("summary model unavailable")
        return self.summary
