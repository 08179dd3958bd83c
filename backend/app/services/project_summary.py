"""
Project Summary Builder

Summaries describe what a generated project actually contains so later
modification requests can reason about it without re-reading every file.
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Callable, Awaitable

from app.core.logging_config import logger


IMPORT_RE = re.compile(r"^import\s+.*?from\s+['\"].*?['\"];?\s*$", re.MULTILINE)
IMPORT_FROM_RE = re.compile(r"from\s+['\"](.*?)['\"]")
IMPORT_WHAT_RE = re.compile(r"import\s+({.*?}|\*\s+as\s+\w+|\w+)")
EXPORT_RE = re.compile(r"^export\s+.*$", re.MULTILINE)
EXPORT_DEFAULT_RE = re.compile(r"export\s+default\s+(\w+)")
EXPORT_NAMED_RE = re.compile(r"export\s+(?:const|function|class)\s+(\w+)")
EXPORT_TYPE_RE = re.compile(r"export\s+(?:interface|type)\s+(\w+)")

SUMMARY_SYSTEM_PROMPT = (
    "You are a frontend developer creating concise summaries of generated "
    "React projects. Focus on what was actually created."
)


@dataclass
class FileAnalysis:
    path: str
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    preview: str = ""

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "FileAnalysis":
        return cls(
            path=data.get("path", ""),
            imports=list(data.get("imports") or []),
            exports=list(data.get("exports") or []),
            preview=data.get("preview", ""),
        )

    def describe(self) -> str:
        imports = f"imports: {', '.join(self.imports)}" if self.imports else "no imports"
        exports = f"exports: {', '.join(self.exports)}" if self.exports else "no exports"
        return f"{self.path}: {imports} | {exports} | preview: {self.preview}"


def analyze_file(path: str, content: str) -> FileAnalysis:
    imports = []
    for line in IMPORT_RE.findall(content):
        what = IMPORT_WHAT_RE.search(line)
        source = IMPORT_FROM_RE.search(line)
        imports.append(f"{what.group(1) if what else ''} from {source.group(1) if source else ''}".strip())

    exports = []
    for line in EXPORT_RE.findall(content):
        match = EXPORT_DEFAULT_RE.search(line) or EXPORT_NAMED_RE.search(line) or EXPORT_TYPE_RE.search(line)
        exports.append(match.group(1) if match else "default" if "export default" in line else "unknown")

    preview = " ".join(content.split("\n")[:3])[:150]
    return FileAnalysis(path=path, imports=imports, exports=exports, preview=preview)


def describe_file(path: str, content: str) -> str:
    """One-line human description used in the assistant history message"""
    if path.endswith("App.tsx") or path.endswith("App.jsx"):
        return "Main app with routing and navigation setup"
    if "pages/" in path:
        for keyword, description in (
            ("Hero", "Landing page with hero section"),
            ("About", "About page"),
            ("Contact", "Contact page with form"),
            ("Services", "Services page with offerings"),
            ("Gallery", "Gallery page with images"),
        ):
            if keyword in content:
                return description
        return "Page component with content sections"
    if "components/" in path:
        if "Header" in content or "nav" in content:
            return "Header/navigation component"
        if "Footer" in content:
            return "Footer component with links"
        return "Reusable UI component"
    if "types/" in path:
        return "TypeScript type definitions"
    if path.endswith(".css"):
        return "Stylesheet"
    return "Project file"


def generated_files_message(files: Dict[str, str]) -> str:
    lines = [f"- {path}: {describe_file(path, content)}" for path, content in files.items()]
    return f"Generated {len(files)} files:\n\n" + "\n".join(lines)


def build_summary_prompt(analyses: List[FileAnalysis]) -> str:
    files_list = "\n".join(analysis.describe() for analysis in analyses)
    return f"""Based on these actual generated files with their imports/exports, create a concise project summary:

GENERATED FILES ANALYSIS:
{files_list}

Create a summary in this format:

**Project:** [Type based on file names and content]
**Files created:**
- src/App.tsx: {{actual imports/exports found}} [brief description]
- src/pages/[PageName].tsx: {{actual imports/exports found}} [brief description]
- src/components/[ComponentName].tsx: {{actual imports/exports found}} [brief description]

Use the ACTUAL imports and exports provided above. Keep under 1000 characters."""


def fallback_project_summary(files: Dict[str, str]) -> str:
    return f"Frontend project with {len(files)} files: {', '.join(files)}"


async def summarize_project(
    files: Dict[str, str],
    summarizer: Optional[Callable[[str, str], Awaitable[str]]] = None,
    analyses: Optional[List[FileAnalysis]] = None,
) -> str:
    """LLM summary of the file set, or a deterministic listing when that fails"""
    if summarizer is not None and files:
        if analyses is None:
            analyses = [analyze_file(path, content) for path, content in files.items()]
        try:
            summary = await summarizer(build_summary_prompt(analyses), SUMMARY_SYSTEM_PROMPT)
            if summary:
                return summary
        except Exception as e:
            logger.warning(f"Project summary generation failed, using file listing: {e}")
    return fallback_project_summary(files)
