"""
Generation Response Parser
Extracts the generated file set from raw model output

The model is asked for JSON, but long outputs arrive fenced, wrapped in prose
or cut off mid-file. Each tier below is a pure function ``raw -> files``; they
run in order and the first one that yields at least one file wins.

Accepted payload shapes:
    {"codeFiles": {"src/App.tsx": "..."}}
    {"files": [{"path": "src/App.tsx", "content": "..."}]}
"""

import json
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Callable, Tuple, Any

from app.core.exceptions import GenerationParseError
from app.core.logging_config import logger


FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
CODE_EXTENSIONS = r"(?:tsx?|jsx?|css|json|html)"
QUOTED_MAP_RE = re.compile(
    r'"([^"\s]+\.' + CODE_EXTENSIONS + r')"\s*:\s*"((?:[^"\\]|\\.)*)"'
)
PATH_CONTENT_RE = re.compile(
    r'(?:path|file)"?\s*:\s*"([^"\s]+\.' + CODE_EXTENSIONS + r')"\s*,?\s*"?content"?\s*:\s*"((?:[^"\\]|\\.)*)"'
)


@dataclass
class ParseOutcome:
    files: Dict[str, str]
    strategy: str

    @property
    def file_count(self) -> int:
        return len(self.files)


def files_from_payload(payload: Any) -> Dict[str, str]:
    """Normalize either accepted shape into {path: content}"""
    if not isinstance(payload, dict):
        return {}

    code_files = payload.get("codeFiles")
    if isinstance(code_files, dict):
        return {
            path: content
            for path, content in code_files.items()
            if isinstance(path, str) and isinstance(content, str)
        }

    files = payload.get("files")
    if isinstance(files, list):
        result = {}
        for item in files:
            if isinstance(item, dict) and isinstance(item.get("path"), str) and isinstance(item.get("content"), str):
                result[item["path"]] = item["content"]
        return result

    return {}


def _loads(text: str) -> Dict[str, str]:
    try:
        return files_from_payload(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return {}


def parse_fenced_json(raw: str) -> Dict[str, str]:
    match = FENCED_JSON_RE.search(raw)
    if not match:
        return {}
    return _loads(match.group(1))


def parse_largest_object(raw: str) -> Dict[str, str]:
    start, end = raw.find("{"), raw.rfind("}")
    if start == -1 or end <= start:
        return {}
    return _loads(raw[start:end + 1])


def _closing_sequence(text: str) -> str:
    """Brackets needed to close everything left open, ignoring string contents"""
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()
    return "".join(reversed(stack))


def _field_ends(text: str):
    """Positions of unescaped closing quotes followed by a comma, last first"""
    cut = text.rfind('",')
    while cut != -1:
        backslashes = 0
        i = cut - 1
        while i >= 0 and text[i] == "\\":
            backslashes += 1
            i -= 1
        if backslashes % 2 == 0:
            yield cut
        cut = text.rfind('",', 0, cut)


def repair_truncated_object(raw: str, max_attempts: int = 20) -> Dict[str, str]:
    """Close the open structure, dropping partial trailing entries until it loads"""
    start = raw.find("{")
    if start == -1:
        return {}
    body = raw[start:].rstrip()
    if body.endswith("```"):
        body = body[:-3].rstrip()

    # Only the closing brackets missing
    files = _loads(body + _closing_sequence(body))
    if files:
        return files

    for attempt, cut in enumerate(_field_ends(body)):
        if attempt >= max_attempts:
            break
        repaired = body[:cut + 1]
        files = _loads(repaired + _closing_sequence(repaired))
        if files:
            return files
    return {}


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except (json.JSONDecodeError, ValueError):
        return value.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")


def parse_regex_pairs(raw: str) -> Dict[str, str]:
    files: Dict[str, str] = {}
    for pattern in (QUOTED_MAP_RE, PATH_CONTENT_RE):
        for match in pattern.finditer(raw):
            path, content = match.groups()
            files.setdefault(path, _unescape(content))
    return files


DEFAULT_STRATEGIES: List[Tuple[str, Callable[[str], Dict[str, str]]]] = [
    ("fenced_json", parse_fenced_json),
    ("largest_object", parse_largest_object),
    ("truncated_repair", repair_truncated_object),
    ("regex_pairs", parse_regex_pairs),
]


class GenerationResponseParser:
    """Runs the strategy list in order and reports which tier succeeded"""

    def __init__(self, strategies: Optional[List[Tuple[str, Callable[[str], Dict[str, str]]]]] = None):
        self.strategies = strategies or DEFAULT_STRATEGIES

    def parse(self, raw: str) -> ParseOutcome:
        for name, strategy in self.strategies:
            files = strategy(raw)
            if files:
                logger.info(f"Parsed {len(files)} files using {name}")
                return ParseOutcome(files=files, strategy=name)
            logger.debug(f"Parser tier {name} found no files")

        logger.error(f"No files found in generation output ({len(raw)} chars)")
        raise GenerationParseError("No files found in generation output", raw_output=raw)
