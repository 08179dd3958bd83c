"""
Unit Tests for the Generation Response Parser
"""
import json
import pytest

from app.core.exceptions import GenerationParseError
from app.services.response_parser import (
    GenerationResponseParser,
    files_from_payload,
    parse_fenced_json,
    parse_largest_object,
    repair_truncated_object,
    parse_regex_pairs,
)


APP = "export default function App() {\n  return <h1 className=\"title\">Hi</h1>\n}\n"
NAV = "export const Nav = () => <nav>Menu</nav>\n"


class TestPayloadShapes:
    """Tests for the accepted JSON shapes"""

    def test_code_files_map(self):
        assert files_from_payload({"codeFiles": {"src/App.tsx": APP}}) == {"src/App.tsx": APP}

    def test_files_list(self):
        payload = {"files": [{"path": "src/App.tsx", "content": APP}, {"path": "broken"}]}
        assert files_from_payload(payload) == {"src/App.tsx": APP}

    def test_unknown_shape(self):
        assert files_from_payload({"other": 1}) == {}
        assert files_from_payload(["src/App.tsx"]) == {}


class TestStrategies:
    """Tests for each parser tier on its own"""

    def test_fenced_json(self):
        raw = "Sure!\n```json\n" + json.dumps({"codeFiles": {"src/App.tsx": APP}}) + "\n```\nEnjoy."
        assert parse_fenced_json(raw) == {"src/App.tsx": APP}

    def test_fenced_json_absent(self):
        assert parse_fenced_json(json.dumps({"codeFiles": {"src/App.tsx": APP}})) == {}

    def test_largest_object_with_prose(self):
        raw = "Here you go: " + json.dumps({"codeFiles": {"src/App.tsx": APP}}) + " Let me know!"
        assert parse_largest_object(raw) == {"src/App.tsx": APP}

    def test_truncated_output_keeps_complete_files(self):
        """The cut-off trailing file is dropped, earlier files survive"""
        complete = json.dumps({"codeFiles": {"src/App.tsx": APP, "src/Nav.tsx": NAV, "src/Footer.tsx": "x" * 50}})
        truncated = complete[:complete.index("src/Footer.tsx") + 25]

        files = repair_truncated_object(truncated)
        assert files == {"src/App.tsx": APP, "src/Nav.tsx": NAV}

    def test_truncated_ignores_escaped_quote_comma(self):
        complete = json.dumps({"codeFiles": {"src/a.ts": "x", "src/b.ts": 'const s = "a", t = 1'}})
        truncated = complete[:complete.index("t = 1")]

        assert repair_truncated_object(truncated) == {"src/a.ts": "x"}

    def test_missing_final_brace(self):
        raw = json.dumps({"codeFiles": {"src/App.tsx": APP, "src/Nav.tsx": NAV}})[:-1]
        assert repair_truncated_object(raw) == {"src/App.tsx": APP, "src/Nav.tsx": NAV}

    def test_single_file_missing_closing_braces(self):
        raw = json.dumps({"codeFiles": {"src/App.tsx": APP}})[:-2]
        assert repair_truncated_object(raw) == {"src/App.tsx": APP}

    def test_truncated_files_list_drops_partial_item(self):
        complete = json.dumps({"files": [
            {"path": "src/App.tsx", "content": APP},
            {"path": "src/Nav.tsx", "content": NAV},
        ]})
        truncated = complete[:complete.index("export const Nav")]

        assert repair_truncated_object(truncated) == {"src/App.tsx": APP}

    def test_regex_pairs_on_malformed_json(self):
        raw = '{"codeFiles": {"src/App.tsx": "const a = 1;\\nexport default a", "src/index.css": "body{}" oops'
        files = parse_regex_pairs(raw)
        assert files["src/App.tsx"] == "const a = 1;\nexport default a"
        assert files["src/index.css"] == "body{}"


class TestGenerationResponseParser:
    """Tests for the ordered strategy chain"""

    def test_fenced_code_files_scenario(self):
        """The documented happy path: fenced JSON with a codeFiles map"""
        raw = "```json\n" + json.dumps({"codeFiles": {"src/App.tsx": APP, "src/Nav.tsx": NAV}}, indent=2) + "\n```"
        outcome = GenerationResponseParser().parse(raw)

        assert outcome.strategy == "fenced_json"
        assert outcome.file_count == 2
        assert outcome.files["src/App.tsx"] == APP

    def test_first_successful_tier_wins(self):
        raw = json.dumps({"files": [{"path": "src/App.tsx", "content": APP}]})
        assert GenerationResponseParser().parse(raw).strategy == "largest_object"

    def test_falls_through_to_repair(self):
        complete = json.dumps({"codeFiles": {"src/App.tsx": APP, "src/Nav.tsx": NAV}})
        truncated = complete[:complete.index("src/Nav.tsx") + 20]
        outcome = GenerationResponseParser().parse(truncated)

        assert outcome.strategy == "truncated_repair"
        assert list(outcome.files) == ["src/App.tsx"]

    def test_missing_final_brace_uses_repair_tier(self):
        raw = json.dumps({"codeFiles": {"src/App.tsx": APP, "src/Nav.tsx": NAV}})[:-1]
        outcome = GenerationResponseParser().parse(raw)

        assert outcome.strategy == "truncated_repair"
        assert outcome.files == {"src/App.tsx": APP, "src/Nav.tsx": NAV}

    def test_path_content_records_reach_regex_tier(self):
        """Output with no JSON object at all is still recovered, by the last tier"""
        raw = (
            "Files:\n"
            'path: "src/App.tsx", content: "export default () => null;\\n"\n'
            "path: \"src/index.css\", content: \"@import 'base.css';\"\n"
        )
        outcome = GenerationResponseParser().parse(raw)

        assert outcome.strategy == "regex_pairs"
        assert outcome.files == {
            "src/App.tsx": "export default () => null;\n",
            "src/index.css": "@import 'base.css';",
        }

    def test_custom_strategy_order(self):
        calls = []

        def first(raw):
            calls.append("first")
            return {}

        def second(raw):
            calls.append("second")
            return {"a.ts": "x"}

        outcome = GenerationResponseParser([("first", first), ("second", second)]).parse("anything")
        assert calls == ["first", "second"]
        assert outcome.strategy == "second"

    def test_nothing_parseable_raises_with_raw_output(self):
        with pytest.raises(GenerationParseError) as exc_info:
            GenerationResponseParser().parse("I cannot help with that.")

        assert exc_info.value.code == "GENERATION_PARSE_FAILED"
        assert "I cannot help" in exc_info.value.raw_output
