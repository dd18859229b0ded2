"""
Text processing utilities for parsing loosely structured AI responses.
"""

import json
import re
from typing import Any, Optional


class TextProcessor:
    """Utility class for text processing operations."""

    @staticmethod
    def strip_code_fence(text: str) -> str:
        """Remove a surrounding ```json ... ``` fence if present."""
        match = re.match(r"^\s*```[a-zA-Z]*\s*([\s\S]*?)\s*```\s*$", text)
        return match.group(1) if match else text.strip()

    @staticmethod
    def parse_json_object(text: str) -> Optional[dict[str, Any]]:
        """
        Parse a JSON object out of model output.

        Tries the whole text first (fence stripped), then the outermost
        {...} span. Returns None if nothing parses to an object.
        """
        if not text or not text.strip():
            return None
        candidate = TextProcessor.strip_code_fence(text)
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            json_match = re.search(r"\{[\s\S]+\}", candidate)
            if not json_match:
                return None
            try:
                parsed = json.loads(json_match.group(0))
            except json.JSONDecodeError:
                return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def extract_bracket_tag(text: str, tag: str) -> Optional[str]:
        """
        Extract the value of a 【tag：value】 marker.

        Accepts full-width or ASCII colons. The last occurrence wins.
        """
        pattern = re.compile(rf"【\s*{re.escape(tag)}\s*[：:]\s*([^】]+?)\s*】")
        matches = pattern.findall(text or "")
        return matches[-1].strip() if matches else None

    @staticmethod
    def extract_delimited_block(text: str, name: str) -> Optional[str]:
        """Extract the body of a [NAME]...[/NAME] block."""
        pattern = re.compile(rf"\[{re.escape(name)}\]([\s\S]*?)\[/{re.escape(name)}\]", re.IGNORECASE)
        match = pattern.search(text or "")
        return match.group(1).strip() if match else None

    @staticmethod
    def remove_delimited_block(text: str, name: str) -> str:
        pattern = re.compile(rf"\s*\[{re.escape(name)}\][\s\S]*?\[/{re.escape(name)}\]\s*", re.IGNORECASE)
        return pattern.sub("\n", text or "").strip()

    @staticmethod
    def truncate(text: str, max_len: int) -> str:
        value = text.strip()
        if len(value) <= max_len:
            return value
        return f"{value[:max_len]}..."
