"""
JSON repair for free-text LLM output. Shared by every AI-consuming component.

Pipeline: extract fenced/braced JSON -> normalize smart quotes -> strip trailing commas ->
escape string contents (stray backslashes, control characters, embedded quotes) -> parse.
If parsing still fails, close a truncated object/array and retry; final fallback is {}.

Embedded-quote detection is a lookahead heuristic: a quote inside a string terminates it
only when structural JSON follows. A string value that legitimately ends right before a
comma that belongs to the text is misread; this is a known precision/recall tradeoff.
Text after a quote is any Unicode letter or digit (Bosnian Č, Ž, Đ included), plus
common punctuation.
"""
import json
import re
from typing import Any, List, Optional, Tuple

from tourism_director.logging_config import get_logger

logger = get_logger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
BRACED_SPAN = re.compile(r"(\{[\s\S]*\})")
TRAILING_COMMA = re.compile(r",(\s*[}\]])")
TRAILING_COMMA_AT_END = re.compile(r",\s*$")
DANGLING_STRING = re.compile(r',?\s*"[^"]*$')

STRUCTURAL_AFTER_QUOTE = re.compile(r"^\s*[,}\]:]")
KEY_AFTER_QUOTE = re.compile(r'^\s*,?\s*"[^"]+"\s*:')
TEXT_AFTER_QUOTE = re.compile(r"^(?:[^\W_]|[\s,.'!?;:\-])")

SMART_DOUBLE_QUOTES = "ââââ"
SMART_SINGLE_QUOTES = "ââ"
VALID_ESCAPES = '"\\/bfnrtu'
CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\f": "\\f",
    "\b": "\\b",
}
CLOSER_FOR = {"{": "}", "[": "]"}
OPENER_FOR = {"}": "{", "]": "["}


def extract_json_text(text: str) -> str:
    """First fenced code block, else the outermost {...} span, else the text itself."""
    fenced = FENCED_BLOCK.search(text)
    if fenced:
        return fenced.group(1).strip()
    braced = BRACED_SPAN.search(text)
    if braced:
        return braced.group(1)
    return text.strip()


def normalize_quotes(text: str) -> str:
    for ch in SMART_DOUBLE_QUOTES:
        text = text.replace(ch, '"')
    for ch in SMART_SINGLE_QUOTES:
        text = text.replace(ch, "'")
    return text


def strip_trailing_commas(text: str) -> str:
    text = TRAILING_COMMA.sub(r"\1", text)
    return TRAILING_COMMA_AT_END.sub("", text)


def looks_like_embedded_quote(text: str, pos: int) -> bool:
    """
    Decide whether the quote at `pos` (inside a string) is content rather than the
    closing quote: it is content when plain text follows instead of JSON structure.
    """
    rest = text[pos + 1:]
    if not rest:
        return False
    if STRUCTURAL_AFTER_QUOTE.match(rest):
        return False
    if KEY_AFTER_QUOTE.match(rest):
        return False
    return bool(TEXT_AFTER_QUOTE.match(rest))


def escape_string_contents(text: str) -> str:
    """Walk the text tracking string literals and escape what JSON forbids inside them."""
    out = []
    in_string = False
    escape_next = False
    length = len(text)
    for pos, ch in enumerate(text):
        if escape_next:
            out.append(ch)
            escape_next = False
        elif ch == "\\" and in_string:
            following = text[pos + 1] if pos + 1 < length else ""
            if following and following in VALID_ESCAPES:
                out.append(ch)
                escape_next = True
            else:
                out.append("\\\\")
        elif ch == '"':
            if not in_string:
                in_string = True
                out.append(ch)
            elif looks_like_embedded_quote(text, pos):
                out.append('\\"')
            else:
                in_string = False
                out.append(ch)
        elif in_string and ord(ch) < 0x20:
            out.append(CONTROL_ESCAPES.get(ch, "\\u%04x" % ord(ch)))
        else:
            out.append(ch)
    return "".join(out)


def sanitize_json_text(text: str) -> str:
    """Steps 1-4 of the repair pipeline; result is ready for json.loads."""
    text = extract_json_text(text)
    text = normalize_quotes(text)
    text = strip_trailing_commas(text)
    return escape_string_contents(text)


def _unclosed_openers(text: str) -> Tuple[Optional[List[str]], bool]:
    """
    Stack of still-open '{' / '[' outside string literals, and whether the text ends
    inside a string. Stack is None when a closer has no matching opener.
    """
    stack: List[str] = []
    in_string = False
    escape_next = False
    for ch in text:
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if not stack or stack[-1] != OPENER_FOR[ch]:
                return None, in_string
            stack.pop()
    return stack, in_string


def close_truncated_json(text: str) -> Optional[str]:
    """
    Close an object cut off mid-output (token limit). Drops a dangling partial string,
    then appends the missing closers innermost first. None when nothing can be closed.
    """
    stack, in_string = _unclosed_openers(text)
    if in_string:
        text = DANGLING_STRING.sub("", text)
        stack, in_string = _unclosed_openers(text)
    if not stack or in_string:
        return None
    text = TRAILING_COMMA_AT_END.sub("", text.rstrip())
    return text + "".join(CLOSER_FOR[opener] for opener in reversed(stack))


def repair_json(text: str) -> Any:
    """
    Parse LLM output into a dict/list, repairing common defects.
    Never raises: returns {} when nothing parseable can be recovered.
    """
    if not text or not text.strip():
        return {}
    cleaned = sanitize_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.debug("json_repair.parse_failed", error=str(e), length=len(cleaned))

    closed = close_truncated_json(cleaned)
    if closed is not None:
        try:
            data = json.loads(closed)
            logger.info("json_repair.truncated_closed", length=len(cleaned))
            return data
        except json.JSONDecodeError as e:
            logger.debug("json_repair.close_failed", error=str(e))

    logger.warning("json_repair.unrecoverable", preview=cleaned[:200])
    return {}
