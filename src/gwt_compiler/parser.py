"""GWT spec lexer and parser.

Grammar (informal EBNF):
    file          := description? scenario (BLANK+ scenario)* EOF
    description   := comment_line+ BLANK
    scenario      := comment_line* step_line+
    comment_line  := HEADER_BAR | COMMENT
    step_line     := KEYWORD text '.' | TEXT '.'      (TEXT only after THEN)
    KEYWORD       := 'GIVEN' | 'WHEN' | 'THEN' | 'AND'

Steps within a scenario follow GIVEN* WHEN+ THEN+. Keywords are
case-sensitive. Quoted strings, bare numbers and true/false inside a
statement are extracted as parameters.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path

from gwt_compiler.errors import SpecSyntaxError
from gwt_compiler.models import KIND_ORDER, Parameter, Scenario, SpecFile, Step, StepKind

logger = logging.getLogger(__name__)

HEADER_BAR_LINE = ";==============================================================="

_LITERAL_RE = re.compile(
    r'"(?P<string>[^"]*)"'
    r"|(?<![\w.])(?P<number>-?\d+(?:\.\d+)?)(?![\w.])"
    r"|\b(?P<boolean>true|false)\b"
    r"|(?P<word>[A-Za-z][A-Za-z0-9_]*)"
)

_STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "been", "by", "for", "from",
    "has", "have", "in", "into", "is", "it", "its", "of", "on", "or", "than",
    "that", "the", "then", "there", "these", "this", "those", "to", "was",
    "were", "with",
})


class TokenType(Enum):
    HEADER_BAR = auto()     # ;====...
    COMMENT = auto()        # ; text
    GIVEN = auto()          # GIVEN ... .
    WHEN = auto()           # WHEN ... .
    THEN = auto()           # THEN ... .
    AND = auto()            # AND ... .
    TEXT = auto()           # keyword-less line
    BLANK = auto()          # empty line
    EOF = auto()


_KEYWORDS: dict[str, TokenType] = {
    "GIVEN": TokenType.GIVEN,
    "WHEN": TokenType.WHEN,
    "THEN": TokenType.THEN,
    "AND": TokenType.AND,
}

_STEP_TOKENS = frozenset(_KEYWORDS.values()) | {TokenType.TEXT}


@dataclass
class Token:
    type: TokenType
    text: str
    line_number: int
    keyword: str = ""


class Lexer:
    """Tokenizes raw GWT text into a token stream, one token per line."""

    def __init__(self, content: str, source_file: str | None = None) -> None:
        self.lines = content.splitlines()
        self.source_file = source_file

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        for i, line in enumerate(self.lines):
            stripped = line.strip()
            line_num = i + 1  # 1-indexed

            if not stripped:
                tokens.append(Token(TokenType.BLANK, "", line_num))
                continue

            if stripped.startswith(";") and "===" in stripped:
                tokens.append(Token(TokenType.HEADER_BAR, stripped, line_num))
                continue

            if stripped.startswith(";"):
                tokens.append(Token(TokenType.COMMENT, stripped[1:].strip(), line_num))
                continue

            keyword, rest = self._split_keyword(stripped)
            token_type = _KEYWORDS.get(keyword, TokenType.TEXT)
            text = self._read_statement(rest, line_num)
            tokens.append(Token(token_type, text, line_num, keyword))

        tokens.append(Token(TokenType.EOF, "", len(self.lines) + 1))
        return tokens

    def _split_keyword(self, line: str) -> tuple[str, str]:
        for keyword in _KEYWORDS:
            if line.startswith(keyword + " "):
                return keyword, line[len(keyword) + 1:].strip()
        return "", line

    def _read_statement(self, body: str, line_num: int) -> str:
        """Validate quoting and the terminating period; return the bare statement."""
        if body.count('"') % 2:
            start = body.rfind('"')
            raise SpecSyntaxError(
                "Unterminated quoted literal",
                line_num,
                token=body[start:],
                source_file=self.source_file,
            )
        if not body.endswith("."):
            words = body.split()
            raise SpecSyntaxError(
                "Statement must end with '.'",
                line_num,
                token=words[-1] if words else body,
                source_file=self.source_file,
            )
        statement = body[:-1].rstrip()
        if not statement:
            raise SpecSyntaxError(
                "Empty statement", line_num, token=body, source_file=self.source_file
            )
        return statement


class Parser:
    """Groups a token stream into a description block and scenarios."""

    def __init__(self, tokens: list[Token], source_file: str | None = None) -> None:
        self.tokens = tokens
        self.source_file = source_file

    def parse(self) -> SpecFile:
        blocks = self._split_blocks()
        description = ""
        scenarios: list[Scenario] = []

        for index, block in enumerate(blocks):
            has_steps = any(t.type in _STEP_TOKENS for t in block)
            if not has_steps:
                if index == 0:
                    description = _comment_text(block)
                continue
            scenarios.append(self._parse_scenario(block))

        if not scenarios:
            first = next((t for t in self.tokens if t.type is not TokenType.BLANK), None)
            line = first.line_number if first and first.type is not TokenType.EOF else 1
            raise SpecSyntaxError(
                "Spec file contains no scenarios",
                line,
                token=first.text if first else "",
                source_file=self.source_file,
            )

        return SpecFile(
            path=self.source_file or "<string>",
            scenarios=tuple(scenarios),
            description=description,
        )

    def _split_blocks(self) -> list[list[Token]]:
        blocks: list[list[Token]] = []
        current: list[Token] = []
        for token in self.tokens:
            if token.type in (TokenType.BLANK, TokenType.EOF):
                if current:
                    blocks.append(current)
                    current = []
                continue
            current.append(token)
        return blocks

    def _parse_scenario(self, block: list[Token]) -> Scenario:
        title_tokens: list[Token] = []
        steps: list[Step] = []
        previous: StepKind | None = None

        for token in block:
            if token.type in (TokenType.HEADER_BAR, TokenType.COMMENT):
                if not steps:
                    title_tokens.append(token)
                continue

            kind = self._step_kind(token, previous)
            if previous is not None and KIND_ORDER[kind] < KIND_ORDER[previous]:
                raise SpecSyntaxError(
                    f"{kind.value} cannot follow {previous.value}",
                    token.line_number,
                    token=token.keyword,
                    source_file=self.source_file,
                )
            steps.append(Step(
                kind=kind,
                text=token.text,
                parameters=extract_parameters(token.text),
                line_number=token.line_number,
            ))
            previous = kind

        start_line = block[0].line_number
        kinds = {s.kind for s in steps}
        for required in (StepKind.WHEN, StepKind.THEN):
            if required not in kinds:
                last = steps[-1]
                raise SpecSyntaxError(
                    f"Scenario must have at least one {required.value} step",
                    start_line,
                    token=f"{last.kind.value} {last.text}.",
                    source_file=self.source_file,
                )

        return Scenario(
            steps=tuple(steps),
            title=_comment_text(title_tokens),
            line_number=start_line,
        )

    def _step_kind(self, token: Token, previous: StepKind | None) -> StepKind:
        if token.type == TokenType.AND:
            if previous is None:
                raise SpecSyntaxError(
                    "AND used before GIVEN/WHEN/THEN",
                    token.line_number,
                    token="AND",
                    source_file=self.source_file,
                )
            return previous
        if token.type == TokenType.TEXT:
            if previous is StepKind.THEN:
                return StepKind.THEN
            first = token.text.split()[0]
            raise SpecSyntaxError(
                "Expected GIVEN, WHEN or THEN",
                token.line_number,
                token=first,
                source_file=self.source_file,
            )
        return StepKind(token.keyword)


def _comment_text(tokens: list[Token]) -> str:
    parts = [t.text for t in tokens if t.type == TokenType.COMMENT and t.text]
    return " ".join(parts).strip()


def extract_parameters(statement: str) -> tuple[Parameter, ...]:
    """Pull quoted, numeric and boolean literals out of a statement.

    Each literal is named after the nearest preceding non-stop-word, falling
    back to the nearest following one, then to ``value``. Repeated names get a
    numeric suffix. The resolver binds by template placeholder names, so these
    names are advisory.
    """
    items: list[tuple[str, str | None]] = []  # (kind, text) in order
    for m in _LITERAL_RE.finditer(statement):
        kind = m.lastgroup or "word"
        items.append((kind, m.group(kind)))

    params: list[Parameter] = []
    seen: dict[str, int] = {}
    for index, (kind, text) in enumerate(items):
        if kind == "word" or text is None:
            continue
        name = _nearest_word(items, index) or "value"
        seen[name] = seen.get(name, 0) + 1
        if seen[name] > 1:
            name = f"{name}_{seen[name]}"
        params.append(_make_parameter(name, kind, text))
    return tuple(params)


def _nearest_word(items: list[tuple[str, str | None]], index: int) -> str | None:
    for kind, text in reversed(items[:index]):
        if kind == "word" and text and text.lower() not in _STOP_WORDS:
            return text.lower()
    for kind, text in items[index + 1:]:
        if kind == "word" and text and text.lower() not in _STOP_WORDS:
            return text.lower()
    return None


def _make_parameter(name: str, kind: str, text: str) -> Parameter:
    if kind == "number":
        value: str | int | float | bool = float(text) if "." in text else int(text)
        return Parameter(name=name, value=value, type_name="number")
    if kind == "boolean":
        return Parameter(name=name, value=text == "true", type_name="boolean")
    return Parameter(name=name, value=text, type_name="string")


def parse_spec_string(content: str, source_file: str | None = None) -> SpecFile:
    """Parse GWT text into a SpecFile, raising SpecSyntaxError on bad input."""
    lexer = Lexer(content, source_file)
    tokens = lexer.tokenize()
    parser = Parser(tokens, source_file)
    spec = parser.parse()
    logger.debug("Parsed %d scenario(s) from %s", len(spec.scenarios), spec.path)
    return spec


def parse_spec_file(path: Path, source_name: str | None = None) -> SpecFile:
    """Parse a UTF-8 GWT file (with or without a byte order mark) into a SpecFile."""
    name = source_name or str(path)
    try:
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as exc:
        raise SpecSyntaxError("Spec file is not valid UTF-8", 1, source_file=name) from exc
    except OSError as exc:
        raise SpecSyntaxError(
            f"Cannot read spec file: {exc.strerror or exc}", 1, source_file=name
        ) from exc
    return parse_spec_string(content, source_file=name)


def render_spec(spec: SpecFile) -> str:
    """Render a SpecFile back to canonical GWT text."""
    lines: list[str] = []
    if spec.description:
        lines.extend([HEADER_BAR_LINE, f"; {spec.description}", HEADER_BAR_LINE, ""])

    for scenario in spec.scenarios:
        if scenario.title:
            lines.extend([HEADER_BAR_LINE, f"; {scenario.title}", HEADER_BAR_LINE])
        for step in scenario.steps:
            lines.append(f"{step.kind.value} {step.text}.")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
