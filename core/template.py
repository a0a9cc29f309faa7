"""Template parsing and evaluation for the ``{{ action }}`` dialect.

The dialect follows the familiar text-template conventions: fields are
addressed as ``.path.to.value``, control flow uses ``if``/``else``/``range``/
``with``/``end``, values can be piped through functions with ``|`` and
``{{-``/``-}}`` trim adjacent whitespace. Templates are parsed once into a node
tree and can be executed any number of times against a mapping.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence
import inspect
import json
import re


class TemplateError(ValueError):
    """Raised when template execution fails."""


class TemplateSyntaxError(TemplateError):
    """Raised when template source cannot be parsed."""

    def __init__(self, message: str, *, name: str | None = None, line: int | None = None):
        location = name or "template"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")
        self.line = line


MissingHandler = Callable[[str], None]
"""Callback receiving the textual path of a reference that did not resolve."""

NO_VALUE = "<no value>"
"""Marker printed for unresolved values when callers ask for it."""

MAX_TEMPLATE_DEPTH = 100

_TRIM_CHARS = " \t\r\n"

_TOKEN_PATTERN = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>"(?:[^"\\\n]|\\.)*")
    | (?P<raw>`[^`]*`)
    | (?P<declare>:=)
    | (?P<assign>=)
    | (?P<pipe>\|)
    | (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<comma>,)
    | (?P<number>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
    | (?P<field>(?:\.[A-Za-z_]\w*)+)
    | (?P<dot>\.)
    | (?P<variable>\$[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*|\$(?:\.[A-Za-z_]\w*)*)
    | (?P<ident>[A-Za-z_]\w*)
    """,
    re.VERBOSE,
)

_CONTROL_KEYWORDS = frozenset({"if", "else", "end", "range", "with", "define", "block", "template"})
_LITERAL_KEYWORDS = {"true": True, "false": False, "nil": None}


# ---------------------------------------------------------------------------
# Lexing
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _Item:
    kind: str  # "text", "action" or "comment"
    value: str
    line: int


@dataclass(slots=True)
class _Token:
    kind: str
    value: str
    line: int


def _line_of(source: str, offset: int) -> int:
    return source.count("\n", 0, offset) + 1


def _find_action_end(source: str, start: int) -> int:
    """Return the offset of the closing ``}}`` for an action starting at *start*."""

    index = start
    length = len(source)
    while index < length:
        char = source[index]
        if char == '"':
            index += 1
            while index < length and source[index] != '"':
                if source[index] == "\\":
                    index += 1
                elif source[index] == "\n":
                    return -1
                index += 1
        elif char == "`":
            closing = source.find("`", index + 1)
            if closing < 0:
                return -1
            index = closing
        elif source.startswith("}}", index):
            return index
        index += 1
    return -1


def _split_items(source: str, *, name: str) -> List[_Item]:
    items: List[_Item] = []
    pos = 0
    trim_next = False

    while pos < len(source):
        start = source.find("{{", pos)
        text = source[pos:] if start < 0 else source[pos:start]
        if trim_next:
            text = text.lstrip(_TRIM_CHARS)
            trim_next = False
        if start < 0:
            if text:
                items.append(_Item("text", text, _line_of(source, pos)))
            break

        line = _line_of(source, start)
        inner = start + 2
        if source.startswith("-", inner) and source[inner + 1:inner + 2] in tuple(_TRIM_CHARS):
            text = text.rstrip(_TRIM_CHARS)
            inner += 1
        if text:
            items.append(_Item("text", text, _line_of(source, pos)))

        stripped_start = inner
        while stripped_start < len(source) and source[stripped_start] in _TRIM_CHARS:
            stripped_start += 1

        if source.startswith("/*", stripped_start):
            close = source.find("*/", stripped_start + 2)
            if close < 0:
                raise TemplateSyntaxError("unclosed comment", name=name, line=line)
            after = close + 2
            if source.startswith("}}", after):
                pos = after + 2
            elif source.startswith(" -}}", after):
                pos = after + 4
                trim_next = True
            else:
                raise TemplateSyntaxError("comment ends before closing delimiter", name=name, line=line)
            items.append(_Item("comment", source[stripped_start + 2:close], line))
            continue

        end = _find_action_end(source, inner)
        if end < 0:
            raise TemplateSyntaxError("unclosed action", name=name, line=line)
        content = source[inner:end]
        if len(content) >= 2 and content.endswith("-") and content[-2] in _TRIM_CHARS:
            content = content[:-1]
            trim_next = True
        items.append(_Item("action", content, line))
        pos = end + 2

    return items


def _tokenize(content: str, *, line: int, name: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    while pos < len(content):
        match = _TOKEN_PATTERN.match(content, pos)
        if match is None:
            raise TemplateSyntaxError(f"unexpected {content[pos]!r} in action", name=name, line=line)
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, match.group(), line))
        pos = match.end()
    return tokens


# ---------------------------------------------------------------------------
# Node tree
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _Field:
    parts: tuple[str, ...]


@dataclass(slots=True)
class _Dot:
    pass


@dataclass(slots=True)
class _Variable:
    name: str
    parts: tuple[str, ...] = ()


@dataclass(slots=True)
class _Literal:
    value: Any


@dataclass(slots=True)
class _Function:
    name: str


@dataclass(slots=True)
class _Command:
    args: List[Any]


@dataclass(slots=True)
class _Pipeline:
    line: int
    commands: List[_Command]
    declarations: tuple[str, ...] = ()
    is_assignment: bool = False


@dataclass(slots=True)
class _SubPipeline:
    pipeline: _Pipeline


@dataclass(slots=True)
class _TextNode:
    text: str


@dataclass(slots=True)
class _ActionNode:
    pipeline: _Pipeline


@dataclass(slots=True)
class _IfNode:
    branches: List[tuple[_Pipeline, List[Any]]]
    else_body: List[Any]


@dataclass(slots=True)
class _RangeNode:
    pipeline: _Pipeline
    body: List[Any]
    else_body: List[Any]


@dataclass(slots=True)
class _WithNode:
    pipeline: _Pipeline
    body: List[Any]
    else_body: List[Any]


@dataclass(slots=True)
class _TemplateNode:
    name: str
    pipeline: _Pipeline | None
    line: int


@dataclass(slots=True)
class _Terminator:
    keyword: str
    tokens: List[_Token]
    line: int


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, items: Sequence[_Item], *, name: str, function_names: Iterable[str]):
        self._items = items
        self._index = 0
        self._name = name
        self._functions = frozenset(function_names)
        self._scopes: List[set[str]] = [{"$"}]
        self._defines: Dict[str, List[Any]] = {}
        self._blocks: Dict[str, List[Any]] = {}
        self._depth = 0

    def parse(self) -> tuple[List[Any], Dict[str, List[Any]]]:
        nodes, terminator = self._parse_list()
        if terminator is not None:
            raise self._error(f"unexpected {{{{{terminator.keyword}}}}}", terminator.line)
        templates = dict(self._blocks)
        templates.update(self._defines)
        return nodes, templates

    def _error(self, message: str, line: int) -> TemplateSyntaxError:
        return TemplateSyntaxError(message, name=self._name, line=line)

    def _parse_list(self) -> tuple[List[Any], _Terminator | None]:
        nodes: List[Any] = []
        while self._index < len(self._items):
            item = self._items[self._index]
            self._index += 1
            if item.kind == "text":
                nodes.append(_TextNode(item.value))
                continue
            if item.kind == "comment":
                continue

            tokens = _tokenize(item.value, line=item.line, name=self._name)
            if not tokens:
                raise self._error("missing value for command", item.line)
            head = tokens[0]
            keyword = head.value if head.kind == "ident" else None

            if keyword in ("end", "else"):
                if keyword == "end" and len(tokens) > 1:
                    raise self._error("unexpected tokens after end", item.line)
                return nodes, _Terminator(keyword, tokens[1:], item.line)
            if keyword == "if":
                nodes.append(self._parse_if(tokens[1:], item.line))
            elif keyword == "range":
                nodes.append(self._parse_range_or_with(tokens[1:], item.line, context="range"))
            elif keyword == "with":
                nodes.append(self._parse_range_or_with(tokens[1:], item.line, context="with"))
            elif keyword == "define":
                self._parse_define(tokens[1:], item.line)
            elif keyword == "template":
                nodes.append(self._parse_template_call(tokens[1:], item.line))
            elif keyword == "block":
                nodes.append(self._parse_block(tokens[1:], item.line))
            else:
                pipeline = self._parse_pipeline(tokens, item.line, context="command", allow_declaration=True)
                if pipeline.declarations and not pipeline.is_assignment:
                    self._scopes[-1].update(pipeline.declarations)
                nodes.append(_ActionNode(pipeline))
        return nodes, None

    def _parse_body(self, declarations: Sequence[str] = ()) -> tuple[List[Any], _Terminator | None]:
        self._scopes.append(set(declarations))
        try:
            return self._parse_list()
        finally:
            self._scopes.pop()

    def _require_terminator(self, terminator: _Terminator | None, context: str, line: int) -> _Terminator:
        if terminator is None:
            raise self._error(f"unexpected EOF in {context} started here", line)
        return terminator

    def _parse_if(self, tokens: List[_Token], line: int) -> _IfNode:
        branches: List[tuple[_Pipeline, List[Any]]] = []
        else_body: List[Any] = []
        pipeline = self._parse_pipeline(tokens, line, context="if", allow_declaration=True)
        body, terminator = self._parse_body(pipeline.declarations)
        branches.append((pipeline, body))

        while True:
            terminator = self._require_terminator(terminator, "if", line)
            if terminator.keyword == "end":
                break
            rest = terminator.tokens
            if rest and rest[0].kind == "ident" and rest[0].value == "if":
                pipeline = self._parse_pipeline(rest[1:], terminator.line, context="if", allow_declaration=True)
                body, terminator = self._parse_body(pipeline.declarations)
                branches.append((pipeline, body))
                continue
            if rest:
                raise self._error(f"unexpected {rest[0].value!r} in else", terminator.line)
            else_body, terminator = self._parse_body()
            terminator = self._require_terminator(terminator, "if", line)
            if terminator.keyword != "end":
                raise self._error("expected end; found else", terminator.line)
            break

        return _IfNode(branches, else_body)

    def _parse_range_or_with(self, tokens: List[_Token], line: int, *, context: str) -> Any:
        pipeline = self._parse_pipeline(
            tokens,
            line,
            context=context,
            allow_declaration=True,
            max_declarations=2 if context == "range" else 1,
        )
        body, terminator = self._parse_body(pipeline.declarations)
        terminator = self._require_terminator(terminator, context, line)
        else_body: List[Any] = []
        if terminator.keyword == "else":
            if terminator.tokens:
                raise self._error(f"unexpected {terminator.tokens[0].value!r} in else", terminator.line)
            else_body, terminator = self._parse_body()
            terminator = self._require_terminator(terminator, context, line)
            if terminator.keyword != "end":
                raise self._error("expected end; found else", terminator.line)
        if context == "range":
            return _RangeNode(pipeline, body, else_body)
        return _WithNode(pipeline, body, else_body)

    def _template_name(self, tokens: List[_Token], line: int, context: str) -> str:
        if not tokens or tokens[0].kind not in ("string", "raw"):
            raise self._error(f"{context} requires a quoted template name", line)
        return _decode_string(tokens[0], name=self._name)

    def _parse_define(self, tokens: List[_Token], line: int) -> None:
        if self._depth or len(self._scopes) > 1:
            raise self._error("define is only allowed at the top level", line)
        name = self._template_name(tokens, line, "define")
        if len(tokens) > 1:
            raise self._error("unexpected tokens after define name", line)
        self._depth += 1
        try:
            body, terminator = self._parse_body()
        finally:
            self._depth -= 1
        terminator = self._require_terminator(terminator, "define", line)
        if terminator.keyword != "end":
            raise self._error("unexpected else in define", terminator.line)
        self._defines[name] = body

    def _parse_template_call(self, tokens: List[_Token], line: int) -> _TemplateNode:
        name = self._template_name(tokens, line, "template")
        pipeline = None
        if len(tokens) > 1:
            pipeline = self._parse_pipeline(tokens[1:], line, context="template")
        return _TemplateNode(name, pipeline, line)

    def _parse_block(self, tokens: List[_Token], line: int) -> _TemplateNode:
        name = self._template_name(tokens, line, "block")
        pipeline = self._parse_pipeline(tokens[1:], line, context="block")
        body, terminator = self._parse_body()
        terminator = self._require_terminator(terminator, "block", line)
        if terminator.keyword != "end":
            raise self._error("unexpected else in block", terminator.line)
        self._blocks.setdefault(name, body)
        return _TemplateNode(name, pipeline, line)

    def _parse_pipeline(
        self,
        tokens: List[_Token],
        line: int,
        *,
        context: str,
        allow_declaration: bool = False,
        max_declarations: int = 1,
    ) -> _Pipeline:
        declarations: List[str] = []
        is_assignment = False
        operator_index = next(
            (index for index, token in enumerate(tokens) if token.kind in ("declare", "assign")),
            None,
        )
        if operator_index is not None:
            if not allow_declaration:
                raise self._error(f"variable declaration not allowed in {context}", line)
            head = tokens[:operator_index]
            names = [token for token in head if token.kind != "comma"]
            if (
                not names
                or len(names) > max_declarations
                or any(token.kind != "variable" or "." in token.value for token in names)
            ):
                raise self._error(f"malformed variable declaration in {context}", line)
            declarations = [token.value for token in names]
            is_assignment = tokens[operator_index].kind == "assign"
            if is_assignment:
                for variable in declarations:
                    self._check_variable(variable, line)
            tokens = tokens[operator_index + 1:]

        if not tokens:
            raise self._error(f"missing value for {context}", line)

        commands: List[_Command] = []
        current: List[_Token] = []
        depth = 0
        for token in tokens:
            if token.kind == "lparen":
                depth += 1
            elif token.kind == "rparen":
                depth -= 1
                if depth < 0:
                    raise self._error("unexpected right paren", line)
            if token.kind == "pipe" and depth == 0:
                commands.append(self._parse_command(current, line))
                current = []
                continue
            current.append(token)
        if depth != 0:
            raise self._error("unclosed left paren", line)
        commands.append(self._parse_command(current, line))
        return _Pipeline(line, commands, tuple(declarations), is_assignment)

    def _parse_command(self, tokens: List[_Token], line: int) -> _Command:
        if not tokens:
            raise self._error("missing value for command", line)
        args: List[Any] = []
        index = 0
        while index < len(tokens):
            token = tokens[index]
            if token.kind == "lparen":
                depth = 1
                end = index + 1
                while end < len(tokens) and depth:
                    if tokens[end].kind == "lparen":
                        depth += 1
                    elif tokens[end].kind == "rparen":
                        depth -= 1
                    end += 1
                inner = tokens[index + 1:end - 1]
                args.append(_SubPipeline(self._parse_pipeline(inner, line, context="parenthesized pipeline")))
                index = end
                continue
            args.append(self._parse_operand(token, line))
            index += 1
        return _Command(args)

    def _parse_operand(self, token: _Token, line: int) -> Any:
        kind = token.kind
        if kind in ("string", "raw"):
            return _Literal(_decode_string(token, name=self._name))
        if kind == "number":
            text = token.value
            if re.fullmatch(r"[-+]?\d+", text):
                return _Literal(int(text))
            return _Literal(float(text))
        if kind == "field":
            return _Field(tuple(token.value[1:].split(".")))
        if kind == "dot":
            return _Dot()
        if kind == "variable":
            head, _, rest = token.value.partition(".")
            self._check_variable(head, line)
            return _Variable(head, tuple(rest.split(".")) if rest else ())
        if kind == "ident":
            if token.value in _LITERAL_KEYWORDS:
                return _Literal(_LITERAL_KEYWORDS[token.value])
            if token.value in _CONTROL_KEYWORDS:
                raise self._error(f"unexpected <{token.value}> in command", line)
            if token.value not in self._functions:
                raise self._error(f'function "{token.value}" not defined', line)
            return _Function(token.value)
        raise self._error(f"unexpected {token.value!r} in operand", line)

    def _check_variable(self, variable: str, line: int) -> None:
        if not any(variable in scope for scope in self._scopes):
            raise self._error(f"undefined variable {variable!r}", line)


def _decode_string(token: _Token, *, name: str) -> str:
    if token.kind == "raw":
        return token.value[1:-1]
    try:
        return json.loads(token.value)
    except json.JSONDecodeError as exc:
        raise TemplateSyntaxError(f"invalid string literal {token.value}", name=name, line=token.line) from exc


# ---------------------------------------------------------------------------
# Values and built-in functions
# ---------------------------------------------------------------------------


def is_true(value: Any) -> bool:
    """Return the truthiness of *value* using template semantics."""

    if value is None:
        return False
    if isinstance(value, (bool, int, float, str, bytes, Mapping, Sequence)):
        return bool(value)
    return True


def format_value(value: Any, *, missing_text: str = "") -> str:
    """Render *value* the way an action prints it."""

    if value is None:
        return missing_text
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        entries = " ".join(
            f"{key}:{format_value(value[key], missing_text=NO_VALUE)}" for key in sorted(value, key=str)
        )
        return f"map[{entries}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(format_value(item, missing_text=NO_VALUE) for item in value) + "]"
    return str(value)


def _sprint(*args: Any) -> str:
    parts: List[str] = []
    for index, arg in enumerate(args):
        if index and not isinstance(arg, str) and not isinstance(args[index - 1], str):
            parts.append(" ")
        parts.append(format_value(arg, missing_text=NO_VALUE))
    return "".join(parts)


def _sprintln(*args: Any) -> str:
    return " ".join(format_value(arg, missing_text=NO_VALUE) for arg in args) + "\n"


_PRINTF_VERB = re.compile(r"%(-?0?)(\d+)?(?:\.(\d+))?([vsqdtf%])")


def _format_verb(verb: str, value: Any, precision: str | None) -> str:
    if verb == "q":
        return json.dumps(format_value(value, missing_text=NO_VALUE))
    if verb == "d" and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if verb == "f" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return format(float(value), f".{precision or 6}f")
    if verb == "t" and not isinstance(value, bool):
        return f"%!t({format_value(value, missing_text=NO_VALUE)})"
    if verb in ("d", "f"):
        return f"%!{verb}({format_value(value, missing_text=NO_VALUE)})"
    return format_value(value, missing_text=NO_VALUE)


def _sprintf(template: str, *args: Any) -> str:
    """Format ``%v %s %q %d %t %f`` verbs with optional width and precision."""

    if not isinstance(template, str):
        raise TemplateError("printf requires a string format")
    remaining = list(args)

    def replace(match: re.Match[str]) -> str:
        flags, width, precision, verb = match.groups()
        if verb == "%":
            return "%"
        if not remaining:
            return f"%!{verb}(MISSING)"
        text = _format_verb(verb, remaining.pop(0), precision)
        if not width:
            return text
        if "-" in flags:
            return text.ljust(int(width))
        return text.rjust(int(width), "0" if "0" in flags and verb in ("d", "f") else " ")

    return _PRINTF_VERB.sub(replace, template)


def _and(first: Any, *rest: Any) -> Any:
    for value in (first, *rest):
        if not is_true(value):
            return value
    return rest[-1] if rest else first


def _or(first: Any, *rest: Any) -> Any:
    for value in (first, *rest):
        if is_true(value):
            return value
    return rest[-1] if rest else first


def _not(value: Any) -> bool:
    return not is_true(value)


def _len(value: Any) -> int:
    if value is None:
        raise TemplateError("len of nil value")
    try:
        return len(value)
    except TypeError as exc:
        raise TemplateError(f"len of type {type(value).__name__}") from exc


def _index(value: Any, *keys: Any) -> Any:
    current = value
    for key in keys:
        if current is None:
            raise TemplateError("index of untyped nil")
        if isinstance(current, Mapping):
            current = current.get(key)
            continue
        if isinstance(current, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise TemplateError(f"cannot index {type(current).__name__} with {type(key).__name__}")
            if not 0 <= key < len(current):
                raise TemplateError(f"index out of range: {key}")
            current = current[key]
            continue
        raise TemplateError(f"can't index item of type {type(current).__name__}")
    return current


def _comparable(left: Any, right: Any) -> bool:
    numeric = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return True
    return type(left) is type(right)


def _eq(first: Any, *others: Any) -> bool:
    if not others:
        raise TemplateError("missing argument for comparison")
    for other in others:
        if first is None or other is None:
            if first is other:
                return True
            continue
        if not _comparable(first, other):
            raise TemplateError(
                f"incompatible types for comparison: {type(first).__name__} and {type(other).__name__}"
            )
        if first == other:
            return True
    return False


def _ne(left: Any, right: Any) -> bool:
    return not _eq(left, right)


def _ordered(left: Any, right: Any, op: Callable[[Any, Any], bool]) -> bool:
    if left is None or right is None or not _comparable(left, right) or isinstance(left, (bool, Mapping, list)):
        raise TemplateError(
            f"incompatible types for comparison: {type(left).__name__} and {type(right).__name__}"
        )
    return op(left, right)


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "and": _and,
    "or": _or,
    "not": _not,
    "len": _len,
    "index": _index,
    "print": _sprint,
    "printf": _sprintf,
    "println": _sprintln,
    "eq": _eq,
    "ne": _ne,
    "lt": lambda left, right: _ordered(left, right, lambda a, b: a < b),
    "le": lambda left, right: _ordered(left, right, lambda a, b: a <= b),
    "gt": lambda left, right: _ordered(left, right, lambda a, b: a > b),
    "ge": lambda left, right: _ordered(left, right, lambda a, b: a >= b),
}
"""Functions available to every template."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


_NO_PIPE = object()


def _reference_path(pipeline: _Pipeline) -> str | None:
    """Return the path of a pipeline that is a single data reference."""

    if len(pipeline.commands) != 1 or len(pipeline.commands[0].args) != 1:
        return None
    arg = pipeline.commands[0].args[0]
    if isinstance(arg, _Dot):
        return "."
    if isinstance(arg, _Field):
        return "." + ".".join(arg.parts)
    if isinstance(arg, _Variable):
        return ".".join((arg.name, *arg.parts))
    return None


@dataclass(slots=True)
class _State:
    root: Any
    functions: Mapping[str, Callable[..., Any]]
    templates: Mapping[str, List[Any]]
    missing_text: str
    on_missing: MissingHandler | None
    output: List[str] = field(default_factory=list)
    scopes: List[Dict[str, Any]] = field(default_factory=list)
    depth: int = 0


class Template:
    """A parsed template that can be executed against a data mapping."""

    def __init__(
        self,
        source: str,
        *,
        name: str = "template",
        functions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self.name = name
        self.functions: Dict[str, Callable[..., Any]] = dict(BUILTIN_FUNCTIONS)
        if functions:
            self.functions.update(functions)
        items = _split_items(source, name=name)
        parser = _Parser(items, name=name, function_names=self.functions)
        self._nodes, self._templates = parser.parse()

    def execute(
        self,
        data: Any,
        *,
        missing_text: str = "",
        on_missing: MissingHandler | None = None,
    ) -> str:
        """Render the template with ``.`` bound to *data*."""

        state = _State(
            root=data,
            functions=self.functions,
            templates=self._templates,
            missing_text=missing_text,
            on_missing=on_missing,
            scopes=[{"$": data}],
        )
        self._walk(self._nodes, data, state)
        return "".join(state.output)

    def _walk(self, nodes: Sequence[Any], dot: Any, state: _State) -> None:
        for node in nodes:
            if isinstance(node, _TextNode):
                state.output.append(node.text)
            elif isinstance(node, _ActionNode):
                value = self._eval_pipeline(node.pipeline, dot, state)
                if node.pipeline.declarations:
                    continue
                path = _reference_path(node.pipeline)
                if path is not None and isinstance(value, Mapping):
                    # A bare reference must land on a leaf.
                    if state.on_missing is not None:
                        state.on_missing(path)
                    value = None
                state.output.append(format_value(value, missing_text=state.missing_text))
            elif isinstance(node, _IfNode):
                self._walk_if(node, dot, state)
            elif isinstance(node, _RangeNode):
                self._walk_range(node, dot, state)
            elif isinstance(node, _WithNode):
                self._walk_with(node, dot, state)
            elif isinstance(node, _TemplateNode):
                self._walk_template(node, dot, state)

    def _scoped_walk(self, nodes: Sequence[Any], dot: Any, state: _State, variables: Dict[str, Any]) -> None:
        state.scopes.append(dict(variables))
        try:
            self._walk(nodes, dot, state)
        finally:
            state.scopes.pop()

    def _walk_if(self, node: _IfNode, dot: Any, state: _State) -> None:
        for pipeline, body in node.branches:
            state.scopes.append({})
            try:
                value = self._eval_pipeline(pipeline, dot, state)
                if is_true(value):
                    self._walk(body, dot, state)
                    return
            finally:
                state.scopes.pop()
        self._scoped_walk(node.else_body, dot, state, {})

    def _walk_with(self, node: _WithNode, dot: Any, state: _State) -> None:
        state.scopes.append({})
        try:
            value = self._eval_pipeline(node.pipeline, dot, state)
            if is_true(value):
                self._walk(node.body, value, state)
                return
        finally:
            state.scopes.pop()
        self._scoped_walk(node.else_body, dot, state, {})

    def _walk_range(self, node: _RangeNode, dot: Any, state: _State) -> None:
        pipeline = node.pipeline
        value = self._eval_pipeline(
            _Pipeline(pipeline.line, pipeline.commands),
            dot,
            state,
        )
        if value is None:
            entries: List[tuple[Any, Any]] = []
        elif isinstance(value, Mapping):
            entries = [(key, value[key]) for key in sorted(value, key=str)]
        elif isinstance(value, (list, tuple)):
            entries = list(enumerate(value))
        elif isinstance(value, int) and not isinstance(value, bool):
            entries = [(index, index) for index in range(value)]
        else:
            raise TemplateError(f"{self.name}:{pipeline.line}: range can't iterate over {format_value(value)}")

        if not entries:
            self._scoped_walk(node.else_body, dot, state, {})
            return

        names = pipeline.declarations
        for key, element in entries:
            variables: Dict[str, Any] = {}
            if len(names) == 1:
                variables[names[0]] = element
            elif len(names) == 2:
                variables[names[0]] = key
                variables[names[1]] = element
            self._scoped_walk(node.body, element, state, variables)

    def _walk_template(self, node: _TemplateNode, dot: Any, state: _State) -> None:
        body = state.templates.get(node.name)
        if body is None:
            raise TemplateError(f'{self.name}:{node.line}: no such template "{node.name}"')
        if state.depth >= MAX_TEMPLATE_DEPTH:
            raise TemplateError(f"{self.name}:{node.line}: exceeded maximum template depth ({MAX_TEMPLATE_DEPTH})")
        value = self._eval_pipeline(node.pipeline, dot, state) if node.pipeline else None
        saved = state.scopes
        state.scopes = [{"$": value}]
        state.depth += 1
        try:
            self._walk(body, value, state)
        finally:
            state.depth -= 1
            state.scopes = saved

    def _eval_pipeline(self, pipeline: _Pipeline, dot: Any, state: _State) -> Any:
        value: Any = _NO_PIPE
        for command in pipeline.commands:
            value = self._eval_command(command, dot, state, value, pipeline.line)
        for name in pipeline.declarations:
            if pipeline.is_assignment:
                for scope in reversed(state.scopes):
                    if name in scope:
                        scope[name] = value
                        break
            else:
                state.scopes[-1][name] = value
        return value

    def _eval_command(self, command: _Command, dot: Any, state: _State, piped: Any, line: int) -> Any:
        first = command.args[0]
        if isinstance(first, _Function):
            args = [self._eval_arg(arg, dot, state, line) for arg in command.args[1:]]
            if piped is not _NO_PIPE:
                args.append(piped)
            return self._call(first.name, args, state, line)
        if len(command.args) > 1 or piped is not _NO_PIPE:
            raise TemplateError(f"{self.name}:{line}: can't give argument to non-function")
        return self._eval_arg(first, dot, state, line)

    def _eval_arg(self, arg: Any, dot: Any, state: _State, line: int) -> Any:
        if isinstance(arg, _Literal):
            return arg.value
        if isinstance(arg, _Dot):
            return dot
        if isinstance(arg, _Field):
            return self._lookup(dot, arg.parts, "", state)
        if isinstance(arg, _Variable):
            base = self._variable(arg.name, state, line)
            if not arg.parts:
                return base
            return self._lookup(base, arg.parts, arg.name, state)
        if isinstance(arg, _SubPipeline):
            return self._eval_pipeline(arg.pipeline, dot, state)
        if isinstance(arg, _Function):
            return self._call(arg.name, [], state, line)
        raise TemplateError(f"{self.name}:{line}: cannot evaluate {arg!r}")  # pragma: no cover

    def _variable(self, name: str, state: _State, line: int) -> Any:
        for scope in reversed(state.scopes):
            if name in scope:
                return scope[name]
        raise TemplateError(f"{self.name}:{line}: undefined variable {name!r}")

    @staticmethod
    def _lookup(base: Any, parts: Sequence[str], prefix: str, state: _State) -> Any:
        current = base
        for part in parts:
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            if state.on_missing is not None:
                state.on_missing(prefix + "." + ".".join(parts))
            return None
        return current

    def _call(self, name: str, args: List[Any], state: _State, line: int) -> Any:
        func = state.functions[name]
        try:
            inspect.signature(func).bind(*args)
        except TypeError as exc:
            raise TemplateError(f"{self.name}:{line}: wrong number of args for {name}: {exc}") from exc
        except ValueError:  # pragma: no cover - builtins without signatures
            pass
        return func(*args)


def field_references(source: str) -> List[str]:
    """Return the dotted data paths referenced with ``.path`` inside actions.

    Unparsable actions are skipped; the order of first appearance is kept and
    duplicates are removed.
    """

    references: List[str] = []
    try:
        items = _split_items(source, name="references")
    except TemplateSyntaxError:
        return references
    for item in items:
        if item.kind != "action":
            continue
        try:
            tokens = _tokenize(item.value, line=item.line, name="references")
        except TemplateSyntaxError:
            continue
        for token in tokens:
            if token.kind == "field":
                path = token.value[1:]
                if path not in references:
                    references.append(path)
    return references


__all__ = [
    "BUILTIN_FUNCTIONS",
    "MAX_TEMPLATE_DEPTH",
    "MissingHandler",
    "NO_VALUE",
    "Template",
    "TemplateError",
    "TemplateSyntaxError",
    "field_references",
    "format_value",
    "is_true",
]
