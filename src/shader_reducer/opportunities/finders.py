from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Collection, Dict, List, Optional, Protocol, Set

from ..program import ShaderProgram
from .context import ReductionOpportunityContext

_IDENT_RE = re.compile(r"\b[A-Za-z_]\w*\b")
_BLOCK_HEADER_RE = re.compile(r"^\s*(?:if\s*\(|for\s*\(|while\s*\(|else\b|\{)")
_OUT_DECL_RE = re.compile(r"^\s*(?:layout\s*\([^)]*\)\s*)?out\s+\w+\s+(\w+)\s*;")
_SCALAR_TYPES = "float|int|uint|bool|[biu]?vec[234]"
_DECL_RE = re.compile(
    r"^(?P<indent>\s*)(?P<quals>(?:(?:const|highp|mediump|lowp)\s+)*)"
    r"(?P<type>" + _SCALAR_TYPES + r"|mat[234](?:x[234])?)\s+(?P<name>[A-Za-z_]\w*)"
    r"\s*(?P<rest>=\s*(?P<init>.+?)|\[[^\]]*\])?\s*;\s*$"
)
_FRESH_NAME_RE = re.compile(r"^_v\d+$")
_SWIZZLE_RE = re.compile(r"^(?:[xyzw]{1,4}|[rgba]{1,4}|[stpq]{1,4})$")
_MULTI_DECL_RE = re.compile(r",\s*[A-Za-z_]\w*\s*(?:=|$)")
_NON_FUNCTION_BLOCK_RE = re.compile(r"\b(?:struct|uniform|buffer)\b")
_BUILTIN_OUTPUTS = ("gl_FragColor", "_GLF_color")

_KEYWORDS = {
    "attribute", "bool", "break", "bvec2", "bvec3", "bvec4", "const", "continue",
    "discard", "do", "else", "false", "float", "for", "highp", "if", "in", "inout",
    "int", "ivec2", "ivec3", "ivec4", "layout", "lowp", "main", "mat2", "mat3", "mat4",
    "mediump", "out", "precision", "return", "sampler2D", "struct", "true", "uint",
    "uniform", "uvec2", "uvec3", "uvec4", "varying", "vec2", "vec3", "vec4", "void",
    "while",
}


def _code(line: str) -> str:
    return line.split("//", 1)[0].rstrip()


@dataclass(frozen=True)
class LineInfo:
    index: int
    code: str
    depth: int
    in_function: bool


def _scan(lines: List[str]) -> List[LineInfo]:
    infos: List[LineInfo] = []
    depth = 0
    outer_is_function = False
    last_code = ""
    for index, line in enumerate(lines):
        code = _code(line)
        stripped = code.strip()
        in_function = depth > 0 and outer_is_function
        infos.append(LineInfo(index=index, code=code, depth=depth, in_function=in_function))
        if stripped.startswith("#"):
            continue
        for pos, char in enumerate(code):
            if char == "{":
                if depth == 0:
                    header = code[:pos].strip() or last_code
                    outer_is_function = "(" in header and not _NON_FUNCTION_BLOCK_RE.search(
                        header
                    )
                depth += 1
            elif char == "}":
                depth = max(depth - 1, 0)
        if stripped:
            last_code = stripped
    return infos


def _output_names(lines: List[str]) -> Set[str]:
    names = set(_BUILTIN_OUTPUTS)
    for line in lines:
        match = _OUT_DECL_RE.match(line)
        if match:
            names.add(match.group(1))
    return names


def _writes_output(code: str, outputs: Collection[str]) -> bool:
    for name in outputs:
        if re.search(r"\b" + re.escape(name) + r"\b[^;=]*?(?<![=!<>])=(?!=)", code):
            return True
    return False


def _identifiers(text: str) -> Set[str]:
    return set(_IDENT_RE.findall(text))


def _constant_for(type_name: str, context: ReductionOpportunityContext) -> Optional[str]:
    if type_name.startswith("u") and not context.version.supports_unsigned_ints:
        return None
    base = {
        "float": "1.0",
        "int": "1",
        "uint": "1u",
        "bool": "true",
    }
    if type_name in base:
        return base[type_name]
    element = {"v": "1.0", "i": "1", "u": "1u", "b": "true"}[type_name[0]]
    return f"{type_name}({element})"


class Opportunity(Protocol):
    @property
    def kind(self) -> str:
        ...

    @property
    def priority(self) -> int:
        ...

    @property
    def start(self) -> int:
        ...

    @property
    def detail(self) -> str:
        ...

    @property
    def key(self) -> str:
        ...

    def apply(
        self, program: ShaderProgram, context: ReductionOpportunityContext
    ) -> ShaderProgram:
        ...


@dataclass(frozen=True)
class _LineOpportunity:
    kind: str
    priority: int
    start: int
    end: int
    detail: str = ""

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.start}:{self.end}:{self.detail}"


@dataclass(frozen=True)
class RemoveLines(_LineOpportunity):
    def apply(
        self, program: ShaderProgram, context: ReductionOpportunityContext
    ) -> ShaderProgram:
        lines = program.lines
        return program.with_lines(lines[: self.start] + lines[self.end + 1 :])


@dataclass(frozen=True)
class SimplifyInitializer(_LineOpportunity):
    def apply(
        self, program: ShaderProgram, context: ReductionOpportunityContext
    ) -> ShaderProgram:
        lines = program.lines
        code = _code(lines[self.start])
        match = _DECL_RE.match(code)
        if match is None or match.group("init") is None:
            raise ValueError(f"line {self.start} no longer holds an initializer")
        head = code[: match.start("init")]
        lines[self.start] = f"{head}{self.detail};"
        return program.with_lines(lines)


@dataclass(frozen=True)
class RenameIdentifier(_LineOpportunity):
    def apply(
        self, program: ShaderProgram, context: ReductionOpportunityContext
    ) -> ShaderProgram:
        fresh = context.fresh_name(_identifiers(program.text))
        pattern = re.compile(r"\b" + re.escape(self.detail) + r"\b")
        return program.with_lines([pattern.sub(fresh, line) for line in program.lines])


def _find_removable_lines(lines: List[str], infos: List[LineInfo]) -> List[Opportunity]:
    found: List[Opportunity] = []
    for info in infos:
        stripped = lines[info.index].strip()
        if stripped.startswith("#"):
            continue
        if not stripped or (stripped.startswith("//") and not info.code.strip()):
            found.append(RemoveLines("remove_blank_or_comment", 0, info.index, info.index))
        elif stripped.startswith("/*") and stripped.endswith("*/") and "*/" not in stripped[2:-2]:
            found.append(RemoveLines("remove_blank_or_comment", 0, info.index, info.index))
    return found


def _block_end(infos: List[LineInfo], start: int) -> Optional[int]:
    depth = infos[start].depth
    for info in infos[start + 1 :]:
        if info.depth == depth + 1 and info.code.strip() == "}":
            return info.index
        if info.depth <= depth:
            return None
    return None


def _next_code(infos: List[LineInfo], index: int) -> str:
    following = next((i for i in infos[index + 1 :] if i.code.strip()), None)
    return following.code.strip() if following is not None else ""


def _find_blocks(
    infos: List[LineInfo],
    outputs: Collection[str],
    context: ReductionOpportunityContext,
) -> List[Opportunity]:
    found: List[Opportunity] = []
    for info in infos:
        if not info.in_function or not info.code.endswith("{"):
            continue
        if not _BLOCK_HEADER_RE.match(info.code):
            continue
        end = _block_end(infos, info.index)
        if end is None:
            continue
        if _next_code(infos, end).startswith("else"):
            continue
        body = [infos[i].code for i in range(info.index, end + 1)]
        if not context.reduce_everywhere and any(_writes_output(c, outputs) for c in body):
            continue
        found.append(RemoveLines("remove_block", 1, info.index, end))
    return found


def _starts_statement(infos: List[LineInfo], index: int) -> bool:
    for info in reversed(infos[:index]):
        previous = info.code.strip()
        if previous:
            return previous.endswith((";", "{", "}"))
    return True


def _find_statements(
    infos: List[LineInfo],
    outputs: Collection[str],
    context: ReductionOpportunityContext,
) -> List[Opportunity]:
    found: List[Opportunity] = []
    for info in infos:
        code = info.code.strip()
        if not info.in_function or not code.endswith(";") or code.startswith("for"):
            continue
        if not _starts_statement(infos, info.index) or _next_code(infos, info.index).startswith(
            "else"
        ):
            continue
        unsafe = code.startswith("return") or _writes_output(code, outputs)
        if unsafe and not context.reduce_everywhere:
            continue
        declaration = _DECL_RE.match(info.code)
        if declaration is not None:
            name = declaration.group("name")
            others = "\n".join(l.code for l in infos if l.index != info.index)
            if name in _identifiers(others):
                continue
        found.append(RemoveLines("remove_statement", 2, info.index, info.index))
    return found


def _find_initializers(
    infos: List[LineInfo], context: ReductionOpportunityContext
) -> List[Opportunity]:
    found: List[Opportunity] = []
    for info in infos:
        match = _DECL_RE.match(info.code)
        if match is None or match.group("init") is None:
            continue
        if match.group("type").startswith("mat") or _MULTI_DECL_RE.search(match.group("init")):
            continue
        constant = _constant_for(match.group("type"), context)
        if constant is None or match.group("init").strip() == constant:
            continue
        found.append(
            SimplifyInitializer("simplify_initializer", 3, info.index, info.index, constant)
        )
    return found


def _find_renames(infos: List[LineInfo], outputs: Collection[str]) -> List[Opportunity]:
    seen: Dict[str, int] = {}
    for info in infos:
        if not info.in_function:
            continue
        match = _DECL_RE.match(info.code)
        if match is None:
            continue
        name = match.group("name")
        if name in outputs or name in _KEYWORDS or name.startswith("gl_"):
            continue
        if _FRESH_NAME_RE.match(name) or _SWIZZLE_RE.match(name):
            continue
        seen.setdefault(name, info.index)
    return [
        RenameIdentifier("rename_identifier", 4, index, index, name)
        for name, index in seen.items()
    ]


def find_opportunities(
    program: ShaderProgram, context: ReductionOpportunityContext
) -> List[Opportunity]:
    lines = program.lines
    infos = _scan(lines)
    outputs = _output_names(lines)
    found: List[Opportunity] = []
    found.extend(_find_removable_lines(lines, infos))
    found.extend(_find_blocks(infos, outputs, context))
    found.extend(_find_statements(infos, outputs, context))
    found.extend(_find_initializers(infos, context))
    found.extend(_find_renames(infos, outputs))
    return found


def select_opportunity(
    opportunities: List[Opportunity], context: ReductionOpportunityContext
) -> Opportunity:
    if not opportunities:
        raise ValueError("no opportunities to select from")
    best = min(op.priority for op in opportunities)
    tied = sorted((op for op in opportunities if op.priority == best), key=lambda op: op.key)
    return context.random.choice(tied)
