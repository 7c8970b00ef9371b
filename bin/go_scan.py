#!/usr/bin/env python3
"""
Lightweight Go source scanning for the tarp report.

Finds top-level function declarations (with the line of their closing
brace) in package sources, and the names of functions called from
*_test.go files. This is a lexical scan, not a parser: comments and
literals are blanked out first, then braces and parentheses are matched.
"""

import re
from pathlib import Path

from tarp_common import FuncDecl, TarpReport, SourceNotFoundError

IDENT_RE = re.compile(r'[A-Za-z_]\w*')
# a call may carry explicit type arguments: Map[int](xs), Pair[K, []V](k, v)
CALL_RE = re.compile(r'(?<!\w)([A-Za-z_]\w*)\s*(?:\[[^\[\]]*(?:\[[^\[\]]*\][^\[\]]*)*\]\s*)?\(')
DECL_NAME_RE = re.compile(r'(?<!\w)func\s*(?:\([^)]*\)\s*)?([A-Za-z_]\w*)')

GO_KEYWORDS = {
    'break', 'case', 'chan', 'const', 'continue', 'default', 'defer',
    'else', 'fallthrough', 'for', 'func', 'go', 'goto', 'if', 'import',
    'interface', 'map', 'package', 'range', 'return', 'select', 'struct',
    'switch', 'type', 'var',
}


def _blank(text: str) -> str:
    return re.sub(r'[^\n]', ' ', text)


def _literal_end(code: str, i: int, quote: str) -> int:
    """Index just past the string or rune literal opening at i."""
    j = i + 1
    n = len(code)
    while j < n:
        ch = code[j]
        if ch == '\\' and quote != '`':
            j += 2
            continue
        if ch == quote:
            return j + 1
        if ch == '\n' and quote != '`':
            return j
        j += 1
    return n


def strip_go_source(text: str) -> str:
    """Blank out comments and literals, keeping every offset and newline."""
    result = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch == '/' and i + 1 < n and text[i + 1] == '/':
            end = text.find('\n', i)
            if end == -1:
                end = n
            result.append(_blank(text[i:end]))
            i = end
            continue

        if ch == '/' and i + 1 < n and text[i + 1] == '*':
            end = text.find('*/', i + 2)
            end = n if end == -1 else end + 2
            result.append(_blank(text[i:end]))
            i = end
            continue

        if ch in '"\'`':
            end = _literal_end(text, i, ch)
            result.append(_blank(text[i:end]))
            i = end
            continue

        result.append(ch)
        i += 1

    return ''.join(result)


def _skip_space(code: str, i: int) -> int:
    while i < len(code) and code[i] in ' \t\r\n':
        i += 1
    return i


def _match_close(code: str, i: int, open_ch: str, close_ch: str) -> int:
    """Index just past the bracket matching code[i], or -1."""
    depth = 0
    while i < len(code):
        if code[i] == open_ch:
            depth += 1
        elif code[i] == close_ch:
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return -1


def _receiver_type(receiver: str) -> str:
    names = IDENT_RE.findall(receiver.split('[')[0])
    return names[-1] if names else ""


def _parse_header(code: str, i: int):
    """Parse `func [(recv)] name[T](params) results {` starting at i.

    Returns (name, receiver, index of the body's '{'), or None for function
    literals, function types and declarations without a body.
    """
    n = len(code)
    j = _skip_space(code, i + 4)

    receiver = ""
    if j < n and code[j] == '(':
        end = _match_close(code, j, '(', ')')
        if end < 0:
            return None
        receiver = _receiver_type(code[j + 1:end - 1])
        j = _skip_space(code, end)

    match = IDENT_RE.match(code, j)
    if not match:
        return None
    name = match.group(0)
    j = match.end()

    if j < n and code[j] == '[':
        j = _match_close(code, j, '[', ']')
        if j < 0:
            return None
    if j >= n or code[j] != '(':
        return None
    j = _match_close(code, j, '(', ')')
    if j < 0:
        return None

    while j < n:
        ch = code[j]
        if ch == '{':
            return name, receiver, j
        if ch == '\n':
            return None
        if ch in '([':
            j = _match_close(code, j, ch, ')' if ch == '(' else ']')
            if j < 0:
                return None
            continue
        match = IDENT_RE.match(code, j)
        if match:
            j = match.end()
            if match.group(0) in ('struct', 'interface'):
                j = _skip_space(code, j)
                if j < n and code[j] == '{':
                    j = _match_close(code, j, '{', '}')
                    if j < 0:
                        return None
            continue
        j += 1

    return None


def find_declarations(code: str, source_file: str) -> list:
    """Top-level function declarations in already stripped Go code."""
    decls = []
    depth = 0
    line = 1
    i = 0
    n = len(code)

    while i < n:
        ch = code[i]

        if (depth == 0 and code.startswith('func', i)
                and (i == 0 or not (code[i - 1].isalnum() or code[i - 1] == '_'))
                and (i + 4 >= n or not (code[i + 4].isalnum() or code[i + 4] == '_'))):
            header = _parse_header(code, i)
            if header:
                name, receiver, body = header
                end = _match_close(code, body, '{', '}')
                if end < 0:
                    break
                decls.append(FuncDecl(
                    name=name,
                    source_file=source_file,
                    closing_line=line + code.count('\n', i, end - 1),
                    line=line,
                    receiver=receiver,
                ))
                line += code.count('\n', i, end)
                i = end
                continue

        if ch == '\n':
            line += 1
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth = max(0, depth - 1)
        i += 1

    return decls


def find_calls(code: str) -> set:
    """Names of the functions called in already stripped Go code."""
    declared_at = {m.start(1) for m in DECL_NAME_RE.finditer(code)}
    names = set()
    for match in CALL_RE.finditer(code):
        name = match.group(1)
        if name in GO_KEYWORDS or match.start(1) in declared_at:
            continue
        names.add(name)
    return names


def _read_go(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceNotFoundError(str(path), f"can't read {str(path)!r}: {e}") from e


def scan_declarations(path: Path) -> list:
    """Function declarations of one Go file."""
    path = Path(path).resolve()
    return find_declarations(strip_go_source(_read_go(path)), str(path))


def scan_calls(path: Path) -> set:
    """Function names called anywhere in one Go file."""
    return find_calls(strip_go_source(_read_go(path)))


def analyze_dir(directory: Path) -> TarpReport:
    """Declarations from the package sources, direct calls from its tests."""
    report = TarpReport()
    for path in sorted(Path(directory).glob("*.go")):
        if path.name.endswith("_test.go"):
            report.called |= scan_calls(path)
        else:
            report.declared.extend(scan_declarations(path))
    return report


def analyze_dirs(directories) -> TarpReport:
    """Merge the reports of several package directories.

    The directly-called set is shared: a name called from any package's
    tests counts as called everywhere.
    """
    report = TarpReport()
    seen = set()
    for directory in directories:
        directory = Path(directory).resolve()
        if directory in seen:
            continue
        seen.add(directory)
        report.merge(analyze_dir(directory))
    return report
