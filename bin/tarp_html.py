#!/usr/bin/env python3
"""
Tarp HTML Coverage Report Generator

Renders a Go coverage profile as a single self-contained HTML page. Every
tracked statement is colored by how often it ran (cov0..cov10), except
statements that ran although their enclosing function was never called
directly from a test: those are marked "indirectly covered" (tarp-uncovered).

Output: the file given with --output, or coverage.html in a temporary
directory opened in a browser.
"""

import argparse
import html
import math
import os
import subprocess
import sys
import tempfile
from bisect import bisect_left
from pathlib import Path
from dataclasses import dataclass

from tarp_common import (
    TarpError, OutputWriteError, TarpReport,
    parse_profiles, profile_boundaries, percent_covered,
    find_file, read_source, load_report, same_source_file,
)
from go_scan import analyze_dirs

TARP_CLASS_NAME = "tarp-uncovered"
TARP_COLOR = "rgb(252, 242, 106)"
UNCOVERED_COLOR = (192, 0, 0)

HTML_ESCAPES = {
    ord('<'): b"&lt;",
    ord('>'): b"&gt;",
    ord('&'): b"&amp;",
    ord('\t'): b"    ",
}


@dataclass
class RenderedFile:
    name: str
    body: str
    coverage: float


def color_for(level: int) -> tuple:
    """RGB for a coverage level between 0 (no coverage) and 10 (max coverage)."""
    if level == 0:
        return UNCOVERED_COLOR
    # gradient from gray to green
    return (128 - 12 * (level - 1), 128 + 12 * (level - 1), 128 + 3 * (level - 1))


def rgb(level: int) -> str:
    r, g, b = color_for(level)
    return f"rgb({r}, {g}, {b})"


def css_colors() -> str:
    """CSS rules for the coverage level classes and the tarp class."""
    rules = [f".cov{i} {{ color: {rgb(i)} }}" for i in range(11)]
    rules.append(f".{TARP_CLASS_NAME} {{ color: {TARP_COLOR} }}")
    return "\n".join(rules) + "\n"


def coverage_level(count: int, norm: float) -> int:
    if count == 0:
        return 0
    return int(math.floor(norm * 9)) + 1


class DeclarationIndex:
    """Declarations of one file, looked up by the line a span starts on.

    A span belongs to the first function closing on or after its line, as
    long as that function doesn't start below it. `go tool cover` based
    tools only attribute spans starting on the closing-brace line itself;
    that case still matches, and so does any span inside the body.
    """

    def __init__(self, declarations, filename=None):
        decls = [d for d in declarations
                 if filename is None or same_source_file(d.source_file, filename)]
        decls.sort(key=lambda d: d.closing_line)
        self.decls = decls
        self.closing_lines = [d.closing_line for d in decls]

    def enclosing(self, line: int):
        i = bisect_left(self.closing_lines, line)
        if i == len(self.decls):
            return None
        decl = self.decls[i]
        if decl.line and decl.line > line:
            return None
        return decl


def annotate_source(src: bytes, boundaries, declarations=(), called=frozenset(), filename=None) -> str:
    """Escape src and wrap every profile block in a coverage-classed span.

    boundaries must be ordered by offset and nest like parentheses; they are
    trusted as given. Bytes that aren't valid UTF-8 come back as surrogate
    escapes, so write_document reproduces them unchanged.
    """
    index = DeclarationIndex(declarations, filename)
    dst = bytearray()
    pending = list(boundaries)
    pos = 0
    current_line = 1

    def emit(b):
        if not b.start:
            dst.extend(b"</span>")
            return
        n = coverage_level(b.count, b.norm)
        func = index.enclosing(current_line)
        if func is not None and n > 0 and func.name not in called:
            dst.extend(f'<span class="{TARP_CLASS_NAME}" title="{b.count}">'.encode())
        else:
            dst.extend(f'<span class="cov{n}" title="{b.count}">'.encode())

    for i, byte in enumerate(src):
        while pos < len(pending) and pending[pos].offset == i:
            emit(pending[pos])
            pos += 1
        escaped = HTML_ESCAPES.get(byte)
        if escaped is not None:
            dst.extend(escaped)
        else:
            dst.append(byte)
            if byte == ord('\n'):
                current_line += 1

    # spans closing at the very end of the source
    while pos < len(pending) and pending[pos].offset >= len(src):
        emit(pending[pos])
        pos += 1

    return dst.decode("utf-8", errors="surrogateescape")


def render_file(profile, src: bytes, filename: str, report: TarpReport) -> RenderedFile:
    """Annotated body and coverage percentage of one profiled file."""
    boundaries = profile_boundaries(profile, src)
    body = annotate_source(src, boundaries, report.declarations_for(filename), report.called)
    return RenderedFile(
        name=profile.file_name,
        body=body,
        coverage=percent_covered(profile.blocks),
    )


def render_legend(set_mode: bool) -> str:
    entries = ['<span>not tracked</span>']
    if set_mode:
        entries.append('<span class="cov0">not covered</span>')
        entries.append('<span class="cov8">covered</span>')
    else:
        entries.append('<span class="cov0">no coverage</span>')
        entries.append('<span class="cov1">low coverage</span>')
        entries.extend(f'<span class="cov{i}">*</span>' for i in range(2, 10))
        entries.append('<span class="cov10">high coverage</span>')
    entries.append(f'<span class="{TARP_CLASS_NAME}">indirectly covered</span>')
    return "\n".join(f"\t\t\t\t{e}" for e in entries)


def render_document(files, set_mode: bool) -> str:
    """The complete report page for the rendered files, in order."""
    options = "\n".join(
        f'\t\t\t\t<option value="file{i}">{html.escape(f.name)} ({f.coverage:.1f}%)</option>'
        for i, f in enumerate(files)
    )
    hidden = ' style="display: none"'
    bodies = "\n".join(
        f'\t\t<pre class="file" id="file{i}"{hidden if i else ""}>{f.body}</pre>'
        for i, f in enumerate(files)
    )

    return f'''<!DOCTYPE html>
<html>
	<head>
		<meta http-equiv="Content-Type" content="text/html; charset=utf-8">
		<style>
			body {{
				background: black;
				color: rgb(80, 80, 80);
			}}
			body, pre, #legend span {{
				font-family: Menlo, monospace;
				font-weight: bold;
			}}
			#topbar {{
				background: black;
				position: fixed;
				top: 0; left: 0; right: 0;
				height: 42px;
				border-bottom: 1px solid rgb(80, 80, 80);
			}}
			#content {{
				margin-top: 50px;
			}}
			#nav, #legend {{
				float: left;
				margin-left: 10px;
			}}
			#legend {{
				margin-top: 12px;
			}}
			#nav {{
				margin-top: 10px;
			}}
			#legend span {{
				margin: 0 1px;
			}}
{css_colors()}
		</style>
	</head>
	<body>
		<div id="topbar">
			<div id="nav">
				<select id="files">
{options}
				</select>
			</div>
			<div id="legend">
{render_legend(set_mode)}
			</div>
		</div>
		<div id="content">
{bodies}
		</div>
	</body>
	<script>
	(function() {{
		let files = document.getElementById('files');
		let visible = document.getElementById('file0');
		files.addEventListener('change', onChange, false);
		function onChange() {{
			visible.style.display = 'none';
			visible = document.getElementById(files.value);
			visible.style.display = 'block';
			window.scrollTo(0, 0);
		}}
	}})();
	</script>
</html>
'''


def write_document(document: str, outfile: Path):
    """Write the finished page; a failed write leaves no partial file behind."""
    outfile = Path(outfile)
    tmp = outfile.with_name(outfile.name + ".tmp")
    try:
        outfile.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8", errors="surrogateescape") as f:
            f.write(document)
        os.replace(tmp, outfile)
    except OSError as e:
        if tmp.exists():
            tmp.unlink()
        raise OutputWriteError(str(outfile), f"can't write {str(outfile)!r}: {e}") from e


def start_browser(url: str, platform: str) -> bool:
    """Try to open url in a browser; report whether the launch succeeded."""
    if platform == "darwin":
        args = ["open"]
    elif platform in ("win32", "windows"):
        args = ["cmd", "/c", "start"]
    else:
        args = ["xdg-open"]
    try:
        subprocess.Popen(args + [url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError:
        return False
    return True


def html_output(profile_path: Path, outfile=None, report=None, module_root: Path = Path("."),
                gopath=None, platform: str = sys.platform, open_browser=start_browser) -> Path:
    """Render the profile to outfile, or to a temporary file opened in a browser.

    Without a prebuilt report, the directories of the profiled files are
    scanned for declarations and test calls.
    """
    profiles = parse_profiles(profile_path)
    set_mode = any(p.mode == "set" for p in profiles)

    sources = []
    for profile in profiles:
        path = find_file(profile.file_name, module_root, gopath)
        sources.append((profile, path, read_source(path, profile.file_name)))

    if report is None:
        report = analyze_dirs(path.parent for _, path, _ in sources)

    files = [render_file(profile, src, str(path), report) for profile, path, src in sources]
    document = render_document(files, set_mode)

    if outfile:
        out = Path(outfile)
    else:
        try:
            out = Path(tempfile.mkdtemp(prefix="cover")) / "coverage.html"
        except OSError as e:
            raise OutputWriteError(tempfile.gettempdir(), f"can't create temporary directory: {e}") from e
    write_document(document, out)

    if not outfile:
        if not open_browser(out.resolve().as_uri(), platform):
            print(f"HTML output written to {out}", file=sys.stderr)

    return out


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Generate an HTML coverage report marking indirectly covered code")
    parser.add_argument("--profile", required=True, help="Go coverage profile (go test -coverprofile)")
    parser.add_argument("-o", "--output", help="Output HTML file (default: temporary file opened in a browser)")
    parser.add_argument("--report", help="Tarp report JSON written by check-tarp.py --json")
    parser.add_argument("--module-root", default=".", help="Directory holding go.mod (default: .)")

    args = parser.parse_args(argv)

    profile_path = Path(args.profile)
    module_root = Path(args.module_root).resolve()

    print("Generating tarp coverage report...")
    print(f"  Profile:      {profile_path}")
    print(f"  Module root:  {module_root}")

    try:
        report = load_report(Path(args.report)) if args.report else None
        out = html_output(profile_path, args.output, report, module_root)
    except TarpError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output:
        print(f"  HTML: {out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
