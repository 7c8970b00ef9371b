#!/usr/bin/env python3
"""
Shared data structures and parsing logic for the tarp coverage tools.

Covers the Go cover profile format (`go test -coverprofile`), the boundary
walk that maps profile blocks onto byte offsets of the source, source file
resolution and the tarp report: which functions are declared and which of
them are called directly from test code.
"""

import json
import math
import os
import re
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional


class TarpError(Exception):
    """Base error for everything that aborts a report."""


class ProfileParseError(TarpError):
    """Malformed coverage profile."""


class SourceNotFoundError(TarpError):
    """A source file named by the profile can't be located or read."""

    def __init__(self, path, message):
        super().__init__(message)
        self.path = path


class OutputWriteError(TarpError):
    """The report destination can't be created or written."""

    def __init__(self, path, message):
        super().__init__(message)
        self.path = path


class ReportError(TarpError):
    """A saved tarp report can't be read back."""


@dataclass
class ProfileBlock:
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    num_stmt: int
    count: int

    def same_range(self, other: "ProfileBlock") -> bool:
        return (self.start_line, self.start_col, self.end_line, self.end_col) == \
            (other.start_line, other.start_col, other.end_line, other.end_col)


@dataclass
class Profile:
    file_name: str
    mode: str
    blocks: list = field(default_factory=list)


@dataclass
class Boundary:
    offset: int
    start: bool
    count: int
    norm: float = 0.0
    index: int = 0


@dataclass
class FuncDecl:
    name: str
    source_file: str
    closing_line: int
    line: int = 0
    receiver: str = ""

    @property
    def qualified_name(self) -> str:
        if self.receiver:
            return f"{self.receiver}.{self.name}"
        return self.name


@dataclass
class TarpReport:
    declared: list = field(default_factory=list)
    called: set = field(default_factory=set)

    @property
    def uncalled(self) -> list:
        """Declared functions that no test calls directly."""
        missing = [d for d in self.declared if d.name not in self.called]
        return sorted(missing, key=lambda d: (d.source_file, d.line, d.name))

    def merge(self, other: "TarpReport"):
        self.declared.extend(other.declared)
        self.called |= other.called

    def declarations_for(self, source_file: str) -> list:
        return [d for d in self.declared if same_source_file(d.source_file, source_file)]


MODE_PREFIX = "mode: "
PROFILE_LINE_RE = re.compile(r'^(.+):([0-9]+)\.([0-9]+),([0-9]+)\.([0-9]+) ([0-9]+) ([0-9]+)$')


def parse_profiles(profile_path: Path) -> list:
    """Parse a Go cover profile into one Profile per source file, sorted by name."""
    try:
        with open(profile_path) as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise SourceNotFoundError(str(profile_path), f"can't read {str(profile_path)!r}: {e}") from e

    mode = ""
    files = {}
    for line_no, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue

        if line.startswith(MODE_PREFIX) or not mode:
            line_mode = line[len(MODE_PREFIX):].strip() if line.startswith(MODE_PREFIX) else ""
            if not line_mode:
                raise ProfileParseError(f"{profile_path}:{line_no}: bad mode line: {line!r}")
            if mode and line_mode != mode:
                raise ProfileParseError(
                    f"{profile_path}:{line_no}: inconsistent mode: {mode!r} then {line_mode!r}")
            mode = line_mode
            continue

        match = PROFILE_LINE_RE.match(line)
        if not match:
            raise ProfileParseError(f"{profile_path}:{line_no}: line {line!r} doesn't match expected format")

        file_name = match.group(1)
        if file_name not in files:
            files[file_name] = Profile(file_name=file_name, mode=mode)
        files[file_name].blocks.append(ProfileBlock(*(int(g) for g in match.groups()[1:])))

    for profile in files.values():
        profile.blocks = merge_blocks(profile, profile_path)

    return [files[name] for name in sorted(files)]


def merge_blocks(profile: Profile, profile_path: Path) -> list:
    """Sort blocks by position and fold repeated ranges into one block.

    Profiles concatenated from several test binaries repeat blocks; set mode
    keeps "hit or not", count and atomic modes add the counts up.
    """
    blocks = sorted(profile.blocks, key=lambda b: (b.start_line, b.start_col, b.end_line, b.end_col))
    merged = []
    for b in blocks:
        if merged and merged[-1].same_range(b):
            last = merged[-1]
            if last.num_stmt != b.num_stmt:
                raise ProfileParseError(
                    f"{profile_path}: {profile.file_name}:{b.start_line}.{b.start_col}: "
                    f"inconsistent NumStmt: changed from {last.num_stmt} to {b.num_stmt}")
            if profile.mode == "set":
                last.count |= b.count
            else:
                last.count += b.count
        else:
            merged.append(ProfileBlock(b.start_line, b.start_col, b.end_line, b.end_col, b.num_stmt, b.count))
    return merged


def profile_boundaries(profile: Profile, src: bytes) -> list:
    """Map the profile's blocks onto byte offsets of src.

    Start boundaries carry the block count and a normalized intensity: a
    log scale against the busiest block, or a flat 0.8 when no block ran
    more than once (set mode renders as cov8).
    """
    max_count = max((b.count for b in profile.blocks), default=0)
    divisor = math.log(max_count) if max_count > 1 else 0.0
    boundaries = []

    def boundary(offset, start, count):
        b = Boundary(offset=offset, start=start, count=count, index=len(boundaries))
        if start and count > 0:
            if max_count <= 1:
                b.norm = 0.8
            else:
                b.norm = math.log(count) / divisor
        boundaries.append(b)

    # same walk as `go tool cover`: line 1 starts counting at column 2
    line, col = 1, 2
    si, bi = 0, 0
    while si < len(src) and bi < len(profile.blocks):
        b = profile.blocks[bi]
        if b.start_line == line and b.start_col == col:
            boundary(si, True, b.count)
        if (b.end_line == line and b.end_col == col) or line > b.end_line:
            boundary(si, False, 0)
            bi += 1
            continue
        if src[si] == ord("\n"):
            line += 1
            col = 0
        col += 1
        si += 1

    boundaries.sort(key=lambda b: (b.offset, b.index))
    return boundaries


def percent_covered(blocks) -> float:
    """Return, as a percentage, the fraction of statements covered by the test run."""
    total = 0
    covered = 0
    for b in blocks:
        total += b.num_stmt
        if b.count > 0:
            covered += b.num_stmt
    if total == 0:
        return 0.0
    return covered / total * 100


def same_source_file(a: str, b: str) -> bool:
    """True when both names refer to the same file.

    Equal paths match, and so does an absolute path against the import-path
    style name the profile uses, as long as the shorter one lines up with a
    whole path component (foo.go never matches barfoo.go). Two absolute
    paths only match when equal.
    """
    a = a.replace(os.sep, "/")
    b = b.replace(os.sep, "/")
    if a == b:
        return True
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if shorter.startswith("/") or os.path.isabs(shorter):
        return False
    return longer.endswith("/" + shorter)


def read_module_path(module_root: Path) -> Optional[str]:
    """Return the module path declared in module_root/go.mod, if any."""
    go_mod = module_root / "go.mod"
    if not go_mod.is_file():
        return None
    with open(go_mod) as f:
        for line in f:
            match = re.match(r'\s*module\s+"?([^\s"]+)"?', line)
            if match:
                return match.group(1)
    return None


def find_file(file_name: str, module_root: Path = Path("."), gopath: Optional[str] = None) -> Path:
    """Find the file behind an import-path style name from the profile."""
    candidates = [Path(file_name)]

    module_path = read_module_path(module_root)
    if module_path and file_name.startswith(module_path + "/"):
        candidates.append(module_root / file_name[len(module_path) + 1:])

    if gopath is None:
        gopath = os.environ.get("GOPATH") or str(Path.home() / "go")
    for entry in gopath.split(os.pathsep):
        if entry:
            candidates.append(Path(entry) / "src" / file_name)

    for candidate in candidates:
        if candidate.is_file():
            return candidate.resolve()

    raise SourceNotFoundError(file_name, f"can't find {file_name!r}")


def read_source(path: Path, file_name: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise SourceNotFoundError(file_name, f"can't read {file_name!r}: {e}") from e


def save_report(report: TarpReport, path: Path):
    """Write the tarp report as JSON."""
    data = {
        "declared": [asdict(d) for d in report.declared],
        "called": sorted(report.called),
    }
    try:
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
    except OSError as e:
        raise OutputWriteError(str(path), f"can't write {str(path)!r}: {e}") from e


def load_report(path: Path) -> TarpReport:
    """Read a tarp report written by save_report."""
    try:
        with open(path) as f:
            data = json.load(f)
        declared = [FuncDecl(**d) for d in data.get("declared", [])]
        called = set(data.get("called", []))
    except (OSError, ValueError, TypeError, AttributeError) as e:
        raise ReportError(f"can't load tarp report {str(path)!r}: {e}") from e
    return TarpReport(declared=declared, called=called)
