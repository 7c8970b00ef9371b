import re

import pytest

from tarp_common import Boundary, FuncDecl, Profile, ProfileBlock, TarpReport
from tarp_html import (
    TARP_CLASS_NAME, RenderedFile, DeclarationIndex,
    annotate_source, color_for, rgb, css_colors, coverage_level,
    render_document, render_file, write_document,
)

SRC = b"func f() {\n  x := 1\n}\n"


def body_boundaries(count, norm=1.0):
    # '{' on line 1 up to the final newline
    return [Boundary(offset=9, start=True, count=count, norm=norm),
            Boundary(offset=21, start=False, count=0)]


def test_uncalled_function_is_tarp():
    decls = [FuncDecl(name="f", source_file="f.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(5), decls, set())
    assert out == 'func f() <span class="tarp-uncovered" title="5">{\n  x := 1\n}</span>\n'


def test_directly_called_function_is_graded():
    decls = [FuncDecl(name="f", source_file="f.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(5, norm=0.5), decls, {"f"})
    # floor(0.5 * 9) + 1
    assert '<span class="cov5" title="5">' in out
    assert TARP_CLASS_NAME not in out


@pytest.mark.parametrize("called", [set(), {"f"}])
def test_unexecuted_block_is_always_cov0(called):
    decls = [FuncDecl(name="f", source_file="f.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(0, norm=0.0), decls, called)
    assert '<span class="cov0" title="0">' in out
    assert TARP_CLASS_NAME not in out


def test_high_intensity_still_tarp_when_not_called():
    decls = [FuncDecl(name="f", source_file="f.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(1000, norm=1.0), decls, {"g"})
    assert f'<span class="{TARP_CLASS_NAME}" title="1000">' in out
    assert "cov10" not in out


def test_no_declaration_means_graded():
    out = annotate_source(SRC, body_boundaries(5), [], set())
    assert '<span class="cov10" title="5">' in out


def test_closing_line_match_on_span_start():
    src = b"func f() {\n  x := 1 }\n"
    boundaries = [Boundary(offset=13, start=True, count=2, norm=1.0),
                  Boundary(offset=19, start=False, count=0)]
    decls = [FuncDecl(name="f", source_file="f.go", closing_line=2)]
    out = annotate_source(src, boundaries, decls, set())
    assert f'<span class="{TARP_CLASS_NAME}" title="2">x := 1</span>' in out


def test_declarations_of_other_files_are_ignored():
    decls = [FuncDecl(name="f", source_file="/src/barfoo.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(5), decls, set(), filename="foo.go")
    assert TARP_CLASS_NAME not in out

    decls = [FuncDecl(name="f", source_file="/src/example.com/m/foo.go", closing_line=3)]
    out = annotate_source(SRC, body_boundaries(5), decls, set(), filename="example.com/m/foo.go")
    assert TARP_CLASS_NAME in out


def test_declaration_index_picks_enclosing_function():
    decls = [
        FuncDecl(name="b", source_file="a.go", closing_line=20, line=12),
        FuncDecl(name="a", source_file="a.go", closing_line=10, line=3),
    ]
    index = DeclarationIndex(decls)
    assert index.enclosing(3).name == "a"
    assert index.enclosing(10).name == "a"
    assert index.enclosing(15).name == "b"
    assert index.enclosing(11) is None
    assert index.enclosing(21) is None


def test_escaping():
    out = annotate_source(b"a<b>&\tc\n\"'", [])
    assert out == "a&lt;b&gt;&amp;    c\n\"'"


def test_no_raw_markup_outside_tags():
    src = b"if a < b && c > d {\n\treturn <-ch\n}\n"
    boundaries = [Boundary(offset=0, start=True, count=1, norm=0.8),
                  Boundary(offset=len(src) - 1, start=False, count=0)]
    out = annotate_source(src, boundaries)
    text = re.sub(r"</?span[^>]*>", "", out)
    assert "<" not in text and ">" not in text
    assert "&" not in re.sub(r"&(lt|gt|amp);", "", text)


def test_span_text_matches_boundary_range():
    src = b"package m\n\nfunc g() {\n\ty := a & b\n}\n"
    start = src.index(b"y")
    end = src.index(b"\n", start)
    boundaries = [Boundary(offset=start, start=True, count=3, norm=1.0),
                  Boundary(offset=end, start=False, count=0)]
    out = annotate_source(src, boundaries)
    assert out.count("<span") == out.count("</span>") == 1
    inner = re.search(r'<span class="cov10" title="3">(.*?)</span>', out).group(1)
    assert inner == "y := a &amp; b"


def test_span_closed_at_end_of_source():
    src = b"x := 1"
    boundaries = [Boundary(offset=0, start=True, count=1, norm=0.8),
                  Boundary(offset=len(src), start=False, count=0)]
    assert annotate_source(src, boundaries) == '<span class="cov8" title="1">x := 1</span>'


def test_coincident_boundaries_keep_list_order():
    src = b"ab"
    boundaries = [Boundary(offset=0, start=True, count=1, norm=0.0),
                  Boundary(offset=1, start=False, count=0),
                  Boundary(offset=1, start=True, count=0),
                  Boundary(offset=2, start=False, count=0)]
    out = annotate_source(src, boundaries)
    assert out == '<span class="cov1" title="1">a</span><span class="cov0" title="0">b</span>'


def test_utf8_passes_through():
    src = "s := \"héllo\"\n".encode()
    assert annotate_source(src, []) == "s := \"héllo\"\n"


def test_invalid_utf8_bytes_are_kept(tmp_path):
    out = annotate_source(b"x\xff\n", [])
    assert out.encode("utf-8", "surrogateescape") == b"x\xff\n"

    path = tmp_path / "coverage.html"
    write_document(f"<pre>{out}</pre>", path)
    assert b"<pre>x\xff\n</pre>" in path.read_bytes()


@pytest.mark.parametrize("count, norm, level", [
    (0, 0.9, 0),
    (1, 0.0, 1),
    (4, 0.5, 5),
    (8, 0.8, 8),
    (9, 1.0, 10),
])
def test_coverage_level(count, norm, level):
    assert coverage_level(count, norm) == level


def test_colors():
    assert color_for(0) == (192, 0, 0)
    assert color_for(1) == (128, 128, 128)
    assert color_for(10) == (20, 236, 155)
    for n in range(1, 10):
        r, g, b = color_for(n)
        r2, g2, b2 = color_for(n + 1)
        assert r2 < r and g2 > g and b2 > b
    assert rgb(0) == "rgb(192, 0, 0)"


def test_css_colors():
    css = css_colors()
    for i in range(11):
        assert f".cov{i} {{ color: {rgb(i)} }}" in css
    assert ".tarp-uncovered { color: rgb(252, 242, 106) }" in css
    assert css == css_colors()


def test_render_file():
    profile = Profile(file_name="example.com/m/f.go", mode="count",
                      blocks=[ProfileBlock(1, 10, 3, 2, 1, 5), ProfileBlock(4, 1, 4, 2, 1, 0)])
    src = SRC + b"}\n"
    report = TarpReport(declared=[FuncDecl(name="f", source_file="/tmp/src/example.com/m/f.go",
                                           closing_line=3, line=1)])
    rendered = render_file(profile, src, "/tmp/src/example.com/m/f.go", report)
    assert rendered.name == "example.com/m/f.go"
    assert rendered.coverage == 50.0
    assert f'<span class="{TARP_CLASS_NAME}" title="5">' in rendered.body


def test_document_structure():
    files = [RenderedFile(name="a.go", body="A", coverage=50.0),
             RenderedFile(name="b<x>.go", body="B", coverage=100.0 / 3)]
    doc = render_document(files, set_mode=False)

    assert doc.count("<pre ") == 2
    assert doc.count("<option ") == 2
    assert '<option value="file0">a.go (50.0%)</option>' in doc
    assert '<option value="file1">b&lt;x&gt;.go (33.3%)</option>' in doc
    assert '<pre class="file" id="file0">A</pre>' in doc
    assert '<pre class="file" id="file1" style="display: none">B</pre>' in doc
    assert doc.count('style="display: none"') == 1
    assert '<span class="cov10">high coverage</span>' in doc
    assert '<span class="tarp-uncovered">indirectly covered</span>' in doc
    assert ".tarp-uncovered { color: rgb(252, 242, 106) }" in doc
    assert "window.scrollTo(0, 0)" in doc
    assert "src=" not in doc and "href=" not in doc


def test_document_set_mode_legend():
    doc = render_document([RenderedFile(name="a.go", body="", coverage=0.0)], set_mode=True)
    assert '<span class="cov0">not covered</span>' in doc
    assert '<span class="cov8">covered</span>' in doc
    assert "high coverage" not in doc
    assert '<span class="tarp-uncovered">indirectly covered</span>' in doc
