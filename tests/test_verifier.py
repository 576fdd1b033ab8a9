from buildloop.verifier import StaticVerifier, bracket_problem, change_summary


def test_change_summary_single_and_many():
    assert change_summary([]) == ""
    assert change_summary(["src/App.tsx"]) == "**Changed:** src/App.tsx\n"
    assert change_summary(["b.ts", "a.ts", "b.ts"]) == "**Changed (2 files):**\n  - a.ts\n  - b.ts\n"


def test_bracket_balance():
    assert bracket_problem("function f() { return [1, 2]; }") is None
    assert bracket_problem("const s = '}'; // )\n/* ] */ f();") is None
    assert bracket_problem("function f() { return 1;") == "unclosed '{'"
    assert bracket_problem("f());") == "unexpected ')'"


def test_verify_reports_pass_and_fail(tmp_path):
    (tmp_path / "ok.ts").write_text("export const a = () => ({ b: [1] });\n")
    (tmp_path / "bad.json").write_text("{ not json")
    (tmp_path / "empty.css").write_text("   \n")

    summary = StaticVerifier(tmp_path).verify(["ok.ts", "bad.json", "empty.css", "gone.js"])

    assert summary.startswith("**Verification:** 3 of 4 file(s) failed")
    assert "  ✓ ok.ts" in summary
    assert "  ✗ bad.json (invalid JSON" in summary
    assert "  ✗ empty.css (empty)" in summary
    assert "  ✗ gone.js (missing)" in summary


def test_verify_all_pass(tmp_path):
    (tmp_path / "package.json").write_text('{"name": "app"}')
    assert StaticVerifier(tmp_path).verify(["package.json"]).startswith("**Verification:** all 1 file(s) passed")


def test_verify_nothing(tmp_path):
    assert StaticVerifier(tmp_path).verify([]) == "**Verification:** nothing to check."


def test_binary_files_only_need_content(tmp_path):
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")
    assert StaticVerifier(tmp_path).check("logo.png").ok


def test_css_urls_are_not_line_comments(tmp_path):
    (tmp_path / "a.css").write_text("body {\n  background: url(https://x.io/a.png);\n}\n")
    assert StaticVerifier(tmp_path).check("a.css").ok


def test_jsx_apostrophes_in_text_are_not_strings(tmp_path):
    (tmp_path / "Login.tsx").write_text(
        "export default function Login() {\n"
        "  return (\n"
        "    <div className='login'>\n"
        "      <p>Don't have an account? {link}</p>\n"
        "      <p>It's free.</p>\n"
        "    </div>\n"
        "  );\n"
        "}\n"
    )
    assert StaticVerifier(tmp_path).check("Login.tsx").ok


def test_unterminated_quote_stops_at_end_of_line():
    assert bracket_problem("const a = 'oops\nfunction f() { return 1; }") is None
    assert bracket_problem("const t = `multi\n) line`;") is None


def test_broken_css_and_jsx_still_fail():
    assert bracket_problem("body { color: red;\n", ".css") == "unclosed '{'"
    assert bracket_problem("const A = () => (<p>Don't</p>;", ".jsx") == "unclosed '('"
