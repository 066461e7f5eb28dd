"""Unit tests for tool-invocation recovery."""

import pytest

from turnstile.recovery import (
    COMMAND_PATTERNS,
    DEFAULT_COMMIT_MESSAGE,
    MalformedInvocationBlock,
    RecoverySource,
    ToolInvocation,
    command_from_reasoning,
    match_command,
    parse_explicit_block,
    recover,
)

DEFAULT_COMMIT = f'git commit -m "{DEFAULT_COMMIT_MESSAGE}"'


def _block(name: str | None, **params: str) -> str:
    invoke = f'<invoke name="{name}">' if name else "<invoke>"
    body = "".join(
        f'<parameter name="{k}">{v}</parameter>' for k, v in params.items()
    )
    return f"<function_calls>{invoke}{body}</invoke></function_calls>"


# ---------------------------------------------------------------------------
# Explicit blocks
# ---------------------------------------------------------------------------

class TestExplicitBlock:
    def test_name_and_parameters(self):
        text = "Let me look.\n" + _block("Read", file_path="/tmp/a.txt", limit="20")
        invocation = parse_explicit_block(text)

        assert invocation == ToolInvocation(
            name="Read",
            arguments={"file_path": "/tmp/a.txt", "limit": 20},
            source=RecoverySource.EXPLICIT,
        )

    def test_json_parameter_values_are_decoded(self):
        invocation = parse_explicit_block(
            _block("Edit", options='{"replace_all": true}', paths='["a", "b"]')
        )
        assert invocation.arguments == {
            "options": {"replace_all": True}, "paths": ["a", "b"],
        }

    def test_multiline_parameter(self):
        invocation = parse_explicit_block(_block("Write", content="line 1\nline 2"))
        assert invocation.arguments["content"] == "line 1\nline 2"

    def test_no_parameters(self):
        assert parse_explicit_block(_block("LS")).arguments == {}

    def test_no_block(self):
        assert parse_explicit_block("just text") is None

    def test_block_without_name_raises(self):
        with pytest.raises(MalformedInvocationBlock):
            parse_explicit_block(_block(None, command="ls"))


# ---------------------------------------------------------------------------
# Pattern table
# ---------------------------------------------------------------------------

class TestPatternTable:
    @pytest.mark.parametrize("text, command", [
        ("I'll run `ls -la` to list files.", "ls -la"),
        ('Please run "npm test" now.', "npm test"),
        ("Let me execute 'pwd'.", "pwd"),
        ("I will run the command `cat README.md`", "cat README.md"),
        ("To check the branch, run `git branch --show-current`", "git branch --show-current"),
    ])
    def test_quoted_commands(self, text, command):
        assert match_command(text) == command

    def test_git_status(self):
        assert match_command("You need to run git status for that.") == "git status"

    def test_git_add_defaults_to_all_changes(self):
        assert match_command("I'll run git add to stage changes") == "git add ."

    @pytest.mark.parametrize("text, command", [
        ("Now git add src/app.py tests/test_app.py", "git add src/app.py tests/test_app.py"),
        ("Stage it with git add README.md.", "git add README.md"),
        ("Use git add -A then commit", "git add -A"),
    ])
    def test_git_add_paths(self, text, command):
        assert match_command(text) == command

    def test_git_commit_defaults_message(self):
        assert match_command("Next, I'll use git commit to save the work") == DEFAULT_COMMIT

    def test_git_commit_keeps_message(self):
        text = "I'll do git commit -m 'Fix parser' next"
        assert match_command(text) == 'git commit -m "Fix parser"'

    def test_git_commit_all_flag(self):
        text = 'Running git commit -am "Update docs"'
        assert match_command(text) == 'git commit -am "Update docs"'

    @pytest.mark.parametrize("text, command", [
        ("Finally git push to the remote", "git push"),
        ("Then git push origin main.", "git push origin main"),
        ("Publish with git push -u origin feature/x", "git push -u origin feature/x"),
    ])
    def test_git_push(self, text, command):
        assert match_command(text) == command

    def test_bare_command(self):
        assert match_command("I will run pytest -q\nthen report") == "pytest -q"

    def test_quoted_beats_git_detectors(self):
        text = "Run `git log --oneline` and then git status"
        assert match_command(text) == "git log --oneline"

    def test_table_order_not_specificity(self):
        # status is listed before add, so it wins even though add is longer
        assert match_command("git add . and then git status") == "git status"

    def test_table_rows_are_ordered(self):
        names = [p.name for p in COMMAND_PATTERNS]
        assert names == [
            "quoted command", "git status", "git add", "git commit",
            "git push", "bare command",
        ]

    def test_plain_text_matches_nothing(self):
        text = "Python is a programming language. It is popular for data work."
        assert match_command(text) is None


# ---------------------------------------------------------------------------
# Reasoning fallback
# ---------------------------------------------------------------------------

class TestReasoningFallback:
    def test_scans_think_section_only(self):
        assert command_from_reasoning("<think>maybe git push?</think>Done.") == "git push"
        assert command_from_reasoning("<think>nothing here</think> git push") is None

    def test_defaults_are_applied(self):
        assert command_from_reasoning("<think>do a git add</think>") == "git add ."
        assert command_from_reasoning("<think>then git commit</think>") == DEFAULT_COMMIT

    def test_checks_in_fixed_order(self):
        text = "<think>git push after git status</think>"
        assert command_from_reasoning(text) == "git status"

    def test_without_think_section(self):
        assert command_from_reasoning("git status") is None


# ---------------------------------------------------------------------------
# recover()
# ---------------------------------------------------------------------------

class TestRecover:
    def test_explicit_block_wins_over_patterns(self):
        text = "I'll run `git status` first.\n" + _block("Read", file_path="a.py")
        invocation = recover(text, "llama3")

        assert invocation.name == "Read"
        assert invocation.source is RecoverySource.EXPLICIT

    def test_malformed_block_is_ordinary_content(self):
        text = "I'll run git status.\n" + _block(None, command="ls")
        assert recover(text, "llama3") is None

    def test_git_add_heuristic(self):
        invocation = recover("I'll run git add to stage changes", "llama3")
        assert invocation == ToolInvocation(
            name="Bash", arguments={"command": "git add ."},
            source=RecoverySource.PATTERN,
        )

    def test_git_commit_heuristic(self):
        invocation = recover("Everything looks good, time for git commit.", "llama3")
        assert invocation.arguments == {"command": DEFAULT_COMMIT}

    def test_reasoning_source(self):
        invocation = recover("<think>user wants gitXgit push</think>", "llama3")
        assert invocation.arguments == {"command": "git push"}
        assert invocation.source is RecoverySource.REASONING

    def test_no_false_positive(self):
        text = (
            "A linked list stores elements in nodes. Each node points "
            "to the next one, so insertion at the head is constant time."
        )
        assert recover(text, "llama3") is None

    def test_discussed_command_is_still_recovered(self):
        # Known limitation: suggestions are indistinguishable from intent.
        invocation = recover("You could run git status to check.", "llama3")
        assert invocation.arguments == {"command": "git status"}

    def test_empty_text(self):
        assert recover("", "llama3") is None
