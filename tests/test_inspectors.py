"""Tests for the inspector pipeline and individual inspectors."""

from __future__ import annotations

import pytest
from conftest import DOCKERFILE_WITHOUT_FROM, VALID_DOCKERFILE

from dockerizer.core.config import InspectorSettings
from dockerizer.core.errors import InspectorRejectedError
from dockerizer.core.inspectors import (
    ContentInspector,
    Inspector,
    InspectorPipeline,
    RepetitionInspector,
    SecurityInspector,
    SyntaxInspector,
    build_default_pipeline,
    is_dockerfile_path,
    validate_dockerfile,
)

# =============================================================================
# Security Inspector
# =============================================================================


class TestSecurityInspector:
    """Catastrophic shell substrings and privileged containers."""

    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "rm -rf /*",
            "rm -rf ~",
            "dd if=/dev/zero of=/dev/sda",
            "mkfs.ext4 /dev/sda1",
            ":(){ :|:& };:",
            "cat x > /dev/sda",
            "chmod -R 777 /",
            "docker run --privileged alpine",
        ],
    )
    def test_dangerous_shell_rejected(self, command):
        reason = SecurityInspector().inspect("shell", {"command": command})
        assert reason is not None
        assert "blocked dangerous command" in reason

    def test_benign_shell_approved(self):
        assert SecurityInspector().inspect("shell", {"command": "docker ps -a"}) is None

    def test_privileged_docker_run_rejected(self):
        reason = SecurityInspector().inspect("docker_run", {"image": "x", "privileged": True})
        assert reason == "privileged containers are not allowed"

    def test_unprivileged_docker_run_approved(self):
        assert SecurityInspector().inspect("docker_run", {"image": "x", "privileged": False}) is None

    def test_other_tools_ignored(self):
        """File content mentioning rm -rf / is not a shell command."""
        reason = SecurityInspector().inspect(
            "file_write", {"path": "notes.md", "content": "never run rm -rf /"}
        )
        assert reason is None


# =============================================================================
# Syntax Inspector
# =============================================================================


class TestDockerfileGrammar:
    """Tests for validate_dockerfile."""

    def test_valid_dockerfile(self):
        assert validate_dockerfile(VALID_DOCKERFILE) == []

    def test_missing_from(self):
        issues = validate_dockerfile(DOCKERFILE_WITHOUT_FROM)
        messages = [str(issue) for issue in issues]
        assert "Dockerfile must have a FROM instruction" in messages

    def test_first_instruction_must_be_from_or_arg(self):
        issues = validate_dockerfile("RUN echo hi\nFROM alpine\n")
        assert [str(i) for i in issues] == ["line 1: first instruction must be FROM or ARG, got RUN"]

    def test_arg_before_from_allowed(self):
        assert validate_dockerfile("ARG PY=3.12\nFROM python:${PY}\n") == []

    def test_unknown_instruction_names_line(self):
        content = "FROM alpine\n\n# comment\nINSTALL curl\n"
        issues = validate_dockerfile(content)
        assert len(issues) == 1
        assert issues[0].line == 4
        assert str(issues[0]) == "line 4: invalid instruction: INSTALL"

    def test_lowercase_instructions_accepted(self):
        assert validate_dockerfile("from alpine\nrun echo hi\n") == []

    def test_maintainer_accepted(self):
        assert validate_dockerfile("FROM alpine\nMAINTAINER ops@example.com\n") == []

    def test_parser_directive_and_comments_skipped(self):
        content = "# syntax=docker/dockerfile:1\n# escape=\\\n\nFROM alpine\n"
        assert validate_dockerfile(content) == []

    def test_continuations_joined(self):
        """Continuation lines are not parsed as instructions."""
        content = (
            "FROM debian:bookworm\n"
            "RUN apt-get update \\\n"
            "    && apt-get install -y \\\n"
            "    # pinned tools\n"
            "       curl \\\n"
            "       git\n"
            "CMD [\"bash\"]\n"
        )
        assert validate_dockerfile(content) == []

    def test_heredoc_body_skipped(self):
        content = (
            "# syntax=docker/dockerfile:1\n"
            "FROM alpine\n"
            "RUN <<EOF\n"
            "apk add curl\n"
            "echo done\n"
            "EOF\n"
            "COPY <<-'CONF' /etc/app.conf\n"
            "\tlisten 8080\n"
            "\tCONF\n"
            "CMD [\"sh\"]\n"
        )
        assert validate_dockerfile(content) == []

    def test_unterminated_heredoc(self):
        issues = validate_dockerfile("FROM alpine\nRUN <<EOF\napk add curl\n")
        assert any("unterminated heredoc" in str(i) for i in issues)

    def test_empty_content(self):
        assert [str(i) for i in validate_dockerfile("")] == ["Dockerfile must have a FROM instruction"]

    def test_lone_continuation_before_blank_line(self):
        """A bare backslash joined onto a blank line is not an instruction."""
        assert validate_dockerfile("FROM alpine\n\\\n\nCMD [\"sh\"]\n") == []

    @pytest.mark.parametrize(
        "run_line",
        ["RUN echo $((1<<4))", "RUN x=$(( a << b )) && echo $x", "RUN echo a<<b"],
    )
    def test_left_shift_is_not_a_heredoc(self, run_line):
        assert validate_dockerfile(f"FROM alpine\n{run_line}\nCMD [\"sh\"]\n") == []


class TestSyntaxInspector:
    """The inspector applies the grammar to Dockerfile writes only."""

    @pytest.mark.parametrize(
        "path",
        ["Dockerfile", "./Dockerfile", "services/web/Dockerfile", "Dockerfile.dev", "api.Dockerfile"],
    )
    def test_dockerfile_paths_detected(self, path):
        assert is_dockerfile_path(path)

    @pytest.mark.parametrize("path", ["docker-compose.yml", "Dockerfiles/readme.md", ".dockerignore"])
    def test_other_paths_not_dockerfiles(self, path):
        assert not is_dockerfile_path(path)

    def test_rejects_dockerfile_without_from(self):
        reason = SyntaxInspector().inspect(
            "file_write", {"path": "Dockerfile", "content": DOCKERFILE_WITHOUT_FROM}
        )
        assert reason is not None
        assert "FROM" in reason

    def test_ignores_non_dockerfile_writes(self):
        reason = SyntaxInspector().inspect(
            "file_write", {"path": "docker-compose.yml", "content": "services: {}\n"}
        )
        assert reason is None

    def test_ignores_other_tools(self):
        assert SyntaxInspector().inspect("docker_build", {"dockerfile": "Dockerfile"}) is None


# =============================================================================
# Repetition Inspector
# =============================================================================


class TestRepetitionInspector:
    """Bounded identical-call loop guard."""

    def test_fourth_identical_call_rejected_at_threshold_three(self):
        inspector = RepetitionInspector(max_repeats=3)
        args = {"command": "docker ps"}

        assert inspector.inspect("shell", args) is None
        assert inspector.inspect("shell", args) is None
        assert inspector.inspect("shell", args) is None
        reason = inspector.inspect("shell", args)

        assert reason == "detected repetitive pattern (same call made 3 times)"

    def test_rejected_calls_not_recorded(self):
        inspector = RepetitionInspector(max_repeats=1)
        assert inspector.inspect("shell", {"command": "docker ps"}) is None
        for _ in range(5):
            reason = inspector.inspect("shell", {"command": "docker ps"})
            assert reason == "detected repetitive pattern (same call made 1 times)"

    def test_different_arguments_are_distinct(self):
        inspector = RepetitionInspector(max_repeats=1)
        assert inspector.inspect("docker_logs", {"container": "a"}) is None
        assert inspector.inspect("docker_logs", {"container": "b"}) is None
        assert inspector.inspect("docker_stop", {"container": "a"}) is None

    def test_argument_order_irrelevant(self):
        inspector = RepetitionInspector(max_repeats=1)
        assert inspector.inspect("file_write", {"path": "a", "content": "x"}) is None
        assert inspector.inspect("file_write", {"content": "x", "path": "a"}) is not None

    def test_history_is_bounded(self):
        """Old signatures fall out of the ring buffer."""
        inspector = RepetitionInspector(max_repeats=1, history_size=2)
        assert inspector.inspect("shell", {"command": "docker ps"}) is None
        assert inspector.inspect("shell", {"command": "docker images"}) is None
        assert inspector.inspect("shell", {"command": "docker info"}) is None
        assert inspector.inspect("shell", {"command": "docker ps"}) is None

    def test_instances_do_not_share_history(self):
        first = RepetitionInspector(max_repeats=1)
        second = RepetitionInspector(max_repeats=1)
        assert first.inspect("shell", {"command": "docker ps"}) is None
        assert second.inspect("shell", {"command": "docker ps"}) is None

    def test_reset(self):
        inspector = RepetitionInspector(max_repeats=1)
        inspector.inspect("shell", {"command": "docker ps"})
        inspector.reset()
        assert inspector.inspect("shell", {"command": "docker ps"}) is None

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            RepetitionInspector(max_repeats=0)


# =============================================================================
# Content Inspector
# =============================================================================


class TestContentInspector:
    """Placeholder text and keyword typos."""

    @pytest.mark.parametrize(
        "content",
        [
            "ENV API_KEY=YOUR_API_KEY",
            "# TODO: pick a base image",
            "# FIXME: pin versions",
            "image: <your-registry>/app",
            "FROM {{ base_image }}",
        ],
    )
    def test_placeholders_rejected(self, content):
        reason = ContentInspector().inspect("file_write", {"path": "Dockerfile", "content": content})
        assert reason is not None
        assert "placeholder" in reason

    def test_placeholders_checked_in_any_file(self):
        reason = ContentInspector().inspect(
            "file_write", {"path": ".env.example", "content": "DB_PASSWORD=YOUR_PASSWORD\n"}
        )
        assert reason is not None

    @pytest.mark.parametrize(
        "typo,correct",
        [("FORMO", "FROM"), ("coppy", "COPY"), ("EXPOES", "EXPOSE"), ("WORKIDR", "WORKDIR")],
    )
    def test_dockerfile_typos_rejected(self, typo, correct):
        content = f"FROM alpine\n{typo} something\n"
        reason = ContentInspector().inspect("file_write", {"path": "Dockerfile", "content": content})
        assert reason == f"possible typo: {typo.upper()} should be {correct}"

    def test_typo_needs_word_boundary(self):
        content = "FROM alpine\nLABEL region=FORMOSA\n"
        assert ContentInspector().inspect("file_write", {"path": "Dockerfile", "content": content}) is None

    def test_typos_ignored_outside_dockerfiles(self):
        reason = ContentInspector().inspect(
            "file_write", {"path": "README.md", "content": "FORMO is not a word\n"}
        )
        assert reason is None

    def test_clean_dockerfile_approved(self):
        reason = ContentInspector().inspect(
            "file_write", {"path": "Dockerfile", "content": VALID_DOCKERFILE}
        )
        assert reason is None


# =============================================================================
# Pipeline
# =============================================================================


class _Recording(Inspector):
    def __init__(self, name: str, reason: str | None = None):
        self.name = name
        self.reason = reason
        self.seen: list[str] = []

    def inspect(self, tool_name, arguments):
        self.seen.append(tool_name)
        return self.reason


class _Crashing(Inspector):
    name = "crashing"

    def inspect(self, tool_name, arguments):
        raise IndexError("list index out of range")


class TestInspectorPipeline:
    """Ordering, short-circuit and composition."""

    def test_first_rejection_short_circuits(self):
        first = _Recording("first")
        second = _Recording("second", reason="nope")
        third = _Recording("third", reason="also nope")
        pipeline = InspectorPipeline([first, second, third])

        with pytest.raises(InspectorRejectedError) as exc_info:
            pipeline.inspect_all("shell", {"command": "docker ps"})

        assert exc_info.value.inspector == "second"
        assert exc_info.value.reason == "nope"
        assert str(exc_info.value) == "inspector second rejected tool call: nope"
        assert first.seen == ["shell"]
        assert third.seen == []

    def test_crashing_inspector_refuses_the_call(self):
        after = _Recording("after")
        pipeline = InspectorPipeline([_Crashing(), after])

        with pytest.raises(InspectorRejectedError) as exc_info:
            pipeline.inspect_all("file_write", {"path": "Dockerfile", "content": ""})

        assert exc_info.value.inspector == "crashing"
        assert "IndexError" in exc_info.value.reason
        assert after.seen == []

    def test_all_approve(self):
        pipeline = InspectorPipeline([_Recording("a"), _Recording("b")])
        pipeline.inspect_all("shell", {})

    def test_add_and_remove(self):
        pipeline = InspectorPipeline()
        pipeline.add(_Recording("a", reason="blocked"))
        pipeline.add(_Recording("b"))
        assert pipeline.names() == ["a", "b"]

        pipeline.remove("a")
        assert pipeline.names() == ["b"]
        pipeline.inspect_all("shell", {})

    def test_remove_unknown(self):
        with pytest.raises(KeyError):
            InspectorPipeline().remove("missing")

    def test_duplicate_name_rejected(self):
        pipeline = InspectorPipeline([_Recording("a")])
        with pytest.raises(ValueError):
            pipeline.add(_Recording("a"))

    def test_default_pipeline(self):
        assert build_default_pipeline().names() == ["security", "syntax"]

    def test_default_pipeline_with_opt_ins(self):
        settings = InspectorSettings(repetition=True, repetition_threshold=2, content=True)
        pipeline = build_default_pipeline(settings)
        assert pipeline.names() == ["security", "syntax", "repetition", "content"]
