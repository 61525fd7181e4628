"""Tests for input mapping resolution and {{ path }} substitution."""

import pytest
from workflow_factory import const, ctx_key, node, var

from autoflow.engine import (
    StepExecutionState,
    StepStatus,
    WorkflowNode,
    WorkflowRun,
    Workspace,
    resolve_inputs,
    substitute_variables,
)


@pytest.fixture
def ws() -> Workspace:
    return Workspace(id="ws-1", name="Repo", working_directory="/tmp/ws-1")


@pytest.fixture
def run() -> WorkflowRun:
    return WorkflowRun(
        id="run_resolver",
        workflow_id="wf",
        workspace_id="ws-1",
        input_values={"repo": "https://example.com/acme/widgets.git", "count": 3, "dry": True},
        steps={
            "split": StepExecutionState(
                step_id="split",
                status=StepStatus.SUCCESS,
                outputs={"strings": ["a", "b"], "meta": {"n": 2}},
            ),
            "cmd": StepExecutionState(
                step_id="cmd",
                status=StepStatus.SUCCESS,
                outputs={"stdout": "hello\n", "exitCode": 0},
            ),
        },
    )


def resolve(mappings: dict, run: WorkflowRun, ws: Workspace) -> dict:
    return resolve_inputs(WorkflowNode.model_validate(node("n", "any", **mappings)), run, ws)


class TestSubstitution:
    def test_single_token_keeps_type(self, run, ws):
        assert substitute_variables("{{ input.count }}", run, ws) == 3
        assert substitute_variables("{{split.strings}}", run, ws) == ["a", "b"]
        assert substitute_variables("{{ workspace.workingDirectory }}", run, ws) == "/tmp/ws-1"

    def test_embedded_tokens_are_stringified(self, run, ws):
        text = "cd {{ workspace.workingDirectory }} && echo {{ input.count }} {{ input.dry }}"
        assert substitute_variables(text, run, ws) == "cd /tmp/ws-1 && echo 3 true"

    def test_embedded_list_and_dict(self, run, ws):
        assert substitute_variables("items: {{ split.strings }}", run, ws) == "items: a,b"
        assert substitute_variables("meta={{ split.meta }}", run, ws) == 'meta={"n": 2}'

    def test_outputs_path_and_shorthand_agree(self, run, ws):
        assert substitute_variables("{{ cmd.outputs.stdout }}", run, ws) == "hello\n"
        assert substitute_variables("{{ cmd.stdout }}", run, ws) == "hello\n"

    def test_workspace_id(self, run, ws):
        assert substitute_variables("{{ workspace.id }}", run, ws) == "ws-1"

    def test_unresolved_single_token_is_none(self, run, ws):
        assert substitute_variables("{{ input.missing }}", run, ws) is None
        assert substitute_variables("{{ nosuchstep.stdout }}", run, ws) is None
        assert substitute_variables("{{ workspace.owner }}", run, ws) is None

    def test_unresolved_embedded_token_is_empty(self, run, ws):
        assert substitute_variables("[{{ input.missing }}]", run, ws) == "[]"

    def test_text_without_tokens_is_unchanged(self, run, ws):
        assert substitute_variables("plain {braces} text", run, ws) == "plain {braces} text"


class TestResolveInputs:
    def test_constant_non_string_passes_through(self, run, ws):
        assert resolve({"timeout": 30, "flags": ["-v"]}, run, ws) == {
            "timeout": 30,
            "flags": ["-v"],
        }

    def test_constant_string_is_templated(self, run, ws):
        resolved = resolve({"url": const("{{ input.repo }}")}, run, ws)
        assert resolved == {"url": "https://example.com/acme/widgets.git"}

    def test_context_mappings(self, run, ws):
        resolved = resolve(
            {"dir": ctx_key("workingDir"), "id": ctx_key("workspaceId"), "x": ctx_key("nope")},
            run,
            ws,
        )
        assert resolved == {"dir": "/tmp/ws-1", "id": "ws-1", "x": None}

    def test_variable_reads_step_output_without_templating(self, run, ws):
        resolved = resolve(
            {"code": var("cmd.exitCode"), "missing": var("cmd.nothing"), "bad": var("nodot")},
            run,
            ws,
        )
        assert resolved == {"code": 0, "missing": None, "bad": None}

    def test_variable_to_unstarted_step_is_none(self, run, ws):
        assert resolve({"x": var("later.value")}, run, ws) == {"x": None}

    def test_variable_reads_first_key_after_step_id(self, run, ws):
        resolved = resolve({"meta": var("split.meta.n"), "tpl": "{{ split.meta.n }}"}, run, ws)

        assert resolved == {"meta": {"n": 2}, "tpl": {"n": 2}}
