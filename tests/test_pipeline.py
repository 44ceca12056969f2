"""
Tests for the step pipeline and the teardown workflow.
"""

import pytest

from devstation.core.engine.actions import command
from devstation.core.engine.guards import PreconditionMissing
from devstation.core.engine.pipeline import (
    Pipeline,
    PipelineReport,
    StepOutcome,
    StepResult,
    TeardownWorkflow,
)
from devstation.core.models.action import FailureKind
from devstation.core.models.step import ExecutionMode, Stage, Step
from devstation.core.services.validation import EMAIL_RULE


def _commands(*names: str):
    def body(ctx):
        for name in names:
            yield command([name])
    return body


def _shell_argv(mocks) -> list[list[str]]:
    return [c.argv for c in mocks["shell"].call_log]


# ── Ordering and progress ────────────────────────────────────────────


class TestPipelineOrder:
    def test_actions_in_declaration_order(self, make_ctx, mocks):
        stages = [
            Stage("alpha", (Step("one", _commands("a1", "a2")), Step("two", _commands("a3")))),
            Stage("beta", (Step("three", _commands("b1")),)),
        ]
        report = Pipeline(make_ctx()).run(stages)

        assert _shell_argv(mocks) == [["a1"], ["a2"], ["a3"], ["b1"]]
        assert [r.outcome for r in report.results] == [StepOutcome.RAN] * 3
        assert report.executor_calls == 4

    def test_progress_labels(self, make_ctx):
        ctx = make_ctx()
        stages = [Stage("alpha", ()), Stage("beta", ()), Stage("gamma", ())]
        Pipeline(ctx).run(stages)
        labels = [m for m in ctx.recorder.messages() if "—" in m]
        assert labels == ["1/3 — alpha", "2/3 — beta", "3/3 — gamma"]

    def test_prompts_happen_between_actions(self, make_ctx, mocks):
        ctx = make_ctx(answers=["ada@example.com"])
        seen_before_prompt: list[int] = []

        def body(ctx):
            yield command(["first"])
            seen_before_prompt.append(mocks["shell"].call_count)
            email = ctx.validator.prompt("Email", EMAIL_RULE)
            yield command(["second", email])

        Pipeline(ctx).run([Stage("s", (Step("x", body),))])

        assert seen_before_prompt == [1]
        assert _shell_argv(mocks) == [["first"], ["second", "ada@example.com"]]


# ── Idempotency ──────────────────────────────────────────────────────


class TestPipelineGuards:
    def test_satisfied_step_makes_no_calls(self, make_ctx, mocks):
        ctx = make_ctx()
        reported: list[str] = []
        step = Step(
            "brew", _commands("brew"),
            guard=lambda c: True,
            on_satisfied=lambda c: reported.append("hook"),
        )

        report = Pipeline(ctx).run([Stage("s", (step,))])

        assert ctx.executor.calls == 0
        assert report.outcome_of("brew") is StepOutcome.SATISFIED
        assert reported == ["hook"]
        assert "brew: already satisfied" in ctx.recorder.messages()

    def test_body_not_started_when_satisfied(self, make_ctx):
        started: list[bool] = []

        def body(ctx):
            started.append(True)
            yield command(["x"])

        Pipeline(make_ctx()).run([Stage("s", (Step("x", body, guard=lambda c: True),))])
        assert started == []


# ── Failure handling ─────────────────────────────────────────────────


class TestPipelineFailures:
    def test_fatal_failure_aborts(self, make_ctx, mocks):
        mocks["shell"].fail_matching("boom", error="it broke")
        ctx = make_ctx()
        stages = [
            Stage("one", (Step("bad", _commands("boom", "never")),)),
            Stage("two", (Step("later", _commands("later")),)),
        ]

        with pytest.raises(SystemExit) as excinfo:
            Pipeline(ctx).run(stages)

        assert excinfo.value.code == 1
        assert _shell_argv(mocks) == [["boom"]]
        errors = ctx.recorder.messages("ERROR")
        assert "bad failed: it broke" in errors
        assert errors[-1].startswith("Run failed: bad failed")
        assert "2/2 — two" not in ctx.recorder.messages()

    def test_non_fatal_failure_continues(self, make_ctx, mocks):
        mocks["shell"].fail_matching("flaky")
        ctx = make_ctx()
        stages = [Stage("s", (
            Step("optional", _commands("flaky", "skipped"), fatal=False, remediation="Do it by hand."),
            Step("next", _commands("next")),
        ))]

        report = Pipeline(ctx).run(stages)

        assert _shell_argv(mocks) == [["flaky"], ["next"]]
        assert report.outcome_of("optional") is StepOutcome.FAILED
        assert report.outcome_of("next") is StepOutcome.RAN
        assert report.failed == 1
        assert "Do it by hand." in ctx.recorder.messages("WARN")
        assert ctx.recorder.messages("ERROR") == []

    def test_network_failure_in_fatal_step_continues(self, make_ctx, mocks):
        mocks["shell"].fail_matching("fetch", error="Network error: offline", kind=FailureKind.NETWORK)
        ctx = make_ctx()
        stages = [Stage("s", (
            Step("installer", _commands("fetch", "install"), remediation="Install it by hand."),
            Step("next", _commands("next")),
        ))]

        report = Pipeline(ctx).run(stages)

        assert _shell_argv(mocks) == [["fetch"], ["next"]]
        assert report.outcome_of("installer") is StepOutcome.FAILED
        assert report.outcome_of("next") is StepOutcome.RAN
        assert "Install it by hand." in ctx.recorder.messages("WARN")
        assert ctx.recorder.messages("ERROR") == []

    def test_precondition_receipt_is_always_fatal(self, make_ctx, mocks):
        mocks["shell"].fail_matching("pyenv", error="Program not found: pyenv", kind=FailureKind.PRECONDITION)
        ctx = make_ctx()
        step = Step("python", _commands("pyenv"), fatal=False)

        with pytest.raises(SystemExit) as excinfo:
            Pipeline(ctx).run([Stage("s", (step,))])
        assert excinfo.value.code == 1

    def test_precondition_exception_is_fatal(self, make_ctx):
        def body(ctx):
            raise PreconditionMissing("hdiutil not found on PATH")
            yield  # pragma: no cover

        ctx = make_ctx()
        with pytest.raises(SystemExit) as excinfo:
            Pipeline(ctx).run([Stage("s", (Step("apps", body, fatal=False),))])
        assert excinfo.value.code == 1
        assert any("missing prerequisite" in m for m in ctx.recorder.messages("ERROR"))

    def test_validation_exhaustion_is_fatal(self, make_ctx, mocks):
        def body(ctx):
            email = ctx.validator.prompt("Email", EMAIL_RULE)
            yield command(["git", "config", "user.email", email])

        ctx = make_ctx(answers=["not-an-email"] * 3)
        with pytest.raises(SystemExit) as excinfo:
            Pipeline(ctx).run([Stage("s", (Step("identity", body),))])

        assert excinfo.value.code == 1
        assert mocks["shell"].call_count == 0

    def test_generator_closed_on_failure(self, make_ctx, mocks):
        mocks["shell"].fail_matching("first")
        closed: list[bool] = []

        def body(ctx):
            try:
                yield command(["first"])
                yield command(["second"])
            finally:
                closed.append(True)

        Pipeline(make_ctx()).run([Stage("s", (Step("x", body, fatal=False),))])
        assert closed == [True]

    def test_every_failure_recorded_before_abort(self, make_ctx, mocks, config):
        mocks["shell"].fail_matching("boom", error="it broke")
        ctx = make_ctx()
        with pytest.raises(SystemExit):
            Pipeline(ctx).run([Stage("s", (Step("bad", _commands("boom")),))])
        ctx.recorder.close()

        lines = config.log_path("setup").read_text(encoding="utf-8").splitlines()
        warn_at = next(i for i, line in enumerate(lines) if "[WARN] boom failed" in line)
        abort_at = next(i for i, line in enumerate(lines) if "Run failed" in line)
        assert warn_at < abort_at


# ── Report ───────────────────────────────────────────────────────────


class TestPipelineReport:
    def test_summary_and_dict(self):
        report = PipelineReport(run_type="setup", mode=ExecutionMode.SIMULATED, results=[
            StepResult("s", "a", StepOutcome.RAN, actions=2),
            StepResult("s", "b", StepOutcome.SATISFIED),
            StepResult("s", "c", StepOutcome.SATISFIED),
        ])
        assert report.summary == "1 ran, 2 satisfied"
        d = report.to_dict()
        assert d["mode"] == "simulated"
        assert d["results"][0] == {"stage": "s", "step": "a", "outcome": "ran", "actions": 2, "error": None}

    def test_empty(self):
        assert PipelineReport().summary == "nothing to do"
        assert PipelineReport().outcome_of("missing") is None


# ── Teardown workflow ────────────────────────────────────────────────


def _categories():
    return [
        Stage("applications", (Step("remove-app", _commands("rm-app"), fatal=False),),
              "Remove desktop applications?"),
        Stage("identity", (Step("remove-key", _commands("rm-key"), fatal=False),),
              "Remove the SSH key pair?"),
    ]


class TestTeardownWorkflow:
    def test_force_never_reads_input(self, make_ctx, mocks):
        ctx = make_ctx(run_type="teardown")

        report = TeardownWorkflow(ctx, force=True).run(_categories())

        assert ctx.inputs.reads == 0
        assert _shell_argv(mocks) == [["rm-app"], ["rm-key"]]
        auto = [m for m in ctx.recorder.messages() if m.startswith("Auto-confirmed (force)")]
        assert len(auto) == 3
        assert report.count(StepOutcome.RAN) == 2

    def test_overall_decline_cancels(self, make_ctx, mocks):
        ctx = make_ctx(answers=["n"], run_type="teardown")

        with pytest.raises(SystemExit) as excinfo:
            TeardownWorkflow(ctx).run(_categories())

        assert excinfo.value.code == 1
        assert "Teardown canceled." in ctx.recorder.messages("WARN")
        assert mocks["shell"].call_count == 0

    def test_default_answer_is_no(self, make_ctx):
        ctx = make_ctx(answers=[""], run_type="teardown")
        with pytest.raises(SystemExit):
            TeardownWorkflow(ctx).run(_categories())

    def test_declined_category_is_skipped(self, make_ctx, mocks):
        ctx = make_ctx(answers=["y", "n", "y"], run_type="teardown")

        report = TeardownWorkflow(ctx).run(_categories())

        assert _shell_argv(mocks) == [["rm-key"]]
        assert report.outcome_of("remove-app") is StepOutcome.DECLINED
        assert report.outcome_of("remove-key") is StepOutcome.RAN
        assert ctx.inputs.prompts[1] == "Remove desktop applications?"

    def test_absent_items_are_success(self, make_ctx, mocks):
        ctx = make_ctx(run_type="teardown")
        stages = [Stage("identity", (Step("remove-key", _commands("rm"), guard=lambda c: True),))]

        report = TeardownWorkflow(ctx, force=True).run(stages)

        assert report.outcome_of("remove-key") is StepOutcome.ABSENT
        assert "remove-key: already absent" in ctx.recorder.messages("INFO")
        assert mocks["shell"].call_count == 0
