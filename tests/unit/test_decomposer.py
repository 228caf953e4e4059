import json

from process_copilot.guided.decomposer import (
    ParseErr,
    ParseOk,
    ProcessDecomposer,
    parse_process_definition,
    skeleton_definition,
)

from fakes import ONBOARDING_STEPS, ScriptedCompletionProvider


def test_parse_strips_fences_and_chatter_and_assigns_ids() -> None:
    raw = "Sure, here it is:\n```json\n" + json.dumps(ONBOARDING_STEPS) + "\n```\nGood luck!"

    result = parse_process_definition(raw)

    assert isinstance(result, ParseOk)
    definition = result.definition
    assert definition.title == "Customer Onboarding Process"
    assert definition.estimated_duration == "2 hours"
    assert [step.id for step in definition.steps] == ["step_1", "kickoff", "step_3"]
    assert definition.steps[0].checkpoints == ["Contract signed", "Billing contact set"]
    assert definition.steps[0].tools == ["CRM"]
    assert definition.steps[2].tips == "Use the customer's billing email as the owner."


def test_parse_reports_unusable_replies() -> None:
    assert isinstance(parse_process_definition("I cannot help with that."), ParseErr)
    assert isinstance(parse_process_definition("{not json}"), ParseErr)
    assert isinstance(parse_process_definition('{"title": "x", "steps": []}'), ParseErr)
    assert isinstance(
        parse_process_definition('{"title": "x", "steps": [{"title": "only title"}]}'), ParseErr
    )


def test_skeleton_is_titled_from_first_line() -> None:
    content = "<h1>" + "Vendor onboarding and due diligence for regulated suppliers" + "</h1><p>Body.</p>"

    definition = skeleton_definition(content)

    assert definition.title == "Vendor onboarding and due diligence for regulated suppliers"[:50]
    assert len(definition.title) == 50
    assert [step.title for step in definition.steps] == [
        "Step 1 - Preparation",
        "Step 2 - Execution",
        "Step 3 - Verification",
    ]
    assert skeleton_definition("").title == "Guided process"


def test_decomposer_falls_back_on_bad_reply() -> None:
    provider = ScriptedCompletionProvider(decomposition="Here are some thoughts, no JSON.")

    definition = ProcessDecomposer(provider).decompose("Expense claims\n\nSubmit receipts monthly.")

    assert definition.title == "Expense claims"
    assert definition.description == "Automatically extracted process"
    assert len(definition.steps) == 3


def test_decomposer_falls_back_on_provider_failure() -> None:
    provider = ScriptedCompletionProvider(failing=("decomposition",))

    definition = ProcessDecomposer(provider).decompose("Expense claims")

    assert definition.steps[0].title == "Step 1 - Preparation"
    assert provider.kinds() == ["decomposition"]
