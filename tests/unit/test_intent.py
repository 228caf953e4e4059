from process_copilot.guided.intent import IntentDetector, has_process_keywords
from process_copilot.types import Document

from fakes import ScriptedCompletionProvider, classification_reply


def _seed(store) -> None:
    store.insert(Document(title="Customer Onboarding Process", content="...", tenant_id="t1"))
    store.insert(Document(title="Refund Handling", content="...", tenant_id="t1"))
    store.insert(Document(title="Onboarding flow", content="...", tenant_id="t1", content_type="flow"))


def test_keyword_screen_covers_english_and_french() -> None:
    assert has_process_keywords("Can you walk me through refunds?")
    assert has_process_keywords("Comment faire un remboursement ?")
    assert not has_process_keywords("What is our refund window?")


def test_messages_without_process_vocabulary_skip_the_provider(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider()

    result = IntentDetector(store, provider).detect("What is our refund window?", "t1")

    assert not result.is_process_request
    assert provider.calls == []


def test_named_title_is_matched_by_substring(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider(classification=classification_reply("refund handling", 0.75))

    result = IntentDetector(store, provider).detect("Guide me through refunds", "t1")

    assert result.is_process_request
    assert result.document is not None and result.document.title == "Refund Handling"


def test_flow_documents_are_not_candidates(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider(classification=classification_reply("Refund", 0.9))

    IntentDetector(store, provider).detect("help me with a refund", "t1")

    system_prompt = provider.calls[0][1]
    assert "- Customer Onboarding Process" in system_prompt
    assert "Onboarding flow" not in system_prompt


def test_unknown_title_falls_back_to_first_document_only_when_very_confident(store) -> None:
    _seed(store)
    confident = ScriptedCompletionProvider(classification=classification_reply("Payroll", 0.85))
    unsure = ScriptedCompletionProvider(classification=classification_reply("Payroll", 0.75))

    hit = IntentDetector(store, confident).detect("help me with payroll", "t1")
    miss = IntentDetector(store, unsure).detect("help me with payroll", "t1")

    assert hit.document is not None and hit.document.title == "Customer Onboarding Process"
    assert not miss.is_process_request


def test_low_confidence_is_not_a_request(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider(classification=classification_reply("Refund Handling", 0.7))

    assert not IntentDetector(store, provider).detect("help me", "t1").is_process_request


def test_results_are_cached_per_message_and_tenant(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider(classification=classification_reply("Refund Handling", 0.9))
    detector = IntentDetector(store, provider)

    detector.detect("Help me with refunds", "t1")
    detector.detect("  help me with REFUNDS ", "t1")
    detector.detect("Help me with refunds", "t2")

    assert len(provider.calls) == 1


def test_failed_classification_is_negative_and_not_cached(store) -> None:
    _seed(store)
    provider = ScriptedCompletionProvider(failing=("classification",))
    detector = IntentDetector(store, provider)

    assert not detector.detect("help me with refunds", "t1").is_process_request
    detector.detect("help me with refunds", "t1")

    assert len(provider.calls) == 2


def test_tenant_without_documents_has_no_intent(store) -> None:
    provider = ScriptedCompletionProvider(classification=classification_reply("Refund Handling", 0.9))

    assert not IntentDetector(store, provider).detect("help me", "t1").is_process_request
    assert provider.calls == []
