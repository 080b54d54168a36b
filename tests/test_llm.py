import pytest
from sqlalchemy import select

from certprep.core.errors import LLMNotConfiguredError, NotFoundError, UpstreamServiceError, ValidationError
from certprep.models.orm import LLMConfig
from certprep.services.llm import LLMService, complete_with_provider, is_masked, mask_key


def test_mask_key():
    assert mask_key("sk-abcdef123456") == "••••••••3456"
    assert mask_key(None) is None
    assert is_masked(mask_key("sk-abcdef123456"))
    assert not is_masked("sk-real")


def test_call_without_api_key_is_not_configured(db, fake_llm):
    with pytest.raises(LLMNotConfiguredError):
        LLMService(db, completer=fake_llm).call("LLM1", "sys", "user")
    assert fake_llm.calls == []


def test_stored_system_prompt_wins(llm, fake_llm, db):
    fake_llm.replies["LLM3"] = "hi"
    assert llm.call("LLM3", "built-in", "hello") == "hi"
    stored = db.scalar(select(LLMConfig.system_prompt).where(LLMConfig.role == "LLM3"))
    assert fake_llm.calls[-1] == ("LLM3", stored, "hello")


def test_extract_questions_reads_first_json_array(llm, fake_llm):
    fake_llm.replies["LLM1"] = 'Here you go:\n[{"text": "Q1", "answers": []}, "junk"]\nThanks'
    assert llm.extract_questions("pdf text") == [{"text": "Q1", "answers": []}]


def test_extract_questions_truncates_input(llm, fake_llm):
    fake_llm.replies["LLM1"] = "[]"
    llm.extract_questions("x" * 60000)
    _, _, user_prompt = fake_llm.calls[-1]
    _, pdf_text = user_prompt.split("\n\n", 1)
    assert pdf_text == "x" * 50000


@pytest.mark.parametrize("reply", ["not json at all", "[{broken", UpstreamServiceError("boom")])
def test_extract_questions_failure_is_empty(llm, fake_llm, reply):
    fake_llm.replies["LLM1"] = reply
    assert llm.extract_questions("text") == []


def test_tag_question(llm, fake_llm, make_question):
    fake_llm.replies["LLM1"] = '["S3", "", 5, " CloudFront "]'
    assert llm.tag_question(make_question()) == ["S3", "CloudFront"]
    fake_llm.replies["LLM1"] = "no tags"
    assert llm.tag_question(make_question()) == []


def test_classify_question_picks_known_category(llm, fake_llm, make_question, categories):
    known = categories[2].id
    fake_llm.replies["LLM1"] = f"Domain 999 is wrong, it is {known}"
    assert llm.classify_question(make_question(), categories) == known
    fake_llm.replies["LLM1"] = "I am not sure"
    assert llm.classify_question(make_question(), categories) is None


def test_chat_propagates_not_configured(db, fake_llm):
    with pytest.raises(LLMNotConfiguredError):
        LLMService(db, completer=fake_llm).chat("context", "why?")


def test_test_connection(llm, fake_llm, db):
    fake_llm.replies["LLM2"] = "Connection successful!"
    assert llm.test_connection("LLM2") == {"success": True, "response": "Connection successful!"}
    fake_llm.replies["LLM2"] = UpstreamServiceError("401 bad key")
    assert llm.test_connection("LLM2") == {"success": False, "error": "401 bad key"}
    with pytest.raises(ValidationError):
        llm.test_connection("LLM9")


def test_update_config_ignores_masked_key(llm, db):
    llm.update_config("LLM1", api_key="sk-new-secret-9999", model="gpt-4o-mini")
    config = llm.update_config("LLM1", api_key=mask_key("sk-new-secret-9999"), temperature=0.2)
    assert config.api_key == "sk-new-secret-9999"
    assert config.model == "gpt-4o-mini"
    assert config.temperature == 0.2
    with pytest.raises(ValidationError):
        llm.update_config("LLM1", provider="google")
    with pytest.raises(NotFoundError):
        llm.update_config("LLM7", model="x")


def test_status(db, llm):
    assert llm.status("LLM3") == {"configured": True, "provider": "openai", "model": "gpt-4o-mini"}


@pytest.mark.parametrize("provider", ["google", "cohere"])
def test_unsupported_providers(provider):
    config = LLMConfig(role="LLM1", provider=provider, model="m", api_key="k", max_tokens=10, temperature=0.1)
    with pytest.raises(UpstreamServiceError):
        complete_with_provider(config, "sys", "user")
