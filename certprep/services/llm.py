"""
LLM gateway.

Each role (LLM1 extraction/tagging/classification, LLM2 diagrams, LLM3 mentor)
has its own row in ``llm_configs`` naming a provider, model and API key.
Provider SDK calls go through a ``Completer`` so tests can swap in a fake.
"""
import json
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

import anthropic
import openai
from sqlalchemy import select
from sqlalchemy.orm import Session

from certprep.core.config import settings
from certprep.core.errors import LLMNotConfiguredError, NotFoundError, UpstreamServiceError, ValidationError
from certprep.models.orm import Category, LLMConfig, Question

logger = logging.getLogger(__name__)

ROLES = ("LLM1", "LLM2", "LLM3")
PROVIDERS = ("openai", "anthropic", "openrouter")
MASK = "••••••••"

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "openrouter": "openai/gpt-4o",
}

Completer = Callable[[LLMConfig, str, str], str]

EXTRACTION_PROMPT = """You are an AWS certification exam expert. Extract questions and answers from the provided text.

For each question, return a JSON array with this structure:
[
  {
    "text": "The full question text",
    "answers": [
      { "text": "Answer A text", "isCorrect": false },
      { "text": "Answer B text", "isCorrect": true }
    ],
    "explanation": "Why the correct answer is correct",
    "tags": ["EC2", "Auto-Scaling", "High-Availability"],
    "isMultipleChoice": false
  }
]

Return ONLY valid JSON, no markdown or explanation."""

TAGGING_PROMPT = """You are an AWS certification expert. Identify AWS services and topics mentioned in exam questions.

Return a JSON array of AWS service/topic names. Examples:
- "S3", "EC2", "Lambda", "VPC", "IAM", "RDS", "DynamoDB"
- "Auto Scaling", "CloudFront", "Route 53", "ELB"
- "SQS", "SNS", "Kinesis", "API Gateway"

Return ONLY a valid JSON array, no explanation. Example: ["S3", "CloudFront", "IAM"]"""

CLASSIFY_PROMPT = """You are an AWS Solutions Architect exam expert. Classify exam questions into the correct domain.

Available domains:
{categories}

Return ONLY the domain ID number that best matches the question. No explanation.

Domain Classification Guide:
- Security: IAM, encryption, access control, compliance, VPC security, KMS, Secrets Manager, WAF, Shield
- Resilient: High availability, fault tolerance, disaster recovery, backups, multi-AZ, Route 53, Auto Scaling
- High-Performing: Caching, scaling, performance optimization, low latency, CloudFront, ElastiCache, read replicas
- Cost-Optimized: Reserved instances, spot instances, right-sizing, storage tiers, Savings Plans, lifecycle policies"""

MENTOR_PROMPT = """You are a friendly AWS certification tutor helping a student understand exam questions.
Be encouraging, explain concepts clearly, and provide real-world examples."""

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_INTEGER = re.compile(r"\d+")


def mask_key(api_key: Optional[str]) -> Optional[str]:
    if not api_key:
        return None
    return MASK + api_key[-4:]


def is_masked(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(MASK)


def complete_with_provider(config: LLMConfig, system_prompt: str, user_prompt: str) -> str:
    """Send one system+user exchange to the configured provider and return the reply text."""
    provider = config.provider
    model = config.model or DEFAULT_MODELS.get(provider)
    max_tokens = config.max_tokens or 4096
    temperature = config.temperature if config.temperature is not None else 0.7
    try:
        if provider in ("openai", "openrouter"):
            kwargs = {"api_key": config.api_key, "timeout": settings.LLM_TIMEOUT_SECONDS}
            if provider == "openrouter":
                kwargs["base_url"] = settings.OPENROUTER_BASE_URL
            client = openai.OpenAI(**kwargs)
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return response.choices[0].message.content or ""
        if provider == "anthropic":
            client = anthropic.Anthropic(api_key=config.api_key, timeout=settings.LLM_TIMEOUT_SECONDS)
            response = client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            return response.content[0].text
    except (openai.OpenAIError, anthropic.AnthropicError) as e:
        raise UpstreamServiceError(f"{config.role} call to {provider} failed: {e}") from e
    if provider == "google":
        raise UpstreamServiceError("Google AI is not supported. Please use OpenAI, Anthropic, or OpenRouter.")
    raise UpstreamServiceError(f"Unsupported provider: {provider}")


class LLMService:
    def __init__(self, db: Session, completer: Optional[Completer] = None):
        self.db = db
        self.completer = completer or complete_with_provider

    def _config(self, role: str) -> Optional[LLMConfig]:
        return self.db.scalar(select(LLMConfig).where(LLMConfig.role == role))

    def call(self, role: str, system_prompt: str, user_prompt: str) -> str:
        config = self._config(role)
        if config is None or not config.api_key:
            raise LLMNotConfiguredError(f"{role} not configured. Please set up in Settings.")
        # a stored system prompt overrides the built-in one
        return self.completer(config, config.system_prompt or system_prompt, user_prompt)

    # --- role tasks ---
    def extract_questions(self, text: str) -> List[Dict]:
        user_prompt = f"Extract all exam questions from this text:\n\n{text[:settings.PDF_TEXT_LIMIT]}"
        try:
            response = self.call("LLM1", EXTRACTION_PROMPT, user_prompt)
            match = _JSON_ARRAY.search(response)
            parsed = json.loads(match.group(0) if match else response)
        except (UpstreamServiceError, ValueError) as e:
            logger.error("LLM extraction error: %s", e)
            return []
        if not isinstance(parsed, list):
            logger.warning("LLM extraction returned %s, expected a list", type(parsed).__name__)
            return []
        return [q for q in parsed if isinstance(q, dict)]

    def tag_question(self, question: Question) -> List[str]:
        lines = [f"Question: {question.text}"]
        if question.answers:
            lines.append("Answers: " + ", ".join(a.text for a in question.answers))
        lines.append("\nExtract the AWS services/topics mentioned:")
        try:
            response = self.call("LLM1", TAGGING_PROMPT, "\n".join(lines))
            match = _JSON_ARRAY.search(response)
            if not match:
                return []
            tags = json.loads(match.group(0))
        except (UpstreamServiceError, ValueError) as e:
            logger.error("Tagging LLM error: %s", e)
            return []
        if not isinstance(tags, list):
            return []
        return [t.strip() for t in tags if isinstance(t, str) and t.strip()]

    def classify_question(self, question: Question, categories: Sequence[Category]) -> Optional[int]:
        listing = "\n".join(f"{c.id}: {c.name}" for c in categories)
        user_prompt = f"Question: {question.text}\n\n"
        if question.tags:
            user_prompt += f"Tags: {', '.join(t.name for t in question.tags)}\n\n"
        user_prompt += "Return only the domain ID number:"
        try:
            response = self.call("LLM1", CLASSIFY_PROMPT.format(categories=listing), user_prompt)
        except UpstreamServiceError as e:
            logger.error("Classification LLM error: %s", e)
            return None
        known = {c.id for c in categories}
        for token in _INTEGER.findall(response):
            if int(token) in known:
                return int(token)
        logger.warning("Classification reply named no known category: %r", response[:80])
        return None

    def chat(self, question_context: str, message: str) -> str:
        context = f"Current exam question:\n{question_context}\n\nStudent's message: {message}"
        return self.call("LLM3", MENTOR_PROMPT, context)

    def test_connection(self, role: str) -> Dict:
        if role not in ROLES:
            raise ValidationError(f"Unknown LLM role: {role}")
        try:
            reply = self.call(role, "You are a helpful assistant.", 'Say "Connection successful!" in exactly those words.')
        except UpstreamServiceError as e:
            return {"success": False, "error": e.message}
        return {"success": True, "response": reply}

    # --- settings ---
    def status(self, role: str) -> Dict:
        config = self._config(role)
        return {
            "configured": bool(config and config.api_key),
            "provider": config.provider if config else None,
            "model": config.model if config else None,
        }

    def list_configs(self) -> List[LLMConfig]:
        return list(self.db.scalars(select(LLMConfig).order_by(LLMConfig.role)).all())

    def update_config(self, role: str, provider: Optional[str] = None, model: Optional[str] = None,
                      api_key: Optional[str] = None, system_prompt: Optional[str] = None,
                      max_tokens: Optional[int] = None, temperature: Optional[float] = None) -> LLMConfig:
        config = self._config(role)
        if config is None:
            raise NotFoundError(f"Unknown LLM role: {role}")
        if provider is not None:
            if provider not in PROVIDERS:
                raise ValidationError(f"Unsupported provider: {provider}. Use one of: {', '.join(PROVIDERS)}")
            config.provider = provider
        if model is not None:
            config.model = model
        # the UI echoes the masked key back; only a real value replaces the stored one
        if api_key is not None and not is_masked(api_key):
            config.api_key = api_key or None
        if system_prompt is not None:
            config.system_prompt = system_prompt
        if max_tokens is not None:
            config.max_tokens = max_tokens
        if temperature is not None:
            config.temperature = temperature
        self.db.commit()
        self.db.refresh(config)
        logger.info("Updated %s config (provider=%s, model=%s)", role, config.provider, config.model)
        return config
