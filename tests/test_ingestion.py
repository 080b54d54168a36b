import json

import pytest
from sqlalchemy import func, select

from certprep.core.config import settings
from certprep.core.errors import NotFoundError, PdfExtractionError, UpstreamServiceError, ValidationError
from certprep.models.orm import Question
from certprep.services.diagrams import DiagramService, check_diagram_extension
from certprep.services.ingestion import IngestionService
from certprep.services.pdf import ExtractedText, extract_text

EXTRACTED = [
    {
        "text": "Which service provides object storage?",
        "answers": [{"text": "S3", "isCorrect": True}, {"text": "EBS", "isCorrect": False}],
        "explanation": "S3 is object storage.",
        "tags": ["S3", "Storage", "Durability", "Buckets", "Lifecycle", "Glacier", "Versioning"],
        "isMultipleChoice": False,
    },
    {
        "text": "Pick two compute services.",
        "answers": [{"text": "EC2", "is_correct": True}, {"text": "Lambda", "is_correct": True},
                    {"text": "S3", "is_correct": False}],
        "isMultipleChoice": True,
    },
    {"answers": []},
]


def _fake_pdf(text="page text", pages=3):
    return lambda path: ExtractedText(text=text, page_count=pages)


def test_process_pdf_stores_questions_and_enqueues_diagrams(db, llm, fake_llm):
    fake_llm.replies["LLM1"] = json.dumps(EXTRACTED)
    queued = []

    def enqueue(qid):
        queued.append(qid)
        return f"job-{qid}"

    result = IngestionService(db, llm, extractor=_fake_pdf(), enqueue_diagram=enqueue).process_pdf(
        "/tmp/x.pdf", "saa-practice.pdf"
    )

    assert result.filename == "saa-practice.pdf"
    assert result.pages == 3
    assert result.questions_extracted == 3
    assert len(result.question_ids) == 2
    assert result.skipped == 1
    assert queued == result.question_ids
    assert result.diagram_jobs == [f"job-{qid}" for qid in result.question_ids]

    first = db.get(Question, result.question_ids[0])
    assert first.source_file == "saa-practice.pdf"
    assert len(first.tags) == 5
    second = db.get(Question, result.question_ids[1])
    assert second.is_multiple_choice is True
    assert [a.is_correct for a in second.answers] == [True, True, False]


def test_process_pdf_skips_ungradable_items(db, llm, fake_llm):
    fake_llm.replies["LLM1"] = json.dumps([
        {"text": "No right answer", "answers": [{"text": "A", "isCorrect": False}, {"text": "B", "isCorrect": False}]},
        {"text": "Single option", "answers": [{"text": "A", "isCorrect": True}]},
        EXTRACTED[0],
    ])
    queued = []
    result = IngestionService(db, llm, extractor=_fake_pdf(), enqueue_diagram=queued.append).process_pdf("p", "a.pdf")

    assert result.questions_extracted == 3
    assert result.skipped == 2
    assert len(result.question_ids) == 1
    assert db.scalar(select(func.count(Question.id))) == 1
    assert db.get(Question, result.question_ids[0]).text == EXTRACTED[0]["text"]


def test_process_pdf_respects_disabled_jobs(db, llm, fake_llm, monkeypatch):
    monkeypatch.setattr(settings, "DIAGRAM_JOBS_ENABLED", False)
    fake_llm.replies["LLM1"] = json.dumps(EXTRACTED[:1])
    queued = []
    IngestionService(db, llm, extractor=_fake_pdf(), enqueue_diagram=queued.append).process_pdf("p", "a.pdf")
    assert queued == []


def test_process_pdf_with_failed_extraction_stores_nothing(db, llm, fake_llm):
    fake_llm.replies["LLM1"] = UpstreamServiceError("timeout")
    result = IngestionService(db, llm, extractor=_fake_pdf()).process_pdf("p", "a.pdf")
    assert result.questions_extracted == 0
    assert db.scalar(select(func.count(Question.id))) == 0


def test_extract_text_rejects_non_pdf(tmp_path):
    bogus = tmp_path / "bogus.pdf"
    bogus.write_bytes(b"this is not a pdf")
    with pytest.raises(PdfExtractionError):
        extract_text(bogus)


def test_generate_diagram_writes_drawio(db, llm, fake_llm, make_question, tmp_path):
    q = make_question(text="Multi-AZ RDS failover")
    fake_llm.replies["LLM2"] = 'Sure!\n<mxGraphModel><root><mxCell id="0"/></root></mxGraphModel>\nDone.'
    filename = DiagramService(db, llm, diagram_dir=tmp_path).generate(q.id)

    assert filename.startswith(f"diagram_{q.id}_") and filename.endswith(".drawio")
    content = (tmp_path / filename).read_text(encoding="utf-8")
    assert content.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert '<mxfile host="app.diagrams.net"' in content
    assert '<mxCell id="0"/>' in content
    db.expire_all()
    assert db.get(Question, q.id).diagram_path == filename
    _, _, prompt = fake_llm.calls[-1]
    assert "Correct Answer: Option 0" in prompt


def test_generate_diagram_rejects_invalid_xml(db, llm, fake_llm, make_question, tmp_path):
    q = make_question()
    fake_llm.replies["LLM2"] = "I cannot draw"
    with pytest.raises(UpstreamServiceError):
        DiagramService(db, llm, diagram_dir=tmp_path).generate(q.id)
    assert list(tmp_path.iterdir()) == []
    with pytest.raises(NotFoundError):
        DiagramService(db, llm, diagram_dir=tmp_path).generate(999)


def test_upload_extension_whitelist(db, llm, make_question, tmp_path):
    assert check_diagram_extension("arch.PNG") == ".png"
    with pytest.raises(ValidationError):
        check_diagram_extension("arch.exe")
    q = make_question()
    filename = DiagramService(db, llm, diagram_dir=tmp_path).store_upload(q.id, "arch.svg", b"<svg/>")
    assert filename.endswith(".svg")
    assert (tmp_path / filename).read_bytes() == b"<svg/>"
