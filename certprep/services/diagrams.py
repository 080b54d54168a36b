import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from certprep.core.config import settings
from certprep.core.errors import NotFoundError, UpstreamServiceError, ValidationError
from certprep.models.orm import Question
from certprep.services.llm import LLMService
from certprep.services.questions import QuestionService

logger = logging.getLogger(__name__)

DIAGRAM_PROMPT = """You are an AWS Solutions Architect. Generate a DrawIO XML diagram that illustrates the AWS architecture described in the question.

Use these AWS icon styles:
- EC2: rounded rectangle, orange fill
- S3: bucket shape, green fill
- RDS: cylinder shape, blue fill
- Lambda: square with rounded corners, orange fill
- VPC: large dashed rectangle
- ALB/ELB: circle with arrows

Return ONLY valid DrawIO XML starting with <mxGraphModel>. No explanation."""

_GRAPH_MODEL = re.compile(r"<mxGraphModel[\s\S]*</mxGraphModel>")

MXFILE_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<mxfile host="app.diagrams.net" modified="{modified}" type="device">
  <diagram name="AWS Architecture">
    {graph}
  </diagram>
</mxfile>"""


def check_diagram_extension(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    if ext not in settings.DIAGRAM_EXTENSIONS:
        raise ValidationError(f"Only {', '.join(settings.DIAGRAM_EXTENSIONS)} files are allowed")
    return ext


class DiagramService:
    def __init__(self, db: Session, llm: LLMService, diagram_dir: Optional[Path] = None):
        self.db = db
        self.llm = llm
        self.diagram_dir = Path(diagram_dir or settings.DIAGRAM_DIR)

    def generate(self, question_id: int) -> str:
        """Ask LLM2 for a DrawIO graph, store it as a .drawio file and attach it to the question."""
        question = self.db.scalar(
            select(Question).where(Question.id == question_id).options(selectinload(Question.answers))
        )
        if question is None:
            raise NotFoundError("Question not found")
        correct = next((a.text for a in question.answers if a.is_correct), None)
        user_prompt = (
            "Create an architecture diagram for this AWS exam question:\n\n"
            f"Question: {question.text}\n"
            f"Correct Answer: {correct or 'Not specified'}\n\n"
            "Show the key AWS services and their relationships."
        )
        response = self.llm.call("LLM2", DIAGRAM_PROMPT, user_prompt)
        match = _GRAPH_MODEL.search(response)
        if not match:
            raise UpstreamServiceError("Invalid DrawIO XML response")

        self.diagram_dir.mkdir(parents=True, exist_ok=True)
        filename = f"diagram_{question_id}_{int(time.time() * 1000)}.drawio"
        content = MXFILE_TEMPLATE.format(
            modified=datetime.now(timezone.utc).isoformat(), graph=match.group(0)
        )
        (self.diagram_dir / filename).write_text(content, encoding="utf-8")
        QuestionService(self.db).set_diagram(question_id, filename)
        logger.info("Diagram generated: %s", filename)
        return filename

    def store_upload(self, question_id: int, original_name: str, data: bytes) -> str:
        ext = check_diagram_extension(original_name)
        if self.db.get(Question, question_id) is None:
            raise NotFoundError("Question not found")
        self.diagram_dir.mkdir(parents=True, exist_ok=True)
        filename = f"diagram_{question_id}_{int(time.time() * 1000)}{ext}"
        (self.diagram_dir / filename).write_bytes(data)
        QuestionService(self.db).set_diagram(question_id, filename)
        logger.info("Diagram uploaded for question %s: %s", question_id, filename)
        return filename
