from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, status
from uuid import UUID
import os
import logging

from ..dependencies import current_admin, get_question_bank, get_question_source, to_http
from ..exceptions import ExamError
from ..schemas.question_schema import QuestionData, QuestionImport, QuestionRead, GeneratePayload, GeneratedReply, ImportResult, ActiveToggle
from ..services.excel_service import parse_excel
from ..services.question_service import QuestionBank
from ..services.question_source import QuestionSource, parse_generated_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questionbank", tags=["Question Bank"], dependencies=[Depends(current_admin)])


@router.post("/questions", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
async def add_question(payload: QuestionData, bank: QuestionBank = Depends(get_question_bank)):
    try:
        return await bank.add_question(payload.model_dump(mode="json"), source="manual")
    except ExamError as e:
        raise to_http(e)


# Upload Excel & Preview
@router.post("/upload")
async def upload_excel(file: UploadFile = File(...)):
    #  check file extension and return parsed preview
    file_extension = os.path.splitext(file.filename)[1]  # file extension
    allowed_extension = {".xlsx", ".xlsm", ".xls", ".xlsb", ".ods"}

    # Check if the extension is allowed
    if file_extension not in allowed_extension:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file extension. Only {allowed_extension} are allowed."
        )
    try:
        preview = parse_excel(file.file)
    except KeyError as e:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Column not found :{str(e)}. Please check the column in uploaded file. "
                "file must contain these columns [prompt, type, choices(json), answer, difficulty, category]. "
                "Columns are case sensitive, so remove spaces or unusual characters from columns."
            ),
        )

    return {"total": len(preview), "preview": preview}


# Confirm Import
@router.post("/confirm-import", response_model=ImportResult)
async def confirm_import(payload: QuestionImport, bank: QuestionBank = Depends(get_question_bank)):
    #  save previewed questions; invalid rows and duplicate prompts are reported, not fatal
    raws = [q.model_dump(mode="json") for q in payload.questions]
    saved, skipped = await bank.add_many(raws, source="spreadsheet", index_base=payload.index_base)
    return {"saved": len(saved), "skipped": skipped}


@router.post("/generate", response_model=ImportResult)
async def generate_questions(
    payload: GeneratePayload,
    bank: QuestionBank = Depends(get_question_bank),
    source: QuestionSource = Depends(get_question_source),
):
    try:
        raws = await source.generate(payload.topic, payload.count)
    except ExamError as e:
        raise to_http(e)
    except Exception as e:
        logger.exception("Question generation failed for topic %r: %s", payload.topic, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Question generator unavailable")

    if isinstance(raws, str):
        # LLM-backed sources may hand back the raw reply text
        try:
            raws = parse_generated_payload(raws)
        except ExamError as e:
            raise to_http(e)

    saved, skipped = await bank.add_many(raws, source="generated")
    return {"saved": len(saved), "skipped": skipped}


@router.post("/import-reply", response_model=ImportResult)
async def import_generated_reply(payload: GeneratedReply, bank: QuestionBank = Depends(get_question_bank)):
    """Store questions from a generator reply produced outside the service (e.g. a chat UI)."""
    try:
        raws = parse_generated_payload(payload.content)
    except ExamError as e:
        raise to_http(e)

    saved, skipped = await bank.add_many(raws, source="generated")
    return {"saved": len(saved), "skipped": skipped}


@router.get("/list")
async def list_questions(
    search: str = "",
    difficulty: str = "",
    active_only: bool = False,
    page: int = 1,
    per_page: int = 20,
    bank: QuestionBank = Depends(get_question_bank),
):
    # list and filter questions with pagination
    items, total = await bank.list_questions(search, difficulty, active_only, page, per_page)
    return {"items": [QuestionRead.model_validate(q) for q in items], "total": total}


@router.post("/{question_id}/active", response_model=QuestionRead)
async def set_question_active(question_id: UUID, payload: ActiveToggle, bank: QuestionBank = Depends(get_question_bank)):
    question = await bank.set_active(question_id, payload.is_active)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found.")
    return question


@router.put("/{question_id}", response_model=QuestionRead)
async def update_question(question_id: UUID, payload: QuestionData, bank: QuestionBank = Depends(get_question_bank)):
    # edits the bank entry only; running sessions keep the snapshot they were given
    try:
        question = await bank.update_question(question_id, payload.model_dump(mode="json"))
    except ExamError as e:
        raise to_http(e)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found.")
    return question


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(question_id: UUID, bank: QuestionBank = Depends(get_question_bank)):
    if not await bank.delete(question_id):
        raise HTTPException(status_code=404, detail="Question not found.")
