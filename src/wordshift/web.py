from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import ReaderSettings
from .dictionary import DictionarySource, JsonDictionarySource
from .document import Document
from .library import DocumentLibrary
from .pagination import FontMetrics, LayoutMetrics
from .pipeline import IngestionError, ProcessingMode, ingest_text
from .session import ReadingSession, SessionRegistry
from .store import DocumentStore, JsonDirectoryStore
from .tokens import Token
from .translation import (
    TranslationBackend,
    TranslationBackendError,
    TranslationService,
    create_backend,
)
from .vocabulary import JsonVocabularyStore, VocabularyList, VocabularyStore, format_entries

__all__ = ["WebConfig", "create_app"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebConfig:
    settings: ReaderSettings = field(default_factory=ReaderSettings)
    store: DocumentStore | None = None
    dictionary_source: DictionarySource | None = None
    backend: TranslationBackend | None = None
    vocabulary_store: VocabularyStore | None = None


def _token_payload(document: Document, token: Token) -> dict[str, object]:
    payload: dict[str, object] = {
        "index": token.index,
        "kind": token.kind.value,
        "value": token.value,
    }
    entry = document.translation_for(token)
    if entry is not None:
        payload["translation"] = entry.translation
        payload["pos"] = entry.part_of_speech
    return payload


def _document_summary(document: Document) -> dict[str, object]:
    return {
        "id": document.id,
        "title": document.title,
        "source_language": document.source_language,
        "target_language": document.target_language,
        "word_count": document.word_count,
        "unique_word_count": document.unique_word_count,
        "pending_words": len(document.pending_keys()),
        "created_at": document.created_at.isoformat(),
        "last_opened_at": document.last_opened_at.isoformat(),
        "last_read_token_index": document.last_read_token_index,
        "font_size_px": document.font_size_px,
        "display_mode": document.display_mode.value,
    }


def _session_payload(session: ReadingSession) -> dict[str, object]:
    state = session.state
    payload: dict[str, object] = {
        "document_id": session.document.id,
        "mode": session.mode.value,
        "anchor": state.current_token_index,
        "pending_flush": state.pending_flush_scheduled,
        "current_page": session.current_page,
        "total_pages": session.paginator.total_pages,
    }
    if session.highlight is not None:
        payload["highlight"] = [session.highlight.start, session.highlight.end]
    return payload


def _positive_number(payload: dict[str, object], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise HTTPException(status_code=400, detail=f"{key} must be a positive number.")
    return float(value)


def _layout_from_payload(payload: dict[str, object], document: Document) -> LayoutMetrics:
    height = _positive_number(payload, "viewport_height")
    width = _positive_number(payload, "viewport_width")
    font_size = (
        _positive_number(payload, "font_size") if "font_size" in payload else float(document.font_size_px)
    )
    line_height = _positive_number(payload, "line_height") if "line_height" in payload else None
    return LayoutMetrics(
        viewport_height_px=height,
        viewport_width_px=width,
        font=FontMetrics(font_size_px=font_size, line_height_px=line_height),
    )


def _int_field(payload: dict[str, object], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer.")
    return value


def _optional_str(payload: dict[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{key} must be a string.")
    return value


def create_app(config: WebConfig) -> FastAPI:
    settings = config.settings
    store = config.store if config.store is not None else JsonDirectoryStore(settings.store_root)
    source = (
        config.dictionary_source
        if config.dictionary_source is not None
        else JsonDictionarySource(settings.dictionary_dir)
    )
    backend = config.backend if config.backend is not None else create_backend(settings)
    library = DocumentLibrary(store)
    registry = SessionRegistry()
    translator = TranslationService(backend)
    vocabulary = VocabularyList(
        config.vocabulary_store
        if config.vocabulary_store is not None
        else JsonVocabularyStore(settings.vocabulary_path)
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.close()

    app = FastAPI(title="wordshift", lifespan=lifespan)
    app.state.config = config
    app.state.library = library
    app.state.sessions = registry
    app.state.translator = translator
    app.state.vocabulary = vocabulary

    async def _require_document(doc_id: str) -> Document:
        session = registry.get(doc_id)
        if session is not None:
            return session.document
        document = await library.load(doc_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return document

    def _require_session(doc_id: str) -> ReadingSession:
        session = registry.get(doc_id)
        if session is None:
            raise HTTPException(status_code=404, detail="No open session for this document")
        return session

    @app.get("/api/documents")
    async def api_documents(sort: str = Query("recent")) -> JSONResponse:
        entries = await library.list_documents(sort)
        return JSONResponse({"documents": [info.as_payload() for info in entries]})

    @app.post("/api/documents")
    async def api_create_document(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        text = payload.get("text")
        if not isinstance(text, str):
            raise HTTPException(status_code=400, detail="text is required.")
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            title = "Untitled"
        target = payload.get("target_language", settings.target_language)
        if not isinstance(target, str) or not target:
            raise HTTPException(status_code=400, detail="target_language must be a string.")
        source_language = payload.get("source_language")
        if source_language is not None and not isinstance(source_language, str):
            raise HTTPException(status_code=400, detail="source_language must be a string.")
        try:
            mode = ProcessingMode(payload.get("mode", settings.processing_mode))
        except ValueError:
            raise HTTPException(status_code=400, detail="mode must be 'full' or 'dynamic'.") from None
        try:
            document = await ingest_text(
                text,
                title=title.strip(),
                target_language=target,
                source_language=source_language or None,
                source=source,
                mode=mode,
                initial_batch_tokens=settings.initial_batch_tokens,
            )
        except IngestionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await library.save(document)
        return JSONResponse({"document": _document_summary(document)}, status_code=201)

    @app.get("/api/documents/{doc_id}")
    async def api_document(doc_id: str) -> JSONResponse:
        document = await _require_document(doc_id)
        payload = _document_summary(document)
        payload["tokens"] = [
            [token.kind.code, token.value, token.index] for token in document.tokens
        ]
        payload["dictionary"] = {
            key: [entry.translation, entry.part_of_speech or ""]
            for key, entry in document.dictionary.items()
        }
        return JSONResponse(payload)

    @app.delete("/api/documents/{doc_id}")
    async def api_delete_document(doc_id: str) -> JSONResponse:
        await registry.close(doc_id)
        deleted = await library.delete(doc_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Document not found")
        return JSONResponse({"deleted": True, "id": doc_id})

    @app.post("/api/documents/{doc_id}/session")
    async def api_open_session(doc_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        document = await _require_document(doc_id)
        layout = _layout_from_payload(payload, document)
        session = await registry.open(
            document,
            library.save,
            debounce_seconds=settings.debounce_seconds,
            layout=layout,
            style=settings.pagination,
        )
        if document.pending_keys():
            session.start_background_resolution(
                source, batch_size=settings.background_batch_tokens
            )
        return JSONResponse({"session": _session_payload(session)})

    @app.delete("/api/documents/{doc_id}/session")
    async def api_close_session(doc_id: str) -> JSONResponse:
        closed = await registry.close(doc_id)
        if not closed:
            raise HTTPException(status_code=404, detail="No open session for this document")
        return JSONResponse({"closed": True, "id": doc_id})

    @app.post("/api/documents/{doc_id}/layout")
    async def api_layout(doc_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        session = _require_session(doc_id)
        layout = _layout_from_payload(payload, session.document)
        font_size_px = int(layout.font.font_size_px)
        if font_size_px != session.document.font_size_px:
            session.set_font_size(font_size_px)
        session.set_layout(layout)
        return JSONResponse({"session": _session_payload(session)})

    @app.get("/api/documents/{doc_id}/pages/{page}")
    async def api_page(doc_id: str, page: int) -> JSONResponse:
        session = _require_session(doc_id)
        paginator = session.paginator
        number = paginator.clamp(page)
        start, end = paginator.page_range(number)
        document = session.document
        return JSONResponse(
            {
                "page": number,
                "total_pages": paginator.total_pages,
                "start": start,
                "end": end,
                "tokens": [_token_payload(document, token) for token in document.tokens[start:end]],
            }
        )

    @app.post("/api/documents/{doc_id}/position")
    async def api_position(doc_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        session = _require_session(doc_id)
        token_index = _int_field(payload, "token_index")
        accepted = session.update_scroll_anchor(token_index)
        return JSONResponse({"accepted": accepted, "session": _session_payload(session)})

    @app.post("/api/documents/{doc_id}/page")
    async def api_turn_page(doc_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        session = _require_session(doc_id)
        action = payload.get("action")
        if action == "next":
            session.next_page()
        elif action == "previous":
            session.previous_page()
        elif "page" in payload:
            session.go_to_page(_int_field(payload, "page"))
        else:
            raise HTTPException(status_code=400, detail="Provide a page number or action.")
        return JSONResponse({"session": _session_payload(session)})

    @app.post("/api/documents/{doc_id}/mode")
    async def api_mode(doc_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        session = _require_session(doc_id)
        try:
            anchor = await session.switch_mode(payload.get("mode"))  # type: ignore[arg-type]
        except ValueError:
            raise HTTPException(status_code=400, detail="mode must be 'scroll' or 'page'.") from None
        return JSONResponse({"restore_token_index": anchor, "session": _session_payload(session)})

    @app.post("/api/documents/{doc_id}/words/{token_index}/retry")
    async def api_retry_word(doc_id: str, token_index: int) -> JSONResponse:
        document = await _require_document(doc_id)
        try:
            entry = await translator.retry_word(document, token_index)
        except (IndexError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except TranslationBackendError as exc:
            logger.warning("Retry for token %d of %s failed: %s", token_index, doc_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        session = registry.get(doc_id)
        if session is not None:
            session.request_save()
        else:
            await library.save(document)
        return JSONResponse(
            {
                "token_index": token_index,
                "translation": entry.translation,
                "pos": entry.part_of_speech,
            }
        )

    @app.post("/api/translate")
    async def api_translate(payload: dict[str, object] = Body(...)) -> JSONResponse:
        doc_id = payload.get("document_id")
        phrase = payload.get("phrase")
        if not isinstance(doc_id, str) or not doc_id:
            raise HTTPException(status_code=400, detail="document_id is required.")
        if not isinstance(phrase, str) or not phrase.strip():
            raise HTTPException(status_code=400, detail="phrase is required.")
        document = await _require_document(doc_id)
        try:
            result = await translator.translate_phrase(document, phrase)
        except TranslationBackendError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return JSONResponse(
            {
                "original": result.original,
                "translation": result.translation,
                "pos": result.part_of_speech,
            }
        )

    @app.get("/api/vocabulary")
    async def api_vocabulary(
        source_language: str | None = Query(None),
        target_language: str | None = Query(None),
        text_id: str | None = Query(None),
    ) -> JSONResponse:
        entries = await vocabulary.list_entries(
            source_language=source_language,
            target_language=target_language,
            text_id=text_id,
        )
        return JSONResponse(
            {"entries": [entry.as_payload() for entry in entries], "count": len(entries)}
        )

    @app.get("/api/vocabulary/export")
    async def api_vocabulary_export(
        source_language: str | None = Query(None),
        target_language: str | None = Query(None),
        text_id: str | None = Query(None),
    ) -> PlainTextResponse:
        entries = await vocabulary.list_entries(
            source_language=source_language,
            target_language=target_language,
            text_id=text_id,
        )
        return PlainTextResponse(format_entries(entries))

    @app.get("/api/vocabulary/exists")
    async def api_vocabulary_exists(
        original: str = Query(...),
        source_language: str = Query(...),
        target_language: str = Query(...),
    ) -> JSONResponse:
        exists = await vocabulary.exists(original, source_language, target_language)
        return JSONResponse({"exists": exists})

    @app.post("/api/vocabulary")
    async def api_save_vocabulary(payload: dict[str, object] = Body(...)) -> JSONResponse:
        original = _optional_str(payload, "original")
        translation = _optional_str(payload, "translation")
        if original is None or translation is None:
            raise HTTPException(status_code=400, detail="original and translation are required.")
        doc_id = _optional_str(payload, "document_id")
        text_title = _optional_str(payload, "text_title")
        if doc_id is not None:
            document = await _require_document(doc_id)
            source_language = document.source_language
            target_language = document.target_language
            text_title = text_title or document.title
        else:
            source_language = _optional_str(payload, "source_language")
            target_language = _optional_str(payload, "target_language")
            if source_language is None or target_language is None:
                raise HTTPException(
                    status_code=400,
                    detail="Provide document_id or both source_language and target_language.",
                )
        is_phrase = payload.get("is_phrase")
        try:
            entry = await vocabulary.save_word(
                original,
                translation,
                source_language=source_language,
                target_language=target_language,
                part_of_speech=_optional_str(payload, "part_of_speech"),
                text_id=doc_id,
                text_title=text_title,
                is_phrase=is_phrase if isinstance(is_phrase, bool) else None,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if entry is None:
            return JSONResponse({"saved": False})
        return JSONResponse({"saved": True, "entry": entry.as_payload()}, status_code=201)

    @app.delete("/api/vocabulary/{entry_id}")
    async def api_delete_vocabulary(entry_id: str) -> JSONResponse:
        if not await vocabulary.delete(entry_id):
            raise HTTPException(status_code=404, detail="Vocabulary entry not found")
        return JSONResponse({"deleted": True, "id": entry_id})

    return app
