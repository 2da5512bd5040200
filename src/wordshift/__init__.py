from .codec import CorruptedRecordError, decode, encode
from .dictionary import (
    DictionaryUnavailableError,
    JsonDictionarySource,
    MappingDictionarySource,
    TranslationEntry,
)
from .document import DisplayMode, Document
from .library import DocumentLibrary
from .pagination import FontMetrics, LayoutMetrics, PaginationStyle, Paginator, compute_breaks
from .pipeline import IngestionError, ProcessingMode, UnsupportedFormatError, ingest_file, ingest_text
from .resolver import resolve_dictionary, resolve_remaining, update_entry
from .session import ReadingSession, SessionRegistry
from .store import JsonDirectoryStore, MemoryStore
from .tokens import Token, TokenKind, tokenize
from .translation import TranslationBackendError, TranslationService
from .vocabulary import VocabularyEntry, VocabularyList, format_entries

__all__ = [
    "Token",
    "TokenKind",
    "tokenize",
    "TranslationEntry",
    "DictionaryUnavailableError",
    "JsonDictionarySource",
    "MappingDictionarySource",
    "resolve_dictionary",
    "resolve_remaining",
    "update_entry",
    "FontMetrics",
    "LayoutMetrics",
    "PaginationStyle",
    "Paginator",
    "compute_breaks",
    "Document",
    "DisplayMode",
    "ReadingSession",
    "SessionRegistry",
    "encode",
    "decode",
    "CorruptedRecordError",
    "DocumentLibrary",
    "JsonDirectoryStore",
    "MemoryStore",
    "IngestionError",
    "UnsupportedFormatError",
    "ProcessingMode",
    "ingest_text",
    "ingest_file",
    "TranslationService",
    "TranslationBackendError",
    "VocabularyEntry",
    "VocabularyList",
    "format_entries",
]
