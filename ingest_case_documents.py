"""
Batch ingestion of case documents.

Processes every supported file (.pdf, .docx, .txt, .md) in a directory for one
case:
- Text extraction: PyMuPDF4LLM for PDFs, python-docx for Word files
- Storage: files copied into document storage and recorded in the documents table
- Vector index: chunked, embedded with OpenAI and upserted to Pinecone

Usage:
    python ingest_case_documents.py --dir ~/case_files/ --case-id <uuid> --user-id <uuid>
    python ingest_case_documents.py --dir ~/medical/ --case-id <uuid> --user-id <uuid> --type support
"""

import sys
import uuid
import time
import argparse
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".pdf", ".docx", ".txt", ".md"}
MIN_TEXT_CHARS = 50


def collect_files(input_dir: Path) -> list[Path]:
    return sorted(p for p in input_dir.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES)


def is_already_ingested(db, case_id: str, user_id: str, filename: str) -> bool:
    """Check if a document with this name is already recorded for the case."""
    return any(d["name"] == filename for d in db.list_documents(case_id, user_id))


def ingest_file(
    filepath: Path,
    db,
    storage,
    retriever,
    case_id: str,
    user_id: str,
    document_type: str,
) -> Optional[int]:
    """Ingest a single file. Returns the number of vectors written, or None if skipped.

    The document row is removed again when indexing fails, so a rerun retries the file.
    """
    from execution.doculaw.document_parser import extract_text
    from execution.doculaw.retriever import CaseDocument

    data = filepath.read_bytes()
    extracted = extract_text(data, filepath.name)
    if len(extracted.text.strip()) < MIN_TEXT_CHARS:
        logger.warning(f"  Skipping {filepath.name}: too little text extracted")
        return None

    key = f"{user_id}/{case_id}/{uuid.uuid4().hex}_{filepath.name}"
    storage.upload(key, data)
    doc = db.create_document(
        user_id=user_id,
        case_id=case_id,
        name=filepath.name,
        path=key,
        url=storage.public_url(key),
        mime_type=extracted.mime_type,
        size=len(data),
        document_type=document_type,
        extracted_text=extracted.text,
    )

    if not retriever.is_configured:
        return 0
    try:
        return retriever.add_documents(
            [CaseDocument(id=doc["id"], name=filepath.name, content=extracted.text, type=document_type)],
            case_id,
            user_id,
        )
    except Exception:
        db.delete_document(doc["id"], user_id)
        storage.delete(key)
        raise


def main():
    arg_parser = argparse.ArgumentParser(description="Ingest documents into a DocuLaw case")
    arg_parser.add_argument("--dir", type=str, required=True, help="Directory containing case files")
    arg_parser.add_argument("--case-id", type=str, required=True, help="Case UUID")
    arg_parser.add_argument("--user-id", type=str, required=True, help="Owning lawyer's user UUID")
    arg_parser.add_argument(
        "--type",
        type=str,
        default="document",
        help="Document type recorded for every file (document, complaint, support)",
    )
    args = arg_parser.parse_args()

    input_dir = Path(args.dir)
    if not input_dir.exists():
        logger.error(f"Directory not found: {input_dir}")
        sys.exit(1)

    files = collect_files(input_dir)
    if not files:
        logger.error(f"No supported files found in {input_dir}")
        sys.exit(1)

    from execution.doculaw.database import CaseDatabase
    from execution.doculaw.storage import DocumentStorage
    from execution.doculaw.embeddings import get_embedding_service
    from execution.doculaw.vector_store import PineconeVectorStore
    from execution.doculaw.retriever import CaseRetriever

    db = CaseDatabase()
    db.connect()
    db.initialize_schema()

    if not db.get_case(args.case_id, args.user_id):
        logger.error(f"Case {args.case_id} not found for user {args.user_id}")
        sys.exit(1)

    storage = DocumentStorage()
    retriever = CaseRetriever(PineconeVectorStore(), get_embedding_service())
    if not retriever.is_configured:
        logger.warning("Pinecone is not configured; files will be stored without vectors")

    logger.info(f"Found {len(files)} files in {input_dir}")
    logger.info(f"  Case ID: {args.case_id}")
    logger.info(f"  Document type: {args.type}")

    start_time = time.time()
    total_vectors = 0
    success_count = 0
    fail_count = 0
    skip_count = 0

    for i, path in enumerate(files):
        if is_already_ingested(db, args.case_id, args.user_id, path.name):
            skip_count += 1
            continue

        logger.info(f"[{i+1}/{len(files)}] Processing: {path.name}")
        try:
            n_vectors = ingest_file(path, db, storage, retriever, args.case_id, args.user_id, args.type)
            if n_vectors is None:
                skip_count += 1
                continue
            total_vectors += n_vectors
            success_count += 1
            logger.info(f"  -> {n_vectors} vectors")
        except Exception as e:
            fail_count += 1
            logger.error(f"  FAILED: {e}")

    elapsed = time.time() - start_time
    db.close()

    # Summary
    print("\n" + "=" * 60)
    print("INGESTION COMPLETE")
    print("=" * 60)
    print(f"Files processed: {success_count}/{len(files)} ({fail_count} failed, {skip_count} skipped)")
    print(f"Total vectors:   {total_vectors}")
    print(f"Time elapsed:    {elapsed:.1f}s")
    print(f"Case ID:         {args.case_id}")
    print("=" * 60)


if __name__ == "__main__":
    main()
