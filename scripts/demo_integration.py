import os
import tempfile
from datetime import datetime, timezone

import fitz

from ingestion.ingest_pipeline import ingest_pdf
from retrieval.vector_search import fetch_by_pages, fetch_sample, retrieve


def build_demo_pdf(path: str) -> None:
    doc = fitz.open()
    page1 = doc.new_page()
    page1.insert_text((72, 72), "T-001 TITLE SHEET")
    page1.insert_text((72, 100), "Riverside Clinic Renovation. Issued for bid.")

    page2 = doc.new_page()
    page2.insert_text((72, 72), "A-101 FIRST FLOOR PLAN")
    page2.insert_text((72, 100), "SCALE: 1/4\" = 1'-0\"")
    page2.insert_text((72, 120), "Provide 42 duplex receptacles at 18 inches AFF.")
    page2.insert_text((72, 140), "Door schedule on sheet A-601.")

    page3 = doc.new_page()
    page3.insert_text((72, 72), "E-201 ELECTRICAL PLAN")
    page3.insert_text((72, 100), "Panel LP-1 feeds lighting circuits 1 through 12.")
    doc.save(path)
    doc.close()


def run_demo(output_path: str) -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        pdf_path = os.path.join(tmpdir, "demo.pdf")
        build_demo_pdf(pdf_path)
        result = ingest_pdf(pdf_path)

    queries = [
        "how many receptacles are on the first floor",
        "which panel feeds the lighting circuits",
        "door schedule",
    ]
    results = []
    for query in queries:
        hits = retrieve(result.document_id, query, limit=3)
        results.append(
            {
                "query": query,
                "hits": [
                    {
                        "chunk_id": hit.chunk_id,
                        "page": hit.page_number,
                        "sheet_id": hit.metadata.get("sheet_id"),
                        "similarity": f"{hit.similarity:.3f}",
                    }
                    for hit in hits
                ],
            }
        )
    page_two = fetch_by_pages(result.document_id, [2, 2])
    sample = fetch_sample(result.document_id)

    with open(output_path, "w", encoding="utf-8") as handle:
        handle.write("# Integration Demo Evidence\n\n")
        handle.write(f"Generated: {datetime.now(timezone.utc).isoformat()}\n\n")
        handle.write("## Document\n")
        handle.write(f"- document_id: {result.document_id}\n")
        handle.write(f"- method: {result.method}\n")
        handle.write(f"- pages: {result.page_count}\n")
        handle.write(f"- chunks: {result.chunk_count}\n")
        handle.write(f"- sample chunks: {len(sample)}\n")
        handle.write(f"- page 2 chunks: {len(page_two)}\n")
        for warning in result.warnings:
            handle.write(f"- warning: {warning}\n")
        handle.write("\n## Queries\n")
        for entry in results:
            handle.write(f"### {entry['query']}\n")
            if not entry["hits"]:
                handle.write("- no hits\n\n")
                continue
            for hit in entry["hits"]:
                handle.write(
                    "- "
                    + f"chunk_id={hit['chunk_id']} "
                    + f"page={hit['page']} "
                    + f"sheet_id={hit['sheet_id']} "
                    + f"similarity={hit['similarity']}\n"
                )
            handle.write("\n")


if __name__ == "__main__":
    output_file = os.path.join(
        os.path.dirname(os.path.dirname(__file__)), "docs", "demo_evidence.md"
    )
    os.makedirs(os.path.dirname(output_file), exist_ok=True)
    run_demo(output_file)
