import datetime

from logic.analytics import AnalyticsEngine
from logic.core import build_summary_pdf, csv_download_name, pdf_download_name


def test_download_names():
    assert csv_download_name(datetime.date(2024, 5, 17)) == "bat_analysis_2024-05-17.csv"
    assert pdf_download_name("abc123") == "bat_report_abc123.pdf"


def test_summary_pdf_for_populated_store(store, make_result):
    store.replace_all([
        make_result("a", [("Myotis daubentonii", 0.9)]),
        make_result("b", [("Nyctalus noctula", 0.7)], call_parameters={"shape": "QCF"}),
    ])
    engine = AnalyticsEngine(store)
    stats = engine.global_stats()
    rows = [engine.species_analytics(s.species) for s in stats.top_species]

    data = build_summary_pdf(stats, rows, generated_at=datetime.datetime(2024, 5, 17, 22, 30))

    assert data.startswith(b"%PDF")


def test_summary_pdf_for_empty_store(store):
    data = build_summary_pdf(AnalyticsEngine(store).global_stats(), [])
    assert data.startswith(b"%PDF")
