import csv
import json

from maps_scraper.exceptions import DirectoryError, FetchError, PersistenceError, TranslationError
from maps_scraper.extraction.categories import CategoryFilter
from maps_scraper.orchestration.export import ExportManager
from maps_scraper.orchestration.orchestrator import CountryStatus, Orchestrator
from maps_scraper.orchestration.progress import ProgressStore, ProgressTree
from maps_scraper.orchestration.retry import RetryPolicy
from maps_scraper.orchestration.scheduler import CancellationToken

from conftest import FakeDirectory, FakeFetcher, city, country, record, state

MK = country("MK", "North Macedonia")
ALPHA = state("AL", "Alpha")
BETA = state("BE", "Beta")


def no_wait_retries(attempts=0):
    return RetryPolicy(max_attempts=attempts, base_delay=0, sleep=lambda s: None)


def read_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


def progress_file(config, code="MK"):
    return ProgressStore(config.output_dir).path_for(config.query, code)


def results_file(config, scope, code="MK", fmt="json"):
    return ExportManager(config.output_dir).path_for(config.query, code, scope, fmt)


def build(config, directory, fetcher, **kwargs):
    kwargs.setdefault("retry_policy", no_wait_retries(config.retry_count))
    return Orchestrator(config, directory, fetcher, **kwargs)


def test_failed_state_stays_open_and_succeeding_state_is_exported(make_config):
    config = make_config(parallel=2, retry_count=2)
    beta_records = [record(f"Biz {i}", f"Street {i}") for i in range(5)]

    def handler(query, country_code):
        if "Alpha" in query:
            raise FetchError("blocked")
        return beta_records

    fetcher = FakeFetcher(handler)
    directory = FakeDirectory([MK], {"MK": [ALPHA, BETA]})
    summary = build(config, directory, fetcher).run()

    progress = read_json(progress_file(config))["completed"]
    assert progress["states"] == {"MK-Beta": True}
    assert progress["countries"] == {}

    exported = read_json(results_file(config, "North Macedonia"))
    assert [r["name"] for r in exported] == [f"Biz {i}" for i in range(5)]
    assert all(r["state"] == "Beta" for r in exported)
    assert len(read_json(results_file(config, "Beta"))) == 5
    assert not results_file(config, "Alpha").exists()

    # 3 attempts for Alpha, 1 for Beta
    assert len(fetcher.calls) == 4
    result = summary.results[0]
    assert result.status == CountryStatus.INCOMPLETE
    assert result.failed_leaves == ["Alpha, North Macedonia"]
    assert summary.total_businesses == 5


def test_records_carry_provenance(make_config):
    config = make_config()
    fetcher = FakeFetcher(lambda q, cc: [record("Agro Pump", "Main St 1", "+389")])
    build(config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher).run()

    exported = read_json(results_file(config, "North Macedonia"))
    assert exported == [{
        "name": "Agro Pump",
        "formatted_address": "Main St 1",
        "phone_number": "+389",
        "source_name": "fake",
        "source_query": "irrigation",
        "source_country": "MK",
        "country": "North Macedonia",
        "state": "Alpha",
        "city": "",
    }]
    assert fetcher.calls == ["irrigation near Alpha North Macedonia"]


def test_completed_leaves_are_not_fetched_again(make_config):
    config = make_config()
    tree = ProgressTree()
    tree.mark_state_complete("MK", "Alpha")
    ProgressStore(config.output_dir).save(config.query, "MK", tree)

    fetcher = FakeFetcher(lambda q, cc: [record("Beta Biz", "B St")])
    result = build(config, FakeDirectory([MK], {"MK": [ALPHA, BETA]}), fetcher).run().results[0]

    assert fetcher.calls == ["irrigation near Beta North Macedonia"]
    assert result.status == CountryStatus.COMPLETED
    assert read_json(progress_file(config))["completed"]["countries"] == {"MK": True}


def test_completed_country_short_circuits(make_config):
    config = make_config()
    tree = ProgressTree()
    tree.mark_country_complete("MK")
    ProgressStore(config.output_dir).save(config.query, "MK", tree)

    directory = FakeDirectory([MK], {"MK": [ALPHA]})
    fetcher = FakeFetcher(lambda q, cc: [])
    summary = build(config, directory, fetcher).run()

    assert summary.results[0].status == CountryStatus.ALREADY_COMPLETED
    assert directory.state_calls == []
    assert fetcher.calls == []


def test_interrupt_saves_finished_city_and_resume_runs_the_rest(make_config):
    config = make_config(include_cities=True, parallel=1)
    cities = [city("Skopje", "AL"), city("Kumanovo", "AL"), city("Tetovo", "AL")]
    directory = FakeDirectory([MK], {"MK": [ALPHA]}, {("MK", "AL"): cities})

    token = CancellationToken()

    def interrupted(query, country_code):
        token.cancel()
        return [record(f"First {i}", "Skopje") for i in range(3)]

    first_fetcher = FakeFetcher(interrupted)
    summary = build(config, directory, first_fetcher, cancel_token=token).run()

    assert summary.cancelled
    assert summary.results[0].status == CountryStatus.INTERRUPTED
    assert first_fetcher.calls == ["irrigation near Skopje Alpha North Macedonia"]
    progress = read_json(progress_file(config))["completed"]
    assert progress["cities"] == {"MK-AL-Skopje": True}
    assert progress["states"] == {} and progress["countries"] == {}
    assert len(read_json(results_file(config, "Alpha"))) == 3
    assert len(read_json(results_file(config, "North Macedonia"))) == 3

    second_fetcher = FakeFetcher(lambda q, cc: [record(q, "elsewhere")])
    resumed = build(config, directory, second_fetcher).run()

    assert sorted(second_fetcher.calls) == [
        "irrigation near Kumanovo Alpha North Macedonia",
        "irrigation near Tetovo Alpha North Macedonia",
    ]
    assert resumed.results[0].status == CountryStatus.COMPLETED
    progress = read_json(progress_file(config))["completed"]
    assert progress["states"] == {"MK-Alpha": True}
    assert progress["countries"] == {"MK": True}
    # Country rollup includes the records from the interrupted run
    assert len(read_json(results_file(config, "North Macedonia"))) == 5


def test_resume_keeps_earlier_records_when_only_csv_is_exported(make_config):
    config = make_config(include_cities=True, export_formats=["csv"])
    region = state("85", "Skopje Region")
    directory = FakeDirectory(
        [MK], {"MK": [region]}, {("MK", "85"): [city("Aerodrom", "85"), city("Butel", "85")]}
    )
    token = CancellationToken()

    def interrupted(query, country_code):
        token.cancel()
        return [record("A", "1"), record("B", "2"), record("C", "3")]

    build(config, directory, FakeFetcher(interrupted), cancel_token=token).run()
    build(config, directory, FakeFetcher(lambda q, cc: [record("D", "4")])).run()

    for scope in ("Skopje Region", "North Macedonia"):
        with open(results_file(config, scope, fmt="csv"), newline="", encoding="utf-8") as f:
            names = [row["name"] for row in csv.DictReader(f)]
        assert names == ["A", "B", "C", "D"], scope
    # The JSON snapshot exists for resuming, but no JSON rollup was requested
    assert results_file(config, "Skopje Region").exists()
    assert not results_file(config, "North Macedonia").exists()
    assert read_json(progress_file(config))["completed"]["countries"] == {"MK": True}


def test_duplicates_across_states_are_merged(make_config):
    config = make_config(parallel=2)
    shared = record("Chain Store", "HQ", "123")
    fetcher = FakeFetcher(lambda q, cc: [dict(shared), record(q, "local")])

    result = build(config, FakeDirectory([MK], {"MK": [ALPHA, BETA]}), fetcher).run().results[0]

    names = [r["name"] for r in result.businesses]
    assert names.count("Chain Store") == 1
    assert len(names) == 3


def test_state_without_cities_is_complete(make_config):
    config = make_config(include_cities=True)
    directory = FakeDirectory([MK], {"MK": [ALPHA]}, {("MK", "AL"): []})
    fetcher = FakeFetcher(lambda q, cc: [])

    result = build(config, directory, fetcher).run().results[0]

    assert fetcher.calls == []
    assert result.status == CountryStatus.COMPLETED


def test_city_listing_failure_leaves_state_open(make_config):
    config = make_config(include_cities=True)
    directory = FakeDirectory(
        [MK],
        {"MK": [ALPHA, BETA]},
        {("MK", "AL"): DirectoryError("503"), ("MK", "BE"): [city("Bitola", "BE")]},
    )
    fetcher = FakeFetcher(lambda q, cc: [record("Bitola Biz", "B")])

    result = build(config, directory, fetcher).run().results[0]

    assert result.status == CountryStatus.INCOMPLETE
    progress = read_json(progress_file(config))["completed"]
    assert progress["states"] == {"MK-Beta": True}
    assert progress["cities"] == {"MK-BE-Bitola": True}


def test_state_listing_failure_skips_country_only(make_config, caplog):
    config = make_config(countries=["MK", "AL"])
    albania = country("AL", "Albania")
    directory = FakeDirectory([MK, albania], {"MK": DirectoryError("timeout"), "AL": [state("TR", "Tirana", "AL")]})
    fetcher = FakeFetcher(lambda q, cc: [record("Tirana Biz", "T")])

    summary = build(config, directory, fetcher).run()

    statuses = {r.country.code: r.status for r in summary.results}
    assert statuses == {"AL": CountryStatus.COMPLETED, "MK": CountryStatus.FAILED}
    assert summary.countries_failed == 1
    assert "Failed to list states for North Macedonia" in caplog.text


def test_countries_are_resolved_and_sorted_by_name(make_config, caplog):
    config = make_config(countries=["MK", "AL", "XX"])
    directory = FakeDirectory([MK, country("AL", "Albania")], {})
    orchestrator = build(config, directory, FakeFetcher(lambda q, cc: []))

    resolved = orchestrator.resolve_countries(config.countries)

    assert [c.code for c in resolved] == ["AL", "MK"]
    assert "Unknown country codes ignored: XX" in caplog.text


def test_localized_query_is_used_for_search(make_config):
    class FakeTranslator:
        def translate(self, text, target_language):
            assert target_language == "mk"
            return "наводнување"

    config = make_config(localize=True)
    fetcher = FakeFetcher(lambda q, cc: [record("Biz", "A")])
    result = build(config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, translator=FakeTranslator()).run()

    assert fetcher.calls == ["наводнување near Alpha North Macedonia"]
    assert result.results[0].businesses[0]["source_query"] == "наводнување"


def test_translation_failure_falls_back_to_original_query(make_config, caplog):
    class BrokenTranslator:
        def translate(self, text, target_language):
            raise TranslationError("quota exceeded")

    config = make_config(localize=True)
    fetcher = FakeFetcher(lambda q, cc: [])
    build(config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, translator=BrokenTranslator()).run()

    assert fetcher.calls == ["irrigation near Alpha North Macedonia"]
    assert "Translation failed for MK" in caplog.text


def test_category_filter_is_applied(make_config):
    config = make_config()
    fetcher = FakeFetcher(lambda q, cc: [
        record("Pump Shop", "A", category="Irrigation equipment supplier"),
        record("Bakery", "B", category="Bakery"),
        record("Unknown", "C"),
    ])

    result = build(
        config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, category_filter=CategoryFilter(["irrigation"])
    ).run().results[0]

    assert [r["name"] for r in result.businesses] == ["Pump Shop", "Unknown"]


def test_leaf_is_not_marked_done_when_its_export_fails(make_config, monkeypatch):
    config = make_config()
    exporter = ExportManager(config.output_dir, ["json"])

    def broken(records, path):
        raise OSError("read-only file system")

    monkeypatch.setattr(exporter, "_write_json", broken)
    fetcher = FakeFetcher(lambda q, cc: [record("Biz", "A")])

    result = build(config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, exporter=exporter).run().results[0]

    assert result.status == CountryStatus.INCOMPLETE
    assert read_json(progress_file(config))["completed"]["states"] == {}
    # In-memory accumulation is kept
    assert len(result.businesses) == 1


def test_progress_save_failure_does_not_stop_the_run(make_config, monkeypatch, caplog):
    config = make_config()
    store = ProgressStore(config.output_dir)

    def broken(query, country_code, tree):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "save", broken)
    fetcher = FakeFetcher(lambda q, cc: [record("Biz", "A")])

    result = build(
        config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, progress_store=store
    ).run().results[0]

    assert result.status == CountryStatus.COMPLETED
    assert len(result.businesses) == 1
    assert "disk full" in caplog.text


def test_cancelled_before_start_processes_no_country(make_config):
    config = make_config()
    token = CancellationToken()
    token.cancel()
    fetcher = FakeFetcher(lambda q, cc: [])

    summary = build(config, FakeDirectory([MK], {"MK": [ALPHA]}), fetcher, cancel_token=token).run()

    assert summary.results == []
    assert summary.cancelled
