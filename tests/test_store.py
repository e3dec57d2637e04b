from logic.store import ALL_SPECIES, ResultStore


def test_replace_all_scenario(store, make_result):
    r1 = make_result("r1", [("Myotis", 0.9)])
    r2 = make_result("r2", [("Pipistrellus", 0.8)])

    store.replace_all([r1, r2])

    assert store.unique_species() == {"Myotis", "Pipistrellus"}
    assert len(store) == 2


def test_replace_all_drops_stale_entries(store, make_result):
    store.replace_all([make_result("old", [("Myotis", 0.9)])])
    store.replace_all([make_result("new", [("Nyctalus", 0.9)])])
    assert "old" not in store
    assert [r.file_id for r in store.all()] == ["new"]


def test_duplicate_ids_keep_first_position(store, make_result):
    a = make_result("a", [("Myotis", 0.9)])
    b = make_result("b", [("Nyctalus", 0.9)])
    a_again = make_result("a", [("Plecotus", 0.7)])

    store.replace_all([a, b, a_again])

    assert [r.file_id for r in store.all()] == ["a", "b"]
    assert store.get("a").top_match.species == "Plecotus"


def test_all_preserves_service_order_not_timestamp(store, make_result):
    later = make_result("later", [("Myotis", 0.9)], timestamp=2_000_000_000)
    earlier = make_result("earlier", [("Myotis", 0.9)], timestamp=1_000_000_000)
    store.replace_all([later, earlier])
    assert [r.file_id for r in store.all()] == ["later", "earlier"]


def test_all_is_restartable_and_read_only(store, make_result):
    store.replace_all([make_result("a", [("Myotis", 0.9)]), make_result("b", [("Myotis", 0.8)])])
    view = store.all()
    assert [r.file_id for r in view] == [r.file_id for r in view] == ["a", "b"]
    assert not hasattr(view, "append")


def test_remove_unknown_id_is_noop(store, make_result):
    store.replace_all([make_result("a", [("Myotis", 0.9)])])
    assert store.remove("missing") is False
    assert len(store) == 1
    assert store.remove("a") is True
    assert len(store) == 0


def test_filter_all_returns_everything(store, make_result):
    results = [make_result("a", [("Myotis", 0.9)]), make_result("b", [("Nyctalus", 0.9)])]
    store.replace_all(results)
    assert store.filter_by_species(ALL_SPECIES) == results


def test_filter_matches_any_rank(store, make_result):
    top = make_result("top", [("Myotis", 0.9), ("Nyctalus", 0.1)])
    secondary = make_result("secondary", [("Nyctalus", 0.9), ("Myotis", 0.05)])
    other = make_result("other", [("Plecotus", 0.9)])
    store.replace_all([top, secondary, other])

    filtered = store.filter_by_species("Myotis")

    assert [r.file_id for r in filtered] == ["top", "secondary"]
    assert all(any(d.species == "Myotis" for d in r.species_detected) for r in filtered)


def test_unique_species_includes_lower_ranks(store, make_result):
    store.replace_all([make_result("a", [("Myotis", 0.9), ("Barbastella", 0.02)])])
    assert store.unique_species() == {"Myotis", "Barbastella"}


def test_species_in_first_seen_order(store, make_result):
    store.replace_all([
        make_result("a", [("Nyctalus", 0.9), ("Myotis", 0.1)]),
        make_result("b", [("Myotis", 0.9), ("Plecotus", 0.1)]),
    ])
    assert store.species_in_first_seen_order() == ["Nyctalus", "Myotis", "Plecotus"]


def test_search_by_filename_and_species(store, make_result):
    store.replace_all([
        make_result("a", [("Myotis daubentonii", 0.9)], filename="pond_north.wav"),
        make_result("b", [("Nyctalus noctula", 0.9)], filename="forest_edge.wav"),
    ])
    assert [r.file_id for r in store.search("POND")] == ["a"]
    assert [r.file_id for r in store.search("noctula")] == ["b"]
    assert len(store.search("  ")) == 2


def test_constructor_accepts_initial_results(make_result):
    store = ResultStore([make_result("a", [("Myotis", 0.9)])])
    assert "a" in store
