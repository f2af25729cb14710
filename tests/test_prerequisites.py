from registrar.prerequisites import (
    completed_codes,
    missing_prerequisites,
    prerequisite_chain_length,
    prerequisite_codes,
    prerequisite_graph,
)


def test_missing_prerequisites_keeps_required_order() -> None:
    assert missing_prerequisites(["MATH101", "CS100", "CS099"], {"CS100"}) == ["MATH101", "CS099"]
    assert missing_prerequisites([], set()) == []
    assert missing_prerequisites(["CS100"], ["CS100", "CS200"]) == []


def test_chain_length_of_linear_and_branching_graphs() -> None:
    graph = {"A": [], "B": ["A"], "C": ["B"], "D": ["A", "C"], "E": []}
    assert prerequisite_chain_length("A", graph) == 0
    assert prerequisite_chain_length("B", graph) == 1
    assert prerequisite_chain_length("C", graph) == 2
    assert prerequisite_chain_length("D", graph) == 3
    assert prerequisite_chain_length("E", graph) == 0


def test_chain_length_counts_codes_outside_the_catalog() -> None:
    assert prerequisite_chain_length("CS200", {"CS200": ["MATH101"]}) == 1
    assert prerequisite_chain_length("UNKNOWN", {}) == 0


def test_chain_length_terminates_on_cycles() -> None:
    graph = {"A": ["B"], "B": ["C"], "C": ["A"]}
    assert prerequisite_chain_length("A", graph) == 3
    assert prerequisite_chain_length("S", {"S": ["S"]}) == 1


def test_chain_length_revisits_shared_prerequisites_on_other_paths() -> None:
    # diamond: both branches reach BASE, the deeper one wins
    graph = {"TOP": ["LEFT", "RIGHT"], "LEFT": ["BASE"], "RIGHT": ["MID"], "MID": ["BASE"], "BASE": []}
    assert prerequisite_chain_length("TOP", graph) == 3


def test_graph_and_codes_from_database(db, make) -> None:
    make.course("CS100")
    cs200 = make.course("CS200", prerequisites=("MATH101", "CS100"))
    make.course("CS300", prerequisites=("CS200",))

    graph = prerequisite_graph(db)
    assert graph["CS100"] == []
    assert sorted(graph["CS200"]) == ["CS100", "MATH101"]
    assert graph["CS300"] == ["CS200"]
    assert prerequisite_chain_length("CS300", graph) == 2

    assert prerequisite_codes(db, cs200.id) == ["CS100", "MATH101"]


def test_completed_codes(db, make) -> None:
    make.user(id="S1", completed={"CS100": "A", "MATH101": "D"})
    make.user(id="S2")
    assert completed_codes(db, "S1") == {"CS100", "MATH101"}
    assert completed_codes(db, "S2") == set()
