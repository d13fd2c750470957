import json

from clients.cli import tree_fixtures
from services.crypto_core.field import from_hex
from services.crypto_core.lean_imt import verify_proof


def test_fixture_proofs_verify():
    fixture = tree_fixtures.build_fixture(5, seed=3)
    assert fixture["tree"]["size"] == 5
    assert fixture["tree"]["depth"] == 3
    root = from_hex(fixture["tree"]["root"])
    for item in fixture["leaves"]:
        siblings = [from_hex(s) for s in item["proof"]]
        assert from_hex(item["root"]) == root
        assert verify_proof(from_hex(item["leaf"]), item["index"], len(siblings), root, siblings)


def test_empty_fixture():
    fixture = tree_fixtures.build_fixture(0)
    assert fixture == {"tree": {"root": None, "depth": 0, "size": 0}, "leaves": []}


def test_cli_writes_file(tmp_path):
    out = tmp_path / "fixtures" / "tree.json"
    assert tree_fixtures.main(["--leaves", "3", "--seed", "1", "--out", str(out)]) == 0
    data = json.loads(out.read_text())
    assert data == tree_fixtures.build_fixture(3, seed=1)


def test_cli_stdout(capsys):
    tree_fixtures.main(["--leaves", "2"])
    data = json.loads(capsys.readouterr().out)
    assert len(data["leaves"]) == 2
